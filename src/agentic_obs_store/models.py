# models.py
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# -------------------------
# Settings
# -------------------------

# Order matters: it is the order toggles are listed and saved in.
FEATURE_GROUPS = (
    "core",
    "sources",
    "audio",
    "layout",
    "visual",
    "design",
    "filters",
    "transitions",
)


@dataclass(frozen=True)
class ConnectionSettings:
    """Controlled-application connection. Exists only once fully written."""
    host: str
    port: int
    secret: str = ""


@dataclass(frozen=True)
class FeatureToggles:
    core: bool = True
    sources: bool = True
    audio: bool = True
    layout: bool = True
    visual: bool = True
    design: bool = True
    filters: bool = True
    transitions: bool = True

    def as_dict(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in FEATURE_GROUPS}

    def enabled_groups(self) -> List[str]:
        return [name for name in FEATURE_GROUPS if getattr(self, name)]


@dataclass(frozen=True)
class DashboardServerSettings:
    enabled: bool = True
    host: str = "localhost"
    port: int = 8765


# -------------------------
# Presets
# -------------------------

@dataclass
class PresetElement:
    """Visibility/settings snapshot of one element in the target scene."""
    name: str
    visible: bool
    settings: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "visible": self.visible}
        if self.settings is not None:
            data["settings"] = self.settings
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PresetElement":
        visible = data["visible"]
        if not isinstance(visible, bool):
            raise TypeError(f"element {data.get('name')!r} has non-boolean visible {visible!r}")
        return cls(
            name=data["name"],
            visible=visible,
            settings=data.get("settings"),
        )


@dataclass
class Preset:
    name: str
    target: str
    elements: List[PresetElement] = field(default_factory=list)
    id: Optional[int] = None
    created_at: Optional[str] = None


# -------------------------
# Capture sources & images
# -------------------------

class ImageFormat(str, Enum):
    PNG = "png"  # raster-lossless
    JPG = "jpg"  # raster-lossy

    @property
    def mime_type(self) -> str:
        return "image/png" if self is ImageFormat.PNG else "image/jpeg"


DEFAULT_CADENCE_MS = 5000
MIN_CADENCE_MS = 1000
DEFAULT_QUALITY = 80


@dataclass
class CaptureSource:
    name: str
    target: str
    cadence_ms: int = DEFAULT_CADENCE_MS
    format: ImageFormat = ImageFormat.PNG
    width: int = 0  # 0 = native
    height: int = 0  # 0 = native
    quality: int = DEFAULT_QUALITY
    enabled: bool = True
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class CapturedImage:
    source_id: int
    payload: str  # base64-encoded image bytes
    mime_type: str
    size_bytes: int = 0
    id: Optional[int] = None
    captured_at: Optional[str] = None

    @classmethod
    def from_bytes(cls, source_id: int, raw: bytes, mime_type: str) -> "CapturedImage":
        return cls(
            source_id=source_id,
            payload=base64.b64encode(raw).decode("ascii"),
            mime_type=mime_type,
            size_bytes=len(raw),
        )

    def decode(self) -> bytes:
        return base64.b64decode(self.payload)


# -------------------------
# Action log
# -------------------------

@dataclass
class ActionRecord:
    label: str
    operation_name: str = ""
    input: str = ""
    output: str = ""
    success: bool = False
    duration_ms: int = 0
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class OperationCount:
    operation_name: str
    count: int


@dataclass(frozen=True)
class ActionStats:
    total: int
    successful: int
    failed: int
    avg_duration_ms: float
    top_operations: List[OperationCount] = field(default_factory=list)

    @property
    def success_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.successful / self.total
