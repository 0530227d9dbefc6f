# views.py
"""
Tabular read models for dashboards and CSV export.

Pure functions over store records; nothing here touches the database.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from agentic_obs_store.models import ActionRecord, ActionStats, CaptureSource

ACTION_COLUMNS = [
    "ID",
    "Time",
    "Label",
    "Operation",
    "Success",
    "Duration (ms)",
    "Input",
    "Output",
]

CAPTURE_SOURCE_COLUMNS = [
    "ID",
    "Name",
    "Target",
    "Cadence (ms)",
    "Format",
    "Size",
    "Quality",
    "Enabled",
    "Images",
    "Updated",
]


def actions_frame(records: Sequence[ActionRecord]) -> pd.DataFrame:
    """
    One row per action record, in the order given (newest first from the DAO).
    Object columns, so blank operation/input/output cells are None on every pandas release.
    """
    rows = [
        {
            "ID": r.id,
            "Time": r.created_at,
            "Label": r.label,
            "Operation": r.operation_name or None,
            "Success": bool(r.success),
            "Duration (ms)": r.duration_ms,
            "Input": r.input or None,
            "Output": r.output or None,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=ACTION_COLUMNS, dtype=object)


def capture_sources_frame(
    sources: Sequence[CaptureSource],
    image_counts: Optional[Dict[int, int]] = None,
) -> pd.DataFrame:
    """
    image_counts maps source id -> stored image count; sources missing from
    it (or when it is omitted) show None.
    """
    image_counts = image_counts or {}
    rows = []
    for s in sources:
        size = "native" if not (s.width or s.height) else f"{s.width or 'auto'}x{s.height or 'auto'}"
        rows.append(
            {
                "ID": s.id,
                "Name": s.name,
                "Target": s.target,
                "Cadence (ms)": s.cadence_ms,
                "Format": s.format.value,
                "Size": size,
                "Quality": s.quality,
                "Enabled": bool(s.enabled),
                "Images": image_counts.get(s.id),
                "Updated": s.updated_at,
            }
        )
    return pd.DataFrame(rows, columns=CAPTURE_SOURCE_COLUMNS)


def stats_summary(stats: ActionStats) -> Tuple[Dict[str, float], pd.DataFrame]:
    """
    Split ActionStats into headline numbers and a top-operations table.
    """
    summary = {
        "total": stats.total,
        "successful": stats.successful,
        "failed": stats.failed,
        "success_ratio": round(stats.success_ratio, 4),
        "avg_duration_ms": round(stats.avg_duration_ms, 2),
    }
    top = pd.DataFrame(
        [{"Operation": op.operation_name, "Count": op.count} for op in stats.top_operations],
        columns=["Operation", "Count"],
    )
    return summary, top


def df_replace_none(df: pd.DataFrame, none_value: str = "–") -> pd.DataFrame:
    """
    Replace None/NaN values in a DataFrame with a readable placeholder.

    Casts to object first so numeric columns can hold the placeholder.
    """
    if not isinstance(df, pd.DataFrame):
        return df

    return df.astype(object).where(pd.notnull(df), none_value)


def export_actions_csv(records: List[ActionRecord], path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    actions_frame(records).to_csv(path, index=False)
    return path
