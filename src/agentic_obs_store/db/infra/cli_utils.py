# agentic_obs_store/db/infra/cli_utils.py
"""
CLI message helpers for consistent, compact messages.

Pattern:
 - One-line summary always printed (unless --quiet).
 - Optional actionable next step shown below it.
 - Optional details block printed only with --verbose.

Uses print() so output is captured by pytest's capsys.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence


def _indent(text: str, prefix: str = "  ") -> str:
    return "\n".join(prefix + line for line in text.splitlines())


def print_user_message(
    summary: str,
    action: Optional[str] = None,
    details: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    if quiet:
        return

    first_line = summary.strip().splitlines()[0] if summary else ""
    print(first_line)

    if action:
        print()
        print("Actionable:")
        for ln in action.strip().splitlines():
            print("  " + ln.rstrip())

    if verbose and details:
        print()
        print("Details:")
        print(_indent(details.strip()))


def format_rows(rows: Iterable[Sequence[object]], limit: int = 100) -> str:
    """
    Render rows as indented 'a  b  c' lines, at most `limit` of them, for a
    details block.
    """
    rows = list(rows)
    lines = ["  ".join(str(v) for v in row) for row in rows[:limit]]
    if len(rows) > limit:
        lines.append(f"... and {len(rows) - limit} more omitted")
    return "\n".join(lines)
