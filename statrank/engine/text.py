"""
statrank.engine.text — Fixed-Width Text Helpers
================================================

Chat clients render monospace blocks where CJK and most symbol glyphs
occupy two columns.  Every width here is a *display* width, not a
character count, so columns line up in golden-output tests.

Row layout produced by :func:`format_row`::

    <name, 15 cols, left><space><count, 5 cols, right><space><trailing, ≤10 cols>

Columns are padded with U+2800 (braille blank), not spaces.  The count is
never cut: a number wider than its column pushes the rest of the row right.
"""

from __future__ import annotations

import re
from datetime import datetime

_WIDE = re.compile(
    r"[\u3000-\u9FFF\uFF01-\uFF60\u2E80-\u2FDF\u3040-\u30FF\u2600-\u26FF\u2700-\u27BF]"
)

NAME_WIDTH = 15
COUNT_WIDTH = 5
TRAILING_WIDTH = 10
PAD = "\u2800"

# (milliseconds, label), largest first
_TIME_UNITS: tuple[tuple[int, str], ...] = (
    (31_536_000_000, "y"),
    (2_592_000_000, "mo"),
    (86_400_000, "d"),
    (3_600_000, "h"),
    (60_000, "m"),
    (1_000, "s"),
)


# ---------------------------------------------------------------------------
# Width arithmetic
# ---------------------------------------------------------------------------
def char_width(ch: str) -> int:
    return 2 if _WIDE.match(ch) else 1


def display_width(text: str | None) -> int:
    if not text:
        return 0
    return sum(char_width(ch) for ch in text)


def truncate_to_width(text: str | None, width: int) -> str:
    """Longest prefix of *text* that fits in *width* columns."""
    if not text:
        return text or ""
    used = 0
    out: list[str] = []
    for ch in text:
        w = char_width(ch)
        if used + w > width:
            break
        used += w
        out.append(ch)
    return "".join(out)


def pad_right(text: str, width: int, fill: str = " ") -> str:
    return text + fill * max(0, width - display_width(text))


def pad_left(text: str, width: int, fill: str = " ") -> str:
    return fill * max(0, width - display_width(text)) + text


# ---------------------------------------------------------------------------
# Relative time
# ---------------------------------------------------------------------------
def format_time_ago(ts: datetime | None, now: datetime) -> str:
    """Render *ts* relative to *now*, e.g. ``"3h12m ago"`` or ``"2d later"``.

    Uses the largest unit that fits plus the next smaller one when it is
    non-zero.  Differences under three seconds read ``"just now"`` (or
    ``"soon"`` for the future).
    """
    if ts is None:
        return "unknown"
    diff_ms = int((now - ts).total_seconds() * 1000)
    if abs(diff_ms) < 3000:
        return "soon" if diff_ms < 0 else "just now"

    suffix = " later" if diff_ms < 0 else " ago"
    abs_ms = abs(diff_ms)
    for i, (div, unit) in enumerate(_TIME_UNITS):
        if abs_ms < div:
            continue
        primary = abs_ms // div
        if i + 1 < len(_TIME_UNITS):
            sub_div, sub_unit = _TIME_UNITS[i + 1]
            secondary = (abs_ms % div) // sub_div
            if secondary:
                return f"{primary}{unit}{secondary}{sub_unit}{suffix}"
        return f"{primary}{unit}{suffix}"
    return "just now"  # unreachable: abs_ms >= 3000 always fits seconds


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------
def format_row(name: str, count: int | str, trailing: str = "") -> str:
    """One fixed-width ``name count trailing`` line."""
    name = truncate_to_width(name, NAME_WIDTH)
    trailing = truncate_to_width(trailing, TRAILING_WIDTH)
    return f"{pad_right(name, NAME_WIDTH, PAD)} {pad_left(str(count), COUNT_WIDTH, PAD)} {trailing}"
