"""
Utility helpers for the Learning Path Graph Engine.

Provides:
- Structured logging configuration with timestamps.
- UTC ISO-8601 timestamps.
- ISO-8601 duration formatting for statement results.
- Label truncation for compact rendering.
"""

import logging
from datetime import datetime, timezone


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def format_duration(start: datetime, end: datetime) -> str:
    """Format the span between *start* and *end* as ``PT{h}H{m}M{s}S``.

    The hours part is omitted when zero; negative spans clamp to zero.
    """
    secs = max(0, int((end - start).total_seconds()))
    mins = secs // 60
    hours = mins // 60
    hours_part = f"{hours}H" if hours else ""
    return f"PT{hours_part}{mins % 60}M{secs % 60}S"


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def truncate(text: str, length: int) -> str:
    """Shorten *text* to *length* characters, ending with an ellipsis."""
    if len(text) > length:
        return text[: length - 1] + "…"
    return text
