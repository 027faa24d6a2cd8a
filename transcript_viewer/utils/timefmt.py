"""Time formatting helpers shared by the renderer and exporters."""

from __future__ import annotations


def format_clock(ms: int | float | None) -> str:
    """Format milliseconds as ``mm:ss``, or ``hh:mm:ss`` once past the hour."""
    if ms is None or ms < 0:
        return "00:00"
    total = int(ms // 1000)
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h:02d}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


def format_srt_time(ms: int | float) -> str:
    """Format milliseconds as SRT timestamp: HH:MM:SS,mmm"""
    ms = max(0, int(round(ms)))
    h, rem = divmod(ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, millis = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{millis:03d}"


def format_vtt_time(ms: int | float) -> str:
    """Format milliseconds as WebVTT timestamp: HH:MM:SS.mmm"""
    return format_srt_time(ms).replace(",", ".")


def to_ms(value: object, default: int = 0) -> int:
    """Coerce a loosely typed time value to integer milliseconds."""
    if value is None or value == "":
        return default
    try:
        return int(round(float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
