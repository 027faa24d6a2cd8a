"""Inline highlight marker syntax used inside edited utterance text.

A marker wraps a run of visible text::

    [[HIGHLIGHT color="#ffeb3b"]]world[[/HIGHLIGHT]]
    [[HIGHLIGHT color="#a7ffeb" id="42"]]action item[[/HIGHLIGHT]]

The optional ``id`` ties a text-based highlight record to its marker so the
record can be found again after surrounding text is edited.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from transcript_viewer.errors import SurfaceRangeError
from transcript_viewer.utils.config import DEFAULT_HIGHLIGHT_COLOR

MARKER_RE = re.compile(
    r'\[\[HIGHLIGHT color="([^"]+)"(?: id="([^"]*)")?\]\](.*?)\[\[/HIGHLIGHT\]\]',
    re.S,
)

_HEX6_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
_HEX3_RE = re.compile(r"^#?([0-9a-fA-F]{3})$")
_RGB_RE = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)$",
    re.I,
)


def normalize_color(value: str | None, default: str = DEFAULT_HIGHLIGHT_COLOR) -> str:
    """Return a 7-character ``#RRGGBB`` string for any CSS colour the surface reports.

    Six-digit hex keeps its case so persisted markers stay byte-identical.
    ``rgb()``/``rgba()`` and three-digit hex come back as lowercase hex.
    Anything else falls back to ``default``.
    """
    if not value:
        return default
    v = value.strip()
    m = _HEX6_RE.match(v)
    if m:
        return f"#{m.group(1)}"
    m = _HEX3_RE.match(v)
    if m:
        return "#" + "".join(ch * 2 for ch in m.group(1).lower())
    m = _RGB_RE.match(v)
    if m:
        r, g, b = (min(255, int(x)) for x in m.groups())
        return f"#{r:02x}{g:02x}{b:02x}"
    return default


@dataclass
class TextPart:
    """A run of visible text, highlighted when ``color`` is set."""

    text: str
    color: str | None = None
    highlight_id: str | None = None

    @property
    def is_highlight(self) -> bool:
        return self.color is not None


def format_marker(inner: str, color: str, highlight_id: str | None = None) -> str:
    attrs = f'color="{normalize_color(color)}"'
    if highlight_id:
        attrs += f' id="{str(highlight_id).replace(chr(34), "")}"'
    return f"[[HIGHLIGHT {attrs}]]{inner}[[/HIGHLIGHT]]"


def split_markers(text: str) -> list[TextPart]:
    """Split canonical text into plain and highlighted parts, in order."""
    parts: list[TextPart] = []
    pos = 0
    for m in MARKER_RE.finditer(text):
        if m.start() > pos:
            parts.append(TextPart(text[pos:m.start()]))
        parts.append(TextPart(m.group(3), normalize_color(m.group(1)), m.group(2) or None))
        pos = m.end()
    if pos < len(text):
        parts.append(TextPart(text[pos:]))
    return parts


def join_parts(parts: list[TextPart]) -> str:
    return "".join(
        format_marker(p.text, p.color, p.highlight_id) if p.is_highlight else p.text
        for p in parts
    )


def strip_markers(text: str) -> str:
    return MARKER_RE.sub(lambda m: m.group(3), text)


def has_markers(text: str) -> bool:
    return MARKER_RE.search(text) is not None


def wrap_visible_range(
    text: str,
    start: int,
    end: int,
    color: str,
    highlight_id: str | None = None,
) -> str:
    """Wrap ``[start, end)`` of the marker-free text of ``text`` in a marker.

    Raises SurfaceRangeError when the range is out of bounds or touches an
    existing marker.
    """
    visible = strip_markers(text)
    if start < 0 or end > len(visible) or start >= end:
        raise SurfaceRangeError(f"Range {start}:{end} outside text of length {len(visible)}")

    out: list[TextPart] = []
    offset = 0
    wrapped = False
    for part in split_markers(text):
        p_start, p_end = offset, offset + len(part.text)
        offset = p_end
        if part.is_highlight:
            if start < p_end and end > p_start:
                raise SurfaceRangeError("Selection overlaps an existing highlight")
            out.append(part)
            continue
        if wrapped or end <= p_start or start >= p_end:
            out.append(part)
            continue
        if start < p_start or end > p_end:
            raise SurfaceRangeError("Selection spans a highlight boundary")
        before = part.text[: start - p_start]
        inner = part.text[start - p_start : end - p_start]
        after = part.text[end - p_start :]
        if before:
            out.append(TextPart(before))
        out.append(TextPart(inner, normalize_color(color), highlight_id))
        if after:
            out.append(TextPart(after))
        wrapped = True
    return join_parts(out)


def remove_markers(
    text: str,
    highlight_id: str | None = None,
    color: str | None = None,
    inner: str | None = None,
) -> tuple[str, int]:
    """Unwrap markers matching ``highlight_id``, or ``color`` + ``inner`` for id-less markers.

    Returns the new text and the number of markers removed.
    """
    removed = 0

    def _sub(m: re.Match[str]) -> str:
        nonlocal removed
        m_id = m.group(2) or None
        if highlight_id is not None and m_id == str(highlight_id):
            removed += 1
            return m.group(3)
        if (
            m_id is None
            and color is not None
            and inner is not None
            and normalize_color(m.group(1)).lower() == normalize_color(color).lower()
            and m.group(3) == inner
        ):
            removed += 1
            return m.group(3)
        return m.group(0)

    return MARKER_RE.sub(_sub, text), removed
