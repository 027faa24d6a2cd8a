"""Standalone HTML document export, optionally with highlight colours."""

from __future__ import annotations

from transcript_viewer.editor.highlights import highlighted_segments
from transcript_viewer.export.text import strip_highlight_markup
from transcript_viewer.models import Highlight, Utterance
from transcript_viewer.utils.timefmt import format_clock


def _esc(text: str) -> str:
    """HTML-escape text."""
    return (text
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;"))


def _render_text(utt: Utterance, highlights: list[Highlight] | None) -> str:
    if highlights is None:
        return _esc(strip_highlight_markup(utt.text))
    parts = []
    for seg in highlighted_segments(utt, highlights):
        if seg.color:
            parts.append(f'<mark style="background-color:{_esc(seg.color)};">{_esc(seg.text)}</mark>')
        else:
            parts.append(_esc(seg.text))
    sep = "" if utt.is_edited or not utt.words else " "
    return sep.join(parts)


def _stamp(utt: Utterance, include: bool) -> str:
    return f'<span class="timestamp">[{format_clock(utt.start)}]</span> ' if include else ""


def generate_html(
    utterances: list[Utterance],
    title: str,
    date: str = "",
    include_timestamps: bool = False,
    include_speakers: bool = True,
    paragraph_mode: str = "utterance",
    highlights: list[Highlight] | None = None,
) -> str:
    body: list[str] = [f"<h1>{_esc(title)}</h1>"]
    if date:
        body.append(f'<p class="meta">{_esc(date)}</p>')

    if paragraph_mode == "continuous":
        chunks = []
        for utt in utterances:
            speaker = f"<strong>{_esc(utt.speaker)}:</strong> " if include_speakers and utt.speaker else ""
            chunks.append(_stamp(utt, include_timestamps) + speaker + _render_text(utt, highlights))
        body.append("<p>" + " ".join(chunks) + "</p>")
    elif paragraph_mode == "speaker":
        current: str | None = None
        block: list[str] = []

        def flush() -> None:
            if not block:
                return
            name = f'<p class="speaker-name">{_esc(current)}:</p>' if include_speakers and current else ""
            body.append(f'<div class="speaker-block">{name}<p class="utterance">{" ".join(block)}</p></div>')

        for utt in utterances:
            if utt.speaker != current:
                flush()
                block = []
                current = utt.speaker
            block.append(_stamp(utt, include_timestamps) + _render_text(utt, highlights))
        flush()
    else:
        for utt in utterances:
            speaker = f"<strong>{_esc(utt.speaker)}:</strong> " if include_speakers and utt.speaker else ""
            body.append(f"<p>{_stamp(utt, include_timestamps)}{speaker}{_render_text(utt, highlights)}</p>")

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>{_esc(title)}</title>
<style>
  body {{ font-family: system-ui, sans-serif; max-width: 48rem; margin: 2rem auto; line-height: 1.6; }}
  .meta {{ color: #666; }}
  .timestamp {{ color: #888; font-size: 0.85em; }}
  .speaker-name {{ font-weight: bold; margin-bottom: 0; }}
</style>
</head>
<body>
{chr(10).join(body)}
</body>
</html>
"""
