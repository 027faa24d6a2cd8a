"""Renderer: projects the utterance store into a surface tree.

Row layout::

    div.utterance-row[data-index][data-start][data-end][data-original-speaker]
      div.utterance-header
        div.speaker-info
          span.speaker-avatar   (initial, speaker colour)
          span.speaker-label    (display name)
        span.utterance-timestamp
      p.utterance-text
        span.sentence-timestamp  span.word ...   (original rows)
        text  mark  text ...                    (edited rows)

Every label outside the spoken content carries ``data-content="false"``.
"""

from __future__ import annotations

import re

from bs4 import NavigableString, Tag

from transcript_viewer.core.markers import split_markers
from transcript_viewer.editor.highlights import apply_time_highlights
from transcript_viewer.models import Chapter, Highlight, TimestampMode, Transcript, TranslatedUtterance, Utterance
from transcript_viewer.surface.nodes import NON_CONTENT, add_class, has_class, is_non_content, iter_strings, new_tag, remove_class
from transcript_viewer.utils.config import RenderConfig
from transcript_viewer.utils.timefmt import format_clock

SPEAKER_PALETTE = RenderConfig().speaker_palette
SENTENCE_END_RE = re.compile(r"[.?!]$")
_WS_RE = re.compile(r"\s+")

CONTAINER_CLASS = "transcript-container"
MODE_CLASSES = {
    TimestampMode.UTTERANCE: (),
    TimestampMode.SENTENCE: ("show-sentence-timestamps", "hide-utterance-timestamps"),
    TimestampMode.NONE: ("hide-utterance-timestamps",),
}


def _label(name: str, cls: str, text: str, **attrs: str) -> Tag:
    values = {k.replace("_", "-"): v for k, v in attrs.items()}
    values[NON_CONTENT[0]] = NON_CONTENT[1]
    return new_tag(name, values, cls=cls, text=text)


def speaker_colors(utterances: list[Utterance], palette: list[str] | None = None) -> dict[str, str]:
    """Assign palette colours to speakers in first-seen order, cycling."""
    palette = palette or SPEAKER_PALETTE
    colors: dict[str, str] = {}
    for u in utterances:
        if u.speaker and u.speaker not in colors:
            colors[u.speaker] = palette[len(colors) % len(palette)]
    return colors


def display_name(speaker_map: dict[str, str], speaker: str) -> str:
    return speaker_map.get(speaker) or f"Speaker {speaker}"


def _initial(name: str) -> str:
    return name[:1].upper()


def _header(speaker: str, name: str, color: str, start_ms: int) -> Tag:
    info = new_tag("div", cls="speaker-info")
    info.append(_label("span", "speaker-avatar", _initial(name),
                       data_speaker=speaker, style=f"background-color: {color}"))
    info.append(_label("span", "speaker-label", name, data_speaker=speaker))
    header = new_tag("div", cls="utterance-header")
    header.append(info)
    header.append(_label("span", "utterance-timestamp", format_clock(start_ms)))
    return header


def _edited_content(p: Tag, text: str) -> None:
    for part in split_markers(text):
        if part.is_highlight:
            attrs = {"style": f"background-color: {part.color};"}
            if part.highlight_id:
                attrs["data-highlight-id"] = part.highlight_id
            p.append(new_tag("mark", attrs, text=part.text))
        elif part.text:
            p.append(NavigableString(part.text))


def _word_content(p: Tag, utt: Utterance) -> None:
    new_sentence = True
    last = len(utt.words) - 1
    for j, w in enumerate(utt.words):
        if new_sentence:
            p.append(_label("span", "sentence-timestamp", f"[{format_clock(w.start)}]"))
            p.append(NavigableString(" "))
            new_sentence = False
        p.append(new_tag("span", {"data-start": w.start, "data-end": w.end}, cls="word", text=w.text))
        if j < last:
            p.append(NavigableString(" "))
        if SENTENCE_END_RE.search(w.text):
            new_sentence = True


def render_row(index: int, utt: Utterance, name: str, color: str) -> Tag:
    row = new_tag("div", {
        "data-index": index,
        "data-start": utt.start,
        "data-end": utt.end,
        "data-original-speaker": utt.speaker,
    }, cls="utterance-row")
    row.append(_header(utt.speaker, name, color, utt.start))
    p = new_tag("p", {"data-index": index}, cls="utterance-text")
    if utt.is_edited or not utt.words:
        _edited_content(p, utt.text.strip())
    else:
        _word_content(p, utt)
    row.append(p)
    return row


def render(
    transcript: Transcript,
    speaker_map: dict[str, str] | None = None,
    highlights: list[Highlight] | None = None,
    timestamp_mode: TimestampMode | str = TimestampMode.UTTERANCE,
    palette: list[str] | None = None,
) -> Tag:
    """Render a transcript. Pure: identical inputs give identical markup."""
    speaker_map = transcript.speaker_map if speaker_map is None else speaker_map
    surface = new_tag("div", cls=CONTAINER_CLASS)
    set_timestamp_mode(surface, timestamp_mode)

    if not transcript.utterances:
        surface.append(new_tag("p", cls="empty-state", text="No transcript content available."))
        return surface

    colors = speaker_colors(transcript.utterances, palette)
    for i, utt in enumerate(transcript.utterances):
        speaker = utt.speaker or "A"
        surface.append(render_row(i, utt, display_name(speaker_map, speaker), colors.get(speaker, "")))

    apply_time_highlights(surface, highlights or [])
    return surface


def render_error(message: str) -> Tag:
    """Replacement surface for a transcript that could not be loaded."""
    surface = new_tag("div", cls=CONTAINER_CLASS)
    surface.append(new_tag("div", cls="error-message", text=message))
    return surface


# ── Surface helpers ──────────────────────────────────────────────────────────


def rows(surface: Tag) -> list[Tag]:
    return surface.find_all("div", class_="utterance-row")


def row_text(row: Tag) -> Tag:
    p = row.find("p", class_="utterance-text")
    if p is None:
        raise ValueError("utterance row has no text element")
    return p


def set_timestamp_mode(surface: Tag, mode: TimestampMode | str) -> TimestampMode:
    """Switch timestamp visibility by container class only."""
    mode = TimestampMode(mode)
    for classes in MODE_CLASSES.values():
        for c in classes:
            remove_class(surface, c)
    for c in MODE_CLASSES[mode]:
        add_class(surface, c)
    surface["data-timestamp-mode"] = mode.value
    return mode


def update_speaker_labels(surface: Tag, speaker: str, name: str) -> int:
    """Update every label and avatar of ``speaker`` in place. Returns elements touched."""
    touched = 0
    for el in surface.find_all(attrs={"data-speaker": speaker}):
        if has_class(el, "speaker-label"):
            el.string = name
            touched += 1
        elif has_class(el, "speaker-avatar"):
            el.string = _initial(name)
            touched += 1
    return touched


# ── Side views ───────────────────────────────────────────────────────────────


def render_translation(
    translated: list[TranslatedUtterance],
    original: list[Utterance],
    palette: list[str] | None = None,
) -> Tag:
    """Read-only parallel surface for a translation. Never merged into the transcript."""
    surface = new_tag("div", cls="translation-content")
    if not translated:
        surface.append(new_tag("p", cls="empty-state", text="No content to translate."))
        return surface
    colors = speaker_colors(original, palette)
    for i, t in enumerate(translated):
        speaker = t.speaker or "A"
        row = new_tag("div", {
            "data-index": i,
            "data-start": t.start,
            "data-end": t.end,
            "data-original-speaker": speaker,
        }, cls="utterance-row")
        row.append(_header(speaker, t.display_speaker, colors.get(speaker, ""), t.start))
        row.append(new_tag("p", {"data-index": i}, cls="utterance-text", text=t.text.strip()))
        surface.append(row)
    return surface


def render_summary(summary: str, chapters: list[Chapter]) -> Tag:
    view = new_tag("div", cls="summary-content")
    if summary:
        section = new_tag("div", cls="summary-section")
        section.append(new_tag("h4", text="Summary"))
        section.append(new_tag("div", cls="summary-text", text=summary))
        view.append(section)
    if chapters:
        section = new_tag("div", cls="chapters-section")
        section.append(new_tag("h4", text="Chapters"))
        listing = new_tag("div", cls="chapters-list")
        for ch in chapters:
            item = new_tag("div", {"data-start": ch.start}, cls="chapter-item")
            item.append(new_tag("span", cls="chapter-time", text=format_clock(ch.start)))
            item.append(new_tag("span", cls="chapter-title", text=ch.title))
            listing.append(item)
        section.append(listing)
        view.append(section)
    if not view.contents:
        view.append(new_tag("p", text="No summary available."))
    return view


# ── Copy text ────────────────────────────────────────────────────────────────


def _norm(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def build_copy_text(
    surface: Tag,
    include_utterance_timestamps: bool = False,
    include_sentence_timestamps: bool = False,
) -> str:
    """Plain text of a rendered surface, one ``[ts] Speaker: text`` line per row."""

    def skip(el: Tag) -> bool:
        if has_class(el, "sentence-timestamp"):
            return not include_sentence_timestamps
        return is_non_content(el)

    lines: list[str] = []
    for row in rows(surface):
        p = row.find("p", class_="utterance-text")
        if p is None:
            continue
        text = _norm("".join(iter_strings(p, skip)))
        if not text:
            continue
        parts: list[str] = []
        ts = row.find("span", class_="utterance-timestamp")
        if include_utterance_timestamps and ts is not None and ts.get_text().strip():
            parts.append(f"[{_norm(ts.get_text())}]")
        label = row.find("span", class_="speaker-label")
        if label is not None and label.get_text().strip():
            parts.append(f"{_norm(label.get_text())}:")
        parts.append(text)
        lines.append(_norm(" ".join(parts)))
    return "\n".join(lines)
