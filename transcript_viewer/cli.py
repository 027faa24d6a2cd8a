"""Main CLI application with typer subcommands."""

from __future__ import annotations

import asyncio
import json
import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from transcript_viewer.core.store import load_transcript
from transcript_viewer.editor.session import EditorSession
from transcript_viewer.errors import ViewerError
from transcript_viewer.export.formats import ExportOptions
from transcript_viewer.service.base import TranscriptService
from transcript_viewer.service.http import HttpTranscriptService
from transcript_viewer.service.local import LocalTranscriptService
from transcript_viewer.surface.html import to_html
from transcript_viewer.utils.config import DEFAULT_CONFIG_YAML, AppConfig, load_config, merge_cli_overrides
from transcript_viewer.utils.logging import Verbosity, console, error, info, setup_logging, success
from transcript_viewer.utils.timefmt import format_clock

load_dotenv()

app = typer.Typer(
    name="transcript-viewer",
    help="Edit, highlight, search and export speaker-attributed transcripts.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


# ── Enums ─────────────────────────────────────────────────────────────────────

class TimestampModeOpt(str, Enum):
    utterance = "utterance"
    sentence = "sentence"
    none = "none"


class ExportFormatOpt(str, Enum):
    txt = "txt"
    srt = "srt"
    vtt = "vtt"
    json = "json"
    html = "html"


class ParagraphModeOpt(str, Enum):
    utterance = "utterance"
    speaker = "speaker"
    continuous = "continuous"


# ── Helper functions ──────────────────────────────────────────────────────────

def _load_cfg(config: Optional[Path], backend: Optional[str] = None) -> AppConfig:
    cfg = load_config(config)
    setup_logging(Verbosity.NORMAL, cfg.storage.log_dir)
    # Sessions driven from the CLI are short-lived; no background autosave.
    return merge_cli_overrides(cfg, {"service.backend": backend, "editor.autosave_interval_s": 0})


def _get_service(cfg: AppConfig) -> TranscriptService:
    if cfg.service.backend == "local":
        return LocalTranscriptService(cfg.storage.data_dir)
    elif cfg.service.backend == "http":
        return HttpTranscriptService(cfg.service.base_url, cfg.service.api_token, cfg.service.timeout_s)
    else:
        raise typer.BadParameter(f"Unknown backend: {cfg.service.backend}")


def _confirm(yes: bool):
    def ask(message: str) -> bool:
        return yes or Confirm.ask(escape(message), default=False)
    return ask


async def _open(transcript_id: str, cfg: AppConfig, yes: bool = False) -> EditorSession:
    service = _get_service(cfg)
    session = await EditorSession.open(transcript_id, service, cfg, confirm=_confirm(yes))
    if session.load_error is not None:
        await session.close()
        await service.close()
        raise typer.Exit(1)
    return session


async def _finish(session: EditorSession) -> None:
    await session.close()
    await session.service.close()


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command(name="import")
def import_transcript(
    input: Annotated[Path, typer.Argument(help="Transcript JSON (load response shape)")],
    transcript_id: Annotated[Optional[str], typer.Option("--id", help="Id to store it under")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Import a transcript JSON file into the local store."""
    cfg = _load_cfg(config)
    if not input.exists():
        error(f"Input not found: {input}")
        raise typer.Exit(1)
    service = LocalTranscriptService(cfg.storage.data_dir)
    try:
        tid = service.put_transcript(json.loads(input.read_text(encoding="utf-8")), transcript_id or input.stem)
    except (ViewerError, json.JSONDecodeError) as e:
        error(f"Import failed: {escape(str(e))}")
        raise typer.Exit(1)
    success(f"Imported {input.name} as {tid}")


@app.command()
def show(
    transcript_id: Annotated[str, typer.Argument()],
    backend: Annotated[Optional[str], typer.Option("--backend", "-b", help="local | http")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Print a transcript as a table."""
    cfg = _load_cfg(config, backend)

    async def run() -> None:
        service = _get_service(cfg)
        try:
            t = load_transcript(await service.load(transcript_id), transcript_id)
            highlights = await service.list_highlights(transcript_id)
        except ViewerError as e:
            error(f"Could not load {escape(transcript_id)}: {escape(str(e))}")
            raise typer.Exit(1)
        finally:
            await service.close()

        table = Table(title=escape(t.title or transcript_id))
        table.add_column("#", justify="right", style="dim")
        table.add_column("Time", style="cyan")
        table.add_column("Speaker", style="speaker")
        table.add_column("Text")
        table.add_column("Edited", justify="center")
        for i, u in enumerate(t.utterances):
            name = t.speaker_map.get(u.speaker) or f"Speaker {u.speaker}"
            table.add_row(str(i), format_clock(u.start), escape(name), escape(u.plain_text),
                          "✓" if u.is_edited else "")
        console.print(table)
        info(f"{len(t.utterances)} utterances, {len(highlights)} highlights")

    asyncio.run(run())


@app.command()
def render(
    transcript_id: Annotated[str, typer.Argument()],
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Write markup to file")] = None,
    mode: Annotated[TimestampModeOpt, typer.Option("--mode", "-m")] = TimestampModeOpt.utterance,
    backend: Annotated[Optional[str], typer.Option("--backend", "-b")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Render the transcript surface to HTML markup."""
    cfg = _load_cfg(config, backend)

    async def run() -> None:
        session = await _open(transcript_id, cfg)
        try:
            session.set_timestamp_mode(mode.value)
            markup = to_html(session.surface)
        finally:
            await _finish(session)
        if output:
            output.write_text(markup, encoding="utf-8")
            success(f"Rendered {transcript_id} → {output}")
        else:
            console.print(markup, markup=False, highlight=False)

    asyncio.run(run())


@app.command()
def search(
    transcript_id: Annotated[str, typer.Argument()],
    query: Annotated[str, typer.Argument()],
    match_case: Annotated[bool, typer.Option("--match-case", "-c")] = False,
    backend: Annotated[Optional[str], typer.Option("--backend", "-b")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Find matches in the rendered transcript."""
    cfg = _load_cfg(config, backend)

    async def run() -> None:
        session = await _open(transcript_id, cfg)
        try:
            count = session.search(query, match_case)
            rows: list[int] = []
            for _ in range(count):
                idx = session.search_engine.current_row_index()
                if idx is not None and idx not in rows:
                    rows.append(idx)
                session.next_match()
            store = session.store
            for idx in rows:
                u = store.get_utterance(idx)
                console.print(f"[dim]{idx:>4}[/dim] [cyan]{format_clock(u.start)}[/cyan] "
                              f"[speaker]{escape(store.display_name(u.speaker))}[/speaker]: {escape(u.plain_text)}")
            info(f"{session.search_engine.counter_text() or 'No results'} for {escape(query)!r}")
        finally:
            await _finish(session)

    asyncio.run(run())


@app.command()
def replace(
    transcript_id: Annotated[str, typer.Argument()],
    find: Annotated[str, typer.Argument()],
    replacement: Annotated[str, typer.Argument()],
    match_case: Annotated[bool, typer.Option("--match-case", "-c")] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
    backend: Annotated[Optional[str], typer.Option("--backend", "-b")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Replace every occurrence in the transcript and save."""
    cfg = _load_cfg(config, backend)

    async def run() -> int:
        session = await _open(transcript_id, cfg, yes)
        try:
            count = session.replace_all(find, replacement, match_case)
            if count:
                result = await session.save(notify=True)
                if result.error is not None:
                    return 1
            return 0
        finally:
            await _finish(session)

    raise typer.Exit(asyncio.run(run()))


@app.command()
def export(
    transcript_id: Annotated[str, typer.Argument()],
    fmt: Annotated[ExportFormatOpt, typer.Option("--format", "-f")] = ExportFormatOpt.txt,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output file or directory")] = None,
    timestamps: Annotated[bool, typer.Option("--timestamps/--no-timestamps")] = False,
    timestamp_mode: Annotated[TimestampModeOpt, typer.Option("--timestamp-mode")] = TimestampModeOpt.utterance,
    speakers: Annotated[bool, typer.Option("--speakers/--no-speakers")] = True,
    highlights: Annotated[bool, typer.Option("--highlights/--no-highlights")] = False,
    paragraph: Annotated[ParagraphModeOpt, typer.Option("--paragraph")] = ParagraphModeOpt.utterance,
    backend: Annotated[Optional[str], typer.Option("--backend", "-b")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Export a transcript to txt, srt, vtt, json or html."""
    cfg = _load_cfg(config, backend)
    options = ExportOptions(
        format=fmt.value,
        include_timestamps=timestamps,
        include_speakers=speakers,
        include_highlights=highlights,
        timestamp_mode=timestamp_mode.value,
        paragraph_mode=paragraph.value,
    )

    async def run() -> None:
        session = await _open(transcript_id, cfg)
        try:
            result = await session.export(options)
        except ViewerError as e:
            error(f"Export failed: {escape(str(e))}")
            raise typer.Exit(1)
        finally:
            await _finish(session)

        if result.content is None:
            info(f"Download: {result.download_url}")
            return
        if output is None:
            console.print(result.content, markup=False, highlight=False)
            return
        target = output / result.filename if output.is_dir() else output
        target.write_text(result.content, encoding="utf-8")
        success(f"Exported {target}")

    asyncio.run(run())


@app.command()
def serve(
    host: Annotated[Optional[str], typer.Option("--host")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p")] = None,
    reload: Annotated[bool, typer.Option("--reload")] = False,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Run the transcript API server."""
    cfg = _load_cfg(config)
    if config:
        os.environ["TRANSCRIPT_VIEWER_CONFIG"] = str(config)
    import uvicorn
    uvicorn.run(
        "main:app",
        host=host or cfg.server.host,
        port=port or cfg.server.port,
        reload=reload,
        log_level="info",
    )


# ── INIT CONFIG ───────────────────────────────────────────────────────────────

@app.command(name="init")
def init_config():
    """Generate a default config.yaml in the current directory."""
    setup_logging(Verbosity.NORMAL)
    p = Path("config.yaml")
    if p.exists():
        if not Confirm.ask("config.yaml exists. Overwrite?", default=False):
            raise typer.Exit(0)
    p.write_text(DEFAULT_CONFIG_YAML)
    success(f"Created {p}")


# ── ENTRY POINT ───────────────────────────────────────────────────────────────

def app_entry():
    app()


if __name__ == "__main__":
    app_entry()
