"""FastAPI routes for the transcript service."""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException, Request

from transcript_viewer.api.models import (
    ChapterInfo,
    ExportRequest,
    ExportResponse,
    HealthResponse,
    HighlightCreate,
    HighlightInfo,
    SaveTranscriptRequest,
    SuccessResponse,
    SurfaceUpdate,
    SurfaceUpdateResponse,
    SummaryResponse,
    TitleUpdate,
    TranslatedUtteranceInfo,
    TranslateRequest,
    TranslateResponse,
)
from transcript_viewer.editor.reconcile import SaveOutcome
from transcript_viewer.editor.session import EditorSession
from transcript_viewer.errors import (
    InvalidShape,
    LoadError,
    NetworkError,
    PermissionDeniedError,
    ValidationError,
    ViewerError,
)
from transcript_viewer.export.formats import ExportOptions
from transcript_viewer.models import Highlight, Utterance
from transcript_viewer.service.base import TranscriptService, sanitize_utterances
from transcript_viewer.service.local import LocalTranscriptService
from transcript_viewer.utils.config import load_config, merge_cli_overrides
from transcript_viewer.utils.logging import info, warn

_service: TranscriptService | None = None


def set_service(service: TranscriptService | None) -> None:
    global _service
    _service = service


def get_service() -> TranscriptService:
    global _service
    if _service is None:
        cfg = load_config(os.environ.get("TRANSCRIPT_VIEWER_CONFIG") or None)
        _service = LocalTranscriptService(cfg.storage.data_dir)
    return _service


async def verify_token(request: Request) -> None:
    """Require ``Authorization: Bearer <TRANSCRIPT_API_TOKEN>`` when a token is configured."""
    token = os.environ.get("TRANSCRIPT_API_TOKEN", "")
    if not token:
        return
    if request.headers.get("authorization", "") != f"Bearer {token}":
        raise HTTPException(401, "Invalid or missing API token")


router = APIRouter(prefix="/api", tags=["transcripts"])
protected = APIRouter(dependencies=[Depends(verify_token)])


def _http_error(e: ViewerError) -> HTTPException:
    if isinstance(e, InvalidShape):
        return HTTPException(422, str(e))
    if isinstance(e, LoadError):
        return HTTPException(404, str(e))
    if isinstance(e, PermissionDeniedError):
        return HTTPException(403, str(e) or "Permission denied")
    if isinstance(e, ValidationError):
        return HTTPException(422, str(e))
    if isinstance(e, NetworkError) and e.status_code:
        return HTTPException(e.status_code, str(e))
    warn(f"Service error: {e}")
    return HTTPException(502, str(e))


def _utterances(raw: list[dict]) -> list[Utterance]:
    return [Utterance.from_dict(u) for u in sanitize_utterances(raw)]


# ── Health ────────────────────────────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse)
async def health(service: TranscriptService = Depends(get_service)):
    return HealthResponse(status="ok", backend=service.name)


# ── Transcripts ───────────────────────────────────────────────────────────────

@protected.get("/transcripts/{transcript_id}")
async def get_transcript(transcript_id: str, service: TranscriptService = Depends(get_service)):
    try:
        doc = await service.load(transcript_id)
    except ViewerError as e:
        raise _http_error(e)
    doc.pop("owner", None)
    return doc


@protected.put("/transcripts/{transcript_id}", response_model=SuccessResponse)
async def save_transcript(transcript_id: str, req: SaveTranscriptRequest,
                          service: TranscriptService = Depends(get_service)):
    utterances = _utterances(req.transcript_data.utterances)
    try:
        await service.save(transcript_id, utterances, req.speaker_map, req.notify)
    except ViewerError as e:
        raise _http_error(e)
    if req.notify:
        info(f"Transcript {transcript_id} saved ({len(utterances)} utterances)")
    return SuccessResponse()


@protected.put("/transcripts/{transcript_id}/surface", response_model=SurfaceUpdateResponse)
async def apply_surface_edits(transcript_id: str, req: SurfaceUpdate,
                              service: TranscriptService = Depends(get_service)):
    """Reconcile HTML edited in a host UI against the stored transcript and save it."""
    cfg = merge_cli_overrides(load_config(os.environ.get("TRANSCRIPT_VIEWER_CONFIG") or None),
                              {"editor.autosave_interval_s": 0})
    session = await EditorSession.open(transcript_id, service, cfg)
    try:
        if session.load_error is not None:
            raise _http_error(session.load_error)
        if not session.can_edit:
            raise HTTPException(403, "You do not have permission to edit this transcript.")
        await session.toggle_edit()
        try:
            session.apply_edited_html(req.html, req.row_index)
        except ViewerError as e:
            raise _http_error(e)
        result = await session.save(notify=req.notify)
    finally:
        await session.close()
    if result.outcome == SaveOutcome.FAILURE and result.error is not None:
        raise _http_error(result.error)
    return SurfaceUpdateResponse(changed_rows=result.changed_indices)


@protected.put("/transcripts/{transcript_id}/title", response_model=SuccessResponse)
async def update_title(transcript_id: str, req: TitleUpdate, service: TranscriptService = Depends(get_service)):
    try:
        await service.save_title(transcript_id, req.title)
    except ViewerError as e:
        raise _http_error(e)
    return SuccessResponse()


@protected.delete("/transcripts/{transcript_id}", response_model=SuccessResponse)
async def delete_transcript(transcript_id: str, service: TranscriptService = Depends(get_service)):
    try:
        await service.delete_transcript(transcript_id)
    except ViewerError as e:
        raise _http_error(e)
    return SuccessResponse()


# ── Highlights ────────────────────────────────────────────────────────────────

@protected.get("/transcripts/{transcript_id}/highlights", response_model=list[HighlightInfo])
async def list_highlights(transcript_id: str, service: TranscriptService = Depends(get_service)):
    try:
        highlights = await service.list_highlights(transcript_id)
    except ViewerError as e:
        raise _http_error(e)
    return [HighlightInfo(**h.to_dict()) for h in highlights]


@protected.post("/transcripts/{transcript_id}/highlights", response_model=SuccessResponse)
async def create_highlight(transcript_id: str, req: HighlightCreate,
                           service: TranscriptService = Depends(get_service)):
    if (req.start_time is None) != (req.end_time is None):
        raise HTTPException(422, "start_time and end_time must be given together")
    if req.start_time is not None and req.end_time is not None and req.start_time > req.end_time:
        raise HTTPException(422, "start_time is after end_time")
    h = Highlight(
        id="",
        text=req.text.strip(),
        color=req.color,
        start_time=req.start_time,
        end_time=req.end_time,
        note=req.note,
    )
    try:
        hid = await service.create_highlight(transcript_id, h)
    except ViewerError as e:
        raise _http_error(e)
    return SuccessResponse(id=hid)


@protected.delete("/highlights/{highlight_id}", response_model=SuccessResponse)
async def delete_highlight(highlight_id: str, service: TranscriptService = Depends(get_service)):
    try:
        await service.delete_highlight(highlight_id)
    except ViewerError as e:
        raise _http_error(e)
    return SuccessResponse()


# ── Derived views ─────────────────────────────────────────────────────────────

@protected.post("/transcripts/{transcript_id}/export", response_model=ExportResponse)
async def export_transcript(transcript_id: str, req: ExportRequest,
                            service: TranscriptService = Depends(get_service)):
    options = ExportOptions(
        format=req.format.value,
        include_timestamps=req.include_timestamps,
        include_speakers=req.include_speakers,
        include_highlights=req.include_highlights,
        timestamp_mode=req.timestamp_mode.value,
        paragraph_mode=req.paragraph_mode.value,
    )
    utterances = _utterances(req.transcript_data.utterances) if req.transcript_data else None
    try:
        result = await service.export(transcript_id, options, utterances=utterances, title=req.title)
    except ViewerError as e:
        raise _http_error(e)
    return ExportResponse(**result.to_dict())


@protected.get("/transcripts/{transcript_id}/summary", response_model=SummaryResponse)
async def get_summary(transcript_id: str, service: TranscriptService = Depends(get_service)):
    try:
        summary, chapters = await service.summary(transcript_id)
    except ViewerError as e:
        raise _http_error(e)
    return SummaryResponse(summary=summary, chapters=[ChapterInfo(**c.to_dict()) for c in chapters])


@protected.post("/transcripts/{transcript_id}/translate", response_model=TranslateResponse)
async def translate_transcript(transcript_id: str, req: TranslateRequest,
                               service: TranscriptService = Depends(get_service)):
    try:
        translated = await service.translate(transcript_id, req.target_lang, req.speaker_map)
    except ViewerError as e:
        raise _http_error(e)
    return TranslateResponse(translated_utterances=[TranslatedUtteranceInfo(**t.to_dict()) for t in translated])


router.include_router(protected)
