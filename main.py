"""Transcript Viewer API server.

Serves the /api transcript, highlight and export routes over the configured
storage directory. Start with:
    python main.py
    python main.py --config config.yaml --port 8080
    transcript-viewer serve
"""

from __future__ import annotations

import argparse
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from transcript_viewer.api.routes import get_service, router as api_router
from transcript_viewer.utils.config import load_config
from transcript_viewer.utils.logging import Verbosity, debug, info, set_request_id, setup_logging, success

load_dotenv()

_cfg = load_config(os.environ.get("TRANSCRIPT_VIEWER_CONFIG") or None)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an x-request-id (client supplied or generated) for log correlation."""

    async def dispatch(self, request: Request, call_next):
        rid = set_request_id(request.headers.get("x-request-id", ""))
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        debug(f"{request.method} {request.url.path} → {response.status_code}")
        return response


@asynccontextmanager
async def lifespan(application: FastAPI):
    setup_logging(Verbosity.NORMAL, _cfg.storage.log_dir)
    service = get_service()
    auth = "bearer token" if os.environ.get("TRANSCRIPT_API_TOKEN") else "open"
    info(f"Transcripts in {_cfg.storage.data_dir}, auth: {auth}")
    success(f"Transcript Viewer ready ({service.name} backend)")

    yield

    await service.close()


app = FastAPI(
    title="Transcript Viewer",
    description="Transcript editing, highlighting and export service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cfg.server.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
    expose_headers=["x-request-id"],
)
app.add_middleware(RequestIdMiddleware)

app.include_router(api_router)


# ── CLI Entry Point ───────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Transcript Viewer API server")
    parser.add_argument("--config", help="YAML config file (default: ./config.yaml if present)")
    parser.add_argument("--host", help=f"Bind host (default: {_cfg.server.host})")
    parser.add_argument("--port", type=int, help=f"Port (default: {_cfg.server.port})")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    cfg = _cfg
    if args.config:
        # The app module reads the config at import, including in reload workers.
        os.environ["TRANSCRIPT_VIEWER_CONFIG"] = args.config
        cfg = load_config(args.config)

    import uvicorn
    uvicorn.run(
        "main:app",
        host=args.host or cfg.server.host,
        port=args.port or cfg.server.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
