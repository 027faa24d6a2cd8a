"""Configuration management with YAML support and pydantic models."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_HIGHLIGHT_COLOR = "#ffeb3b"


class EditorConfig(BaseModel):
    autosave_interval_s: float = Field(default=120.0, ge=0)  # 0 = autosave off
    search_debounce_ms: int = Field(default=300, ge=0)
    min_query_length: int = Field(default=2, ge=1)
    undo_limit: int = Field(default=20, ge=1)


class HighlightConfig(BaseModel):
    default_color: str = DEFAULT_HIGHLIGHT_COLOR
    palette: list[str] = ["#ffeb3b", "#a7ffeb", "#ff9f9c", "#b4a7d6"]


class RenderConfig(BaseModel):
    timestamp_mode: str = "utterance"  # utterance | sentence | none
    speaker_palette: list[str] = [
        "#3B82F6", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#d946ef", "#14b8a6",
    ]


class PlaybackConfig(BaseModel):
    speeds: list[float] = [1.0, 1.25, 1.5, 2.0, 0.75]
    skip_seconds: float = 5.0
    sticky_header_px: int = 0
    scroll_margin_px: int = 100


class ServiceConfig(BaseModel):
    backend: str = "local"  # local | http
    base_url: str = "http://127.0.0.1:8000"
    timeout_s: float = 30.0
    api_token: str = ""  # Env: TRANSCRIPT_API_TOKEN


class StorageConfig(BaseModel):
    data_dir: str = "data/transcripts"
    log_dir: str = "data/logs"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["*"]


class AppConfig(BaseModel):
    editor: EditorConfig = EditorConfig()
    highlights: HighlightConfig = HighlightConfig()
    render: RenderConfig = RenderConfig()
    playback: PlaybackConfig = PlaybackConfig()
    service: ServiceConfig = ServiceConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        candidates = [Path("config.yaml"), Path("config.yml"), Path("transcript-viewer.yaml")]
        for c in candidates:
            if c.exists():
                path = c
                break
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            return AppConfig(**data)
    return AppConfig()


def merge_cli_overrides(cfg: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    data = cfg.model_dump()
    for key, val in overrides.items():
        if val is None:
            continue
        parts = key.split(".")
        d = data
        for p in parts[:-1]:
            d = d.setdefault(p, {})
        d[parts[-1]] = val
    return AppConfig(**data)


DEFAULT_CONFIG_YAML = """\
# transcript-viewer configuration

editor:
  autosave_interval_s: 120   # 0 = autosave off
  search_debounce_ms: 300
  min_query_length: 2
  undo_limit: 20

highlights:
  default_color: "#ffeb3b"
  palette: ["#ffeb3b", "#a7ffeb", "#ff9f9c", "#b4a7d6"]

render:
  timestamp_mode: utterance  # utterance | sentence | none

playback:
  speeds: [1.0, 1.25, 1.5, 2.0, 0.75]
  skip_seconds: 5.0
  sticky_header_px: 0
  scroll_margin_px: 100

service:
  backend: local             # local | http
  base_url: "http://127.0.0.1:8000"
  timeout_s: 30.0
  api_token: ""              # Env: TRANSCRIPT_API_TOKEN

storage:
  data_dir: data/transcripts
  log_dir: data/logs           # rotating app.log

server:
  host: 127.0.0.1
  port: 8000
  cors_origins: ["*"]
"""
