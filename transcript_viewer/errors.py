"""Error taxonomy shared by the store, editor, services and API."""

from __future__ import annotations


class ViewerError(Exception):
    """Base class for every error raised by transcript_viewer."""


class LoadError(ViewerError):
    """Transcript could not be loaded. Fatal for the session, never retried."""


class InvalidShape(LoadError):
    """Payload is missing ``data.utterances`` or has an unusable structure."""


class NetworkError(ViewerError):
    """A request to the transcript service failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermissionDeniedError(ViewerError):
    """Save, delete or translate attempted without rights."""


class ValidationError(ViewerError):
    """User input rejected: empty query, invalid highlight range, bad name."""


class DuplicateSpeakerName(ValidationError):
    def __init__(self, name: str, owner: str):
        super().__init__(f"Display name '{name}' is already used by speaker {owner}")
        self.name = name
        self.owner = owner


class SurfaceRangeError(ViewerError):
    """A range operation on the rendered surface could not be performed."""
