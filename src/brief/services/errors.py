"""Error types raised by the backends and surfaced by the session layer."""

from __future__ import annotations

__all__ = [
    "BackendError",
    "PersistenceError",
    "NoteNotFoundError",
    "EnhanceError",
    "TranscriptionError",
    "ModelDownloadError",
    "describe_error",
]


class BackendError(Exception):
    """Base class for failures reported by an external backend.

    The string form is the short, user-visible message.
    """


class PersistenceError(BackendError):
    """The note backend could not list, read, write or delete a note."""


class NoteNotFoundError(PersistenceError):
    """A note with the requested identifier does not exist."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Note '{document_id}' not found")
        self.document_id = document_id


class EnhanceError(BackendError):
    """The transformation backend rejected or failed a request."""


class TranscriptionError(BackendError):
    """Recording could not start, or its transcript could not be produced."""


class ModelDownloadError(BackendError):
    """The speech model could not be fetched."""


def describe_error(exc: BaseException) -> str:
    """Return a short user-facing message for ``exc``."""

    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__
