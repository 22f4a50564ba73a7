"""Service layer: backend interfaces, concrete adapters and settings."""

from .backends import AudioBackend, EnhanceBackend, NoteBackend, Recorder
from .errors import (
    BackendError,
    EnhanceError,
    ModelDownloadError,
    NoteNotFoundError,
    PersistenceError,
    TranscriptionError,
)

__all__ = [
    "AudioBackend",
    "EnhanceBackend",
    "NoteBackend",
    "Recorder",
    "BackendError",
    "EnhanceError",
    "ModelDownloadError",
    "NoteNotFoundError",
    "PersistenceError",
    "TranscriptionError",
]
