"""Note data model."""

from .models import (
    AIProvider,
    Document,
    DocumentMeta,
    DocumentSummary,
    DownloadProgress,
    EnhanceMode,
    ModelInfo,
    ModelStatus,
    RecordingState,
    default_meta,
    generate_note_id,
)

__all__ = [
    "AIProvider",
    "Document",
    "DocumentMeta",
    "DocumentSummary",
    "DownloadProgress",
    "EnhanceMode",
    "ModelInfo",
    "ModelStatus",
    "RecordingState",
    "default_meta",
    "generate_note_id",
]
