"""Interfaces the session layer consumes from its external backends."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..notes.models import (
    AIProvider,
    Document,
    DocumentMeta,
    DocumentSummary,
    EnhanceMode,
    ModelInfo,
)

__all__ = ["NoteBackend", "EnhanceBackend", "AudioBackend", "Recorder"]


@runtime_checkable
class NoteBackend(Protocol):
    """Stores notes; each write is atomic on the backend's side."""

    async def list(self) -> Sequence[DocumentSummary]:
        ...

    async def read(self, document_id: str) -> Document:
        ...

    async def write(self, document_id: str, content: str, meta: DocumentMeta) -> None:
        ...

    async def delete(self, document_id: str) -> None:
        ...


@runtime_checkable
class EnhanceBackend(Protocol):
    """Turns note content into its enhanced form."""

    async def enhance(
        self,
        content: str,
        mode: EnhanceMode,
        provider: AIProvider,
        credentials: str | None = None,
    ) -> str:
        ...


@runtime_checkable
class AudioBackend(Protocol):
    """Speech model management plus recording and transcription.

    ``download_model`` reports progress through
    :class:`~brief.events.ModelDownloadProgress` events on the shared bus.
    """

    async def check_model(self) -> ModelInfo:
        ...

    async def download_model(self) -> None:
        ...

    async def start_recording(self) -> None:
        ...

    async def stop_and_transcribe(self) -> str:
        ...


@runtime_checkable
class Recorder(Protocol):
    """Audio capture and speech recognition engine used by the audio backend."""

    async def start(self) -> None:
        ...

    async def stop_and_transcribe(self, model_path: str) -> str:
        ...
