"""Shared pytest fixtures and in-memory backend fakes."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import pytest

from brief.events import EventBus, ModelDownloadProgress
from brief.notes.models import Document, DocumentMeta, DocumentSummary, ModelInfo, default_meta
from brief.services.errors import NoteNotFoundError, PersistenceError
from brief.services.settings import Settings


class InMemoryNotes:
    """Note backend keeping documents in a dict and recording every write."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.writes: list[tuple[str, str, DocumentMeta]] = []
        self.deleted: list[str] = []
        self.fail_writes = 0
        self.write_gate: asyncio.Event | None = None

    def seed(self, document_id: str, content: str = "", title: str = "Untitled Meeting") -> Document:
        document = Document(id=document_id, content=content, meta=default_meta(title))
        self.documents[document_id] = document
        return document

    async def list(self) -> list[DocumentSummary]:
        summaries = [DocumentSummary.from_document(doc) for doc in self.documents.values()]
        summaries.sort(key=lambda item: item.updated_at, reverse=True)
        return summaries

    async def read(self, document_id: str) -> Document:
        document = self.documents.get(document_id)
        if document is None:
            raise NoteNotFoundError(document_id)
        return Document(id=document.id, content=document.content, meta=document.meta)

    async def write(self, document_id: str, content: str, meta: DocumentMeta) -> None:
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise PersistenceError("disk full")
        self.writes.append((document_id, content, meta))
        self.documents[document_id] = Document(id=document_id, content=content, meta=meta)

    async def delete(self, document_id: str) -> None:
        self.deleted.append(document_id)
        self.documents.pop(document_id, None)

    def contents_written(self, document_id: str | None = None) -> list[str]:
        return [content for doc_id, content, _ in self.writes if document_id in (None, doc_id)]


class FakeEnhancer:
    """Transformation backend returning a canned result, optionally gated."""

    def __init__(self, result: str = "Enhanced", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, Any, Any, Any]] = []

    async def enhance(self, content: str, mode: Any, provider: Any, credentials: Any = None) -> str:
        self.calls.append((content, mode, provider, credentials))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


class FakeAudio:
    """Audio backend with scripted model presence, download and transcripts."""

    def __init__(self, bus: EventBus | None = None, *, model_exists: bool = True) -> None:
        self.bus = bus
        self.model_exists = model_exists
        self.progress: Sequence[int] = (10, 50, 100)
        self.download_error: Exception | None = None
        self.download_gate: asyncio.Event | None = None
        self.start_error: Exception | None = None
        self.start_gate: asyncio.Event | None = None
        self.transcript = "Hello"
        self.transcribe_error: Exception | None = None
        self.transcribe_gate: asyncio.Event | None = None
        self.started = 0
        self.stopped = 0

    async def check_model(self) -> ModelInfo:
        return ModelInfo(exists=self.model_exists, path="/models/ggml-base.en.bin")

    async def download_model(self) -> None:
        for percent in self.progress:
            if self.bus is not None:
                self.bus.publish(ModelDownloadProgress(downloaded=percent, total=100, percent=percent))
            await asyncio.sleep(0)
        if self.download_gate is not None:
            await self.download_gate.wait()
        if self.download_error is not None:
            raise self.download_error
        self.model_exists = True

    async def start_recording(self) -> None:
        self.started += 1
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error

    async def stop_and_transcribe(self) -> str:
        self.stopped += 1
        if self.transcribe_gate is not None:
            await self.transcribe_gate.wait()
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcript


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def notes() -> InMemoryNotes:
    return InMemoryNotes()


@pytest.fixture
def enhancer() -> FakeEnhancer:
    return FakeEnhancer()


@pytest.fixture
def audio(bus: EventBus) -> FakeAudio:
    return FakeAudio(bus)


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(autosave_delay=0.02, autosave_retries=2, enhance_timeout=2.0, transcribe_timeout=2.0)


@pytest.fixture
def collect(bus: EventBus):
    """Subscribe a recorder for the given event types and return its list."""

    def _collect(*event_types: type) -> list[Any]:
        received: list[Any] = []
        for event_type in event_types:
            bus.subscribe(event_type, received.append)
        return received

    return _collect
