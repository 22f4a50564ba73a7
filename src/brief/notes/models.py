"""Note data model shared by the session layer and the backends.

These dataclasses and enums describe a note, its metadata, the listing
projection used by the sidebar, and the small state enumerations that the
session state machines move through.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

DEFAULT_TITLE = "Untitled Meeting"
PREVIEW_LENGTH = 120
_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


def generate_note_id(now: datetime | None = None) -> str:
    """Return a new note identifier such as ``2024-05-01-k3x9a``."""

    stamp = (now or utcnow()).strftime("%Y-%m-%d")
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(5))
    return f"{stamp}-{suffix}"


def parse_timestamp(value: Any, *, fallback: datetime | None = None) -> datetime:
    """Coerce an ISO-8601 string (or datetime) into an aware UTC datetime."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return fallback or utcnow()
    else:
        return fallback or utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class EnhanceMode(Enum):
    """Transformations the AI backend can apply to a note."""

    POLISH = "polish"
    SUMMARIZE = "summarize"
    ACTION_ITEMS = "action_items"
    DECISIONS = "decisions"

    @property
    def label(self) -> str:
        return _MODE_LABELS[self]

    @classmethod
    def parse(cls, value: "EnhanceMode | str") -> "EnhanceMode":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError as exc:
            choices = ", ".join(mode.value for mode in cls)
            raise ValueError(f"Unknown enhance mode '{value}' (expected one of: {choices})") from exc


_MODE_LABELS = {
    EnhanceMode.POLISH: "Polish notes",
    EnhanceMode.SUMMARIZE: "Summarize",
    EnhanceMode.ACTION_ITEMS: "Action items",
    EnhanceMode.DECISIONS: "Decisions",
}


class AIProvider(Enum):
    """Where enhancement requests are routed."""

    LOCAL = "local"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"

    @classmethod
    def parse(cls, value: "AIProvider | str") -> "AIProvider":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown provider: {value}") from exc


class RecordingState(Enum):
    """Recording/transcription lifecycle of one open note.

    Values:
        IDLE: Nothing is being captured.
        RECORDING: Audio capture has been requested and is running.
        TRANSCRIBING: Capture stopped; waiting for the transcript.
    """

    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class ModelStatus(Enum):
    """Availability of the local speech recognition model."""

    CHECKING = "checking"
    MISSING = "missing"
    DOWNLOADING = "downloading"
    READY = "ready"


@dataclass(slots=True)
class DocumentMeta:
    """Metadata stored next to a note's content.

    ``participants`` is kept ordered and free of duplicates.
    """

    title: str = DEFAULT_TITLE
    participants: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.participants = _dedupe(self.participants)

    def with_title(self, title: str) -> "DocumentMeta":
        return replace(self, title=title, participants=list(self.participants), tags=list(self.tags))

    def with_updated_at(self, stamp: datetime) -> "DocumentMeta":
        return replace(self, updated_at=stamp, participants=list(self.participants), tags=list(self.tags))

    def add_participant(self, name: str) -> None:
        cleaned = name.strip()
        if cleaned and cleaned not in self.participants:
            self.participants.append(cleaned)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "participants": list(self.participants),
            "tags": list(self.tags),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, default_title: str = DEFAULT_TITLE) -> "DocumentMeta":
        now = utcnow()
        created = parse_timestamp(payload.get("created_at"), fallback=now)
        return cls(
            title=str(payload.get("title") or default_title),
            participants=_coerce_strings(payload.get("participants")),
            tags=_coerce_strings(payload.get("tags")),
            created_at=created,
            updated_at=parse_timestamp(payload.get("updated_at"), fallback=created),
        )


def default_meta(title: str = DEFAULT_TITLE, *, now: datetime | None = None) -> DocumentMeta:
    stamp = now or utcnow()
    return DocumentMeta(title=title, created_at=stamp, updated_at=stamp)


@dataclass(slots=True)
class Document:
    """A single note: identifier, content text and metadata."""

    id: str
    content: str = ""
    meta: DocumentMeta = field(default_factory=DocumentMeta)


@dataclass(frozen=True, slots=True)
class DocumentSummary:
    """Read-only listing projection of a note.

    Summaries are regenerated by re-listing after a write, never edited.
    """

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    tags: tuple[str, ...] = ()
    preview: str = ""

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            id=document.id,
            title=document.meta.title,
            created_at=document.meta.created_at,
            updated_at=document.meta.updated_at,
            tags=tuple(document.meta.tags),
            preview=document.content[:PREVIEW_LENGTH],
        )


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Answer of the audio backend's model presence check."""

    exists: bool
    path: str = ""


@dataclass(frozen=True, slots=True)
class DownloadProgress:
    downloaded: int
    total: int
    percent: int


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _coerce_strings(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item is not None]


__all__ = [
    "DEFAULT_TITLE",
    "PREVIEW_LENGTH",
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
    "format_timestamp",
    "generate_note_id",
    "parse_timestamp",
    "utcnow",
]
