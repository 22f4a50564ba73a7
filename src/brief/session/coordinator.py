"""Per-note session coordination.

A :class:`SessionCoordinator` owns the latest in-memory snapshot of one open
note. Edits update the snapshot and arm the autosave scheduler; enhancement
and transcription read the snapshot when they start and apply their result
to whatever the snapshot is when they finish, then persist immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..events import (
    ActionFailed,
    DocumentOpened,
    DocumentClosed,
    EnhanceCompleted,
    EventBus,
    NoticePosted,
)
from ..notes.models import DocumentMeta, EnhanceMode, RecordingState
from ..services.backends import AudioBackend, EnhanceBackend, NoteBackend
from ..services.errors import describe_error
from ..services.settings import Settings
from .autosave import AutosaveScheduler, SaveCallback
from .model_acquisition import ModelAcquisition
from .recording import RecordingStateError, RecordingStateMachine
from .registry import ActionKind, ActionRegistry, RegistrationToken

__all__ = ["SessionCoordinator", "SessionSnapshot", "SessionClosedError", "TRANSCRIPT_SEPARATOR"]

LOGGER = logging.getLogger(__name__)
TRANSCRIPT_SEPARATOR = "\n\n"


class SessionClosedError(RuntimeError):
    """Raised when an operation needs an open session."""


@dataclass(slots=True)
class SessionSnapshot:
    """Latest in-memory state of an open note."""

    document_id: str
    content: str
    title: str
    meta: DocumentMeta
    revision: int = 0

    def meta_for_write(self) -> DocumentMeta:
        return self.meta.with_title(self.title)


class SessionCoordinator:
    """Edits, enhancement and transcription for one open note.

    Events Emitted:
        - DocumentOpened / DocumentClosed
        - EnhanceCompleted: after an enhancement replaced the content
        - ActionFailed / NoticePosted: when enhancement or transcription fails
    """

    def __init__(
        self,
        document_id: str,
        *,
        notes: NoteBackend,
        enhancer: EnhanceBackend,
        audio: AudioBackend,
        registry: ActionRegistry,
        event_bus: EventBus,
        settings: Settings | None = None,
        model: ModelAcquisition | None = None,
        on_saved: SaveCallback | None = None,
    ) -> None:
        self._document_id = document_id
        self._notes = notes
        self._enhancer = enhancer
        self._registry = registry
        self._bus = event_bus
        self._settings = settings or Settings()
        self._on_saved = on_saved
        self._snapshot: SessionSnapshot | None = None
        self._scheduler: AutosaveScheduler | None = None
        self._tokens: list[RegistrationToken] = []
        self._enhancing = False
        self._closed = False
        self.last_error: str | None = None
        self._recording = RecordingStateMachine(
            document_id,
            audio,
            event_bus=event_bus,
            is_model_ready=(lambda: model.is_ready) if model is not None else None,
            transcribe_timeout=self._settings.transcribe_timeout,
            on_error=self._report_error,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def is_open(self) -> bool:
        return self._snapshot is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._require_open()

    @property
    def content(self) -> str:
        return self._require_open().content

    @property
    def title(self) -> str:
        return self._require_open().title

    @property
    def is_enhancing(self) -> bool:
        return self._enhancing

    @property
    def recording_state(self) -> RecordingState:
        return self._recording.state

    @property
    def scheduler(self) -> AutosaveScheduler | None:
        return self._scheduler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> SessionSnapshot:
        """Load the note and register this session's actions."""

        if self._closed:
            raise SessionClosedError(f"Session for {self._document_id} is closed")
        if self._snapshot is not None:
            return self._snapshot

        document = await self._notes.read(self._document_id)
        self._snapshot = SessionSnapshot(
            document_id=document.id,
            content=document.content,
            title=document.meta.title,
            meta=document.meta,
        )
        self._scheduler = AutosaveScheduler(
            self._document_id,
            self._notes,
            delay=self._settings.autosave_delay,
            retries=self._settings.autosave_retries,
            on_saved=self._on_saved,
            event_bus=self._bus,
            last_updated_at=document.meta.updated_at,
        )
        self._tokens = [
            self._registry.register(self._document_id, ActionKind.ENHANCE, self._handle_enhance),
            self._registry.register(self._document_id, ActionKind.RECORD_START, self._handle_record_start),
            self._registry.register(self._document_id, ActionKind.RECORD_STOP, self._handle_record_stop),
        ]
        LOGGER.info("Opened note %s", self._document_id)
        self._bus.publish(DocumentOpened(document_id=self._document_id, title=self._snapshot.title))
        return self._snapshot

    async def close(self, *, flush: bool = True) -> None:
        """Release actions, stop recording and flush or discard pending saves.

        Results of enhancement or transcription that finish after this are
        dropped.
        """

        if self._closed:
            return
        self._closed = True
        for token in self._tokens:
            token.release()
        self._tokens.clear()
        self._recording.cancel()
        if self._scheduler is not None:
            await self._scheduler.close(flush=flush)
        LOGGER.info("Closed note %s", self._document_id)
        self._bus.publish(DocumentClosed(document_id=self._document_id))

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_content(self, text: str) -> None:
        snapshot = self._require_open()
        snapshot.content = text
        snapshot.revision += 1
        self._schedule_save()

    def update_title(self, text: str) -> None:
        snapshot = self._require_open()
        snapshot.title = text
        snapshot.revision += 1
        self._schedule_save()

    async def flush(self) -> bool:
        self._require_open()
        assert self._scheduler is not None
        return await self._scheduler.flush()

    async def hold_autosave(self) -> None:
        """Keep pending edits unwritten until :meth:`resume_autosave` or close."""

        self._require_open()
        assert self._scheduler is not None
        await self._scheduler.hold()

    def resume_autosave(self) -> None:
        if self._scheduler is not None and not self._closed:
            self._scheduler.resume()

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    async def enhance(self, mode: EnhanceMode | str = EnhanceMode.POLISH) -> str | None:
        """Replace the note's content with the backend's transformation of it.

        Blank content is a no-op. A second request while one is running is
        ignored. On failure the content is left alone and the error is
        surfaced; returns the new content on success.
        """

        snapshot = self._require_open()
        mode = EnhanceMode.parse(mode)
        if not snapshot.content.strip():
            LOGGER.debug("Skipping enhancement of empty note %s", self._document_id)
            return None
        if self._enhancing:
            LOGGER.debug("Enhancement already running for %s", self._document_id)
            return None

        submitted = snapshot.content
        provider = self._settings.provider
        credentials = self._settings.credentials_for(provider)
        self._enhancing = True
        self.last_error = None
        try:
            result = await asyncio.wait_for(
                self._enhancer.enhance(submitted, mode, provider, credentials),
                timeout=self._settings.enhance_timeout,
            )
        except asyncio.TimeoutError:
            self._report_enhance_failure("Enhancement timed out")
            return None
        except Exception as exc:
            self._report_enhance_failure(describe_error(exc))
            return None
        finally:
            self._enhancing = False

        if self._closed:
            LOGGER.info("Dropping enhancement result for closed note %s", self._document_id)
            return None

        current = self._require_open()
        if current.content != submitted:
            LOGGER.debug("Enhancement result supersedes edits made meanwhile in %s", self._document_id)
        current.content = result
        current.revision += 1
        await self._write_now()
        self._bus.publish(EnhanceCompleted(document_id=self._document_id, mode=mode.value))
        return result

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def start_recording(self) -> asyncio.Task[bool] | None:
        """Begin capturing audio; returns the tracked start task."""

        self._require_open()
        self.last_error = None
        try:
            return self._recording.start()
        except RecordingStateError as exc:
            self._report_error("record", str(exc))
            return None

    async def stop_recording(self) -> str | None:
        """Stop capturing and append the transcript to the latest content.

        Returns the updated content, or None when there was nothing to add.
        """

        self._require_open()
        try:
            transcript = await self._recording.stop()
        except RecordingStateError as exc:
            self._report_error("record", str(exc))
            return None
        if not transcript:
            return None
        if self._closed:
            LOGGER.info("Dropping transcript for closed note %s", self._document_id)
            return None

        snapshot = self._require_open()
        if snapshot.content:
            snapshot.content = f"{snapshot.content}{TRANSCRIPT_SEPARATOR}{transcript}"
        else:
            snapshot.content = transcript
        snapshot.revision += 1
        await self._write_now()
        return snapshot.content

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_open(self) -> SessionSnapshot:
        if self._snapshot is None or self._closed:
            raise SessionClosedError(f"Session for {self._document_id} is not open")
        return self._snapshot

    def _schedule_save(self) -> None:
        snapshot = self._snapshot
        assert snapshot is not None and self._scheduler is not None
        self._scheduler.schedule(snapshot.content, snapshot.meta_for_write())

    async def _write_now(self) -> None:
        snapshot = self._snapshot
        assert snapshot is not None and self._scheduler is not None
        await self._scheduler.write_now(snapshot.content, snapshot.meta_for_write())

    def _report_error(self, action: str, message: str) -> None:
        self.last_error = message
        LOGGER.warning("%s failed for %s: %s", action.capitalize(), self._document_id, message)
        self._bus.publish(ActionFailed(document_id=self._document_id, action=action, error=message))
        self._bus.publish(NoticePosted(message=message, document_id=self._document_id))

    def _report_enhance_failure(self, message: str) -> None:
        if self._closed:
            LOGGER.info("Dropping enhancement failure for closed note %s: %s", self._document_id, message)
            return
        self._report_error("enhance", message)

    def _handle_enhance(self, payload: Any) -> Any:
        return self.enhance(payload or EnhanceMode.POLISH)

    def _handle_record_start(self, payload: Any) -> Any:
        return self.start_recording()

    def _handle_record_stop(self, payload: Any) -> Any:
        return self.stop_recording()
