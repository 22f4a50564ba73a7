"""Workspace owning the note list and the single open session."""

from __future__ import annotations

import asyncio
import inspect
import logging

from ..events import DocumentCreated, DocumentDeleted, DocumentListRefreshed, EventBus, NoticePosted
from ..notes.models import DEFAULT_TITLE, DocumentSummary, RecordingState, default_meta, generate_note_id
from ..services.backends import AudioBackend, EnhanceBackend, NoteBackend
from ..services.errors import describe_error
from ..services.settings import Settings
from .control_surface import ControlSurface
from .coordinator import SessionCoordinator
from .model_acquisition import ModelAcquisition
from .registry import ActionRegistry

__all__ = ["NotesWorkspace"]

LOGGER = logging.getLogger(__name__)


class NotesWorkspace:
    """Lists notes, creates and deletes them, and switches the open one.

    At most one :class:`SessionCoordinator` is open at a time. Switching to
    another note flushes the current one's pending save first; deleting the
    open note discards it.

    Events Emitted:
        - DocumentCreated / DocumentDeleted
        - DocumentListRefreshed: after each list reload
    """

    def __init__(
        self,
        notes: NoteBackend,
        enhancer: EnhanceBackend,
        audio: AudioBackend,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._notes = notes
        self._enhancer = enhancer
        self._audio = audio
        self._settings = settings or Settings()
        self._bus = event_bus or EventBus()
        self._registry = ActionRegistry()
        self._model = ModelAcquisition(audio, self._bus, download_timeout=self._settings.download_timeout)
        self._summaries: tuple[DocumentSummary, ...] = ()
        self._loading = True
        self._active: SessionCoordinator | None = None
        self._switch_lock = asyncio.Lock()

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    @property
    def model(self) -> ModelAcquisition:
        return self._model

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def summaries(self) -> tuple[DocumentSummary, ...]:
        return self._summaries

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def active_session(self) -> SessionCoordinator | None:
        return self._active

    @property
    def active_id(self) -> str | None:
        return self._active.document_id if self._active is not None else None

    async def start(self) -> None:
        """Load the note list and check for the speech model."""

        await self.refresh()
        await self._model.check()

    async def refresh(self) -> tuple[DocumentSummary, ...]:
        try:
            summaries = await self._notes.list()
        finally:
            self._loading = False
        self._summaries = tuple(summaries)
        self._bus.publish(DocumentListRefreshed(summaries=self._summaries))
        return self._summaries

    async def create_note(self, title: str = DEFAULT_TITLE) -> SessionCoordinator:
        """Persist a blank note, refresh the list and open the new note."""

        document_id = generate_note_id()
        await self._notes.write(document_id, "", default_meta(title or DEFAULT_TITLE))
        LOGGER.info("Created note %s", document_id)
        self._bus.publish(DocumentCreated(document_id=document_id))
        await self.refresh()
        session = await self.select(document_id)
        assert session is not None
        return session

    async def select(self, document_id: str | None) -> SessionCoordinator | None:
        """Make ``document_id`` the open note, or close the open one for None."""

        async with self._switch_lock:
            current = self._active
            if current is not None and current.document_id == document_id:
                return current
            await self._close_active(flush=True)
            if document_id is None:
                return None

            session = SessionCoordinator(
                document_id,
                notes=self._notes,
                enhancer=self._enhancer,
                audio=self._audio,
                registry=self._registry,
                event_bus=self._bus,
                settings=self._settings,
                model=self._model,
                on_saved=self._on_saved,
            )
            try:
                await session.open()
            except Exception as exc:
                message = f"Could not open note: {describe_error(exc)}"
                LOGGER.warning(message)
                self._bus.publish(NoticePosted(message=message, document_id=document_id))
                raise
            self._active = session
            return session

    async def delete(self, document_id: str) -> None:
        """Delete a note, discarding unsaved edits if it is the open one.

        If the backend refuses, the open session and its pending edits are
        kept and a notice is posted.
        """

        async with self._switch_lock:
            active = self._active if self.active_id == document_id else None
            if active is not None:
                await active.hold_autosave()
            try:
                await self._notes.delete(document_id)
            except Exception as exc:
                if active is not None:
                    active.resume_autosave()
                message = f"Could not delete note: {describe_error(exc)}"
                LOGGER.warning(message)
                self._bus.publish(NoticePosted(message=message, document_id=document_id))
                raise
            if active is not None:
                await self._close_active(flush=False)
            LOGGER.info("Deleted note %s", document_id)
            self._bus.publish(DocumentDeleted(document_id=document_id))
        await self.refresh()

    def control_surface(self, document_id: str | None = None) -> ControlSurface:
        """Return a control surface bound to ``document_id`` or the open note."""

        target = document_id or self.active_id
        if target is None:
            raise ValueError("No note is open")
        active = self._active
        state = active.recording_state if active is not None and active.document_id == target else RecordingState.IDLE
        return ControlSurface(target, self._registry, self._bus, self._model, initial_state=state)

    async def close(self) -> None:
        """Flush and close the open note, then release backend resources."""

        async with self._switch_lock:
            await self._close_active(flush=True)
        self._model.cancel()
        self._registry.clear()
        for backend in (self._enhancer, self._audio, self._notes):
            closer = getattr(backend, "aclose", None)
            if closer is None:
                continue
            result = closer()
            if inspect.isawaitable(result):
                await result

    async def _close_active(self, *, flush: bool) -> None:
        session = self._active
        self._active = None
        if session is not None:
            await session.close(flush=flush)

    async def _on_saved(self, document_id: str) -> None:
        await self.refresh()
