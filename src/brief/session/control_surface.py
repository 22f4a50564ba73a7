"""Enhance and record controls for one note.

The control surface holds no reference to the session it drives: requests go
through the :class:`~brief.session.registry.ActionRegistry`, and recording
state is mirrored from the event bus.
"""

from __future__ import annotations

import inspect
import logging

from ..events import EventBus, RecordingStateChanged
from ..notes.models import EnhanceMode, ModelStatus, RecordingState
from .model_acquisition import ModelAcquisition
from .registry import ActionKind, ActionRegistry

__all__ = ["ControlSurface"]

LOGGER = logging.getLogger(__name__)


class ControlSurface:
    def __init__(
        self,
        document_id: str,
        registry: ActionRegistry,
        event_bus: EventBus,
        model: ModelAcquisition,
        *,
        mode: EnhanceMode = EnhanceMode.POLISH,
        initial_state: RecordingState = RecordingState.IDLE,
    ) -> None:
        self._document_id = document_id
        self._registry = registry
        self._bus = event_bus
        self._model = model
        self._mode = mode
        self._enhancing = False
        # Events carry changes only, so the state at creation comes from the caller.
        self._recording_state = initial_state
        self._bus.subscribe(RecordingStateChanged, self._on_recording_state)

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def enhance_mode(self) -> EnhanceMode:
        return self._mode

    @property
    def mode_label(self) -> str:
        return self._mode.label

    @property
    def enhancing(self) -> bool:
        return self._enhancing

    @property
    def recording_state(self) -> RecordingState:
        return self._recording_state

    @property
    def model_status(self) -> ModelStatus:
        return self._model.status

    @property
    def download_percent(self) -> int:
        return self._model.percent

    @property
    def can_record(self) -> bool:
        return self._model.is_ready and self._recording_state is not RecordingState.TRANSCRIBING

    def select_mode(self, mode: EnhanceMode | str) -> EnhanceMode:
        self._mode = EnhanceMode.parse(mode)
        return self._mode

    async def enhance(self) -> str | None:
        """Ask the open session to enhance with the selected mode."""

        if self._enhancing:
            LOGGER.debug("Enhance already requested for %s", self._document_id)
            return None
        self._enhancing = True
        try:
            result = self._registry.invoke(self._document_id, ActionKind.ENHANCE, self._mode)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self._enhancing = False

    async def toggle_record(self) -> str | None:
        """Start recording when idle, stop and transcribe when recording.

        Returns the updated content after a stop, otherwise None.
        """

        if not self._model.is_ready:
            LOGGER.debug("Record toggle ignored; speech model is %s", self._model.status.value)
            return None
        state = self._recording_state
        if state is RecordingState.IDLE:
            self._registry.invoke(self._document_id, ActionKind.RECORD_START)
            return None
        if state is RecordingState.RECORDING:
            result = self._registry.invoke(self._document_id, ActionKind.RECORD_STOP)
            if inspect.isawaitable(result):
                result = await result
            return result
        LOGGER.debug("Record toggle ignored while transcribing %s", self._document_id)
        return None

    async def download_model(self) -> bool:
        return await self._model.download()

    def dispose(self) -> None:
        self._bus.unsubscribe(RecordingStateChanged, self._on_recording_state)

    def _on_recording_state(self, event: RecordingStateChanged) -> None:
        if event.document_id == self._document_id:
            self._recording_state = event.state
