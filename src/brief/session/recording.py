"""Recording and transcription lifecycle for one open note."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..events import EventBus, RecordingStateChanged
from ..notes.models import RecordingState
from ..services.backends import AudioBackend
from ..services.errors import describe_error

__all__ = ["RecordingStateMachine", "RecordingStateError"]

LOGGER = logging.getLogger(__name__)

ErrorCallback = Callable[[str, str], None]


class RecordingStateError(RuntimeError):
    """Raised when a transition is requested from the wrong state."""


class RecordingStateMachine:
    """Drives ``idle -> recording -> transcribing -> idle``.

    The backend's ``start_recording`` is issued as a tracked task so the
    state reads ``recording`` as soon as :meth:`start` returns. :meth:`stop`
    waits for that task before asking for the transcript, which keeps
    start and stop ordered. Every failure path ends back in ``idle``.
    """

    def __init__(
        self,
        document_id: str,
        backend: AudioBackend,
        *,
        event_bus: EventBus | None = None,
        is_model_ready: Callable[[], bool] | None = None,
        transcribe_timeout: float | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._document_id = document_id
        self._backend = backend
        self._bus = event_bus
        self._is_model_ready = is_model_ready
        self._timeout = transcribe_timeout
        self._on_error = on_error
        self._state = RecordingState.IDLE
        self._start_task: asyncio.Task[bool] | None = None
        self._transcribe_task: asyncio.Task[str] | None = None
        self._discarded = False

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is RecordingState.IDLE

    def start(self) -> asyncio.Task[bool]:
        """Enter ``recording`` and ask the backend to begin capturing."""

        if self._discarded:
            raise RecordingStateError("Recording is closed for this note")
        if self._state is not RecordingState.IDLE:
            raise RecordingStateError(f"Cannot start recording while {self._state.value}")
        if self._is_model_ready is not None and not self._is_model_ready():
            raise RecordingStateError("Speech model is not ready")

        self._set_state(RecordingState.RECORDING)
        task = asyncio.get_running_loop().create_task(self._run_start())
        self._start_task = task
        return task

    async def stop(self) -> str | None:
        """Stop capturing and return the transcript.

        Returns None when capture never started or transcription failed; the
        failure has already been reported through ``on_error``.
        """

        if self._state is not RecordingState.RECORDING:
            raise RecordingStateError(f"Cannot stop recording while {self._state.value}")

        self._set_state(RecordingState.TRANSCRIBING)
        try:
            start_task = self._start_task
            if start_task is not None and not await start_task:
                return None
            task = asyncio.get_running_loop().create_task(self._backend.stop_and_transcribe())
            self._transcribe_task = task
            return await asyncio.wait_for(task, timeout=self._timeout)
        except asyncio.CancelledError:
            if self._discarded:
                LOGGER.debug("Transcription for %s cancelled on close", self._document_id)
                return None
            raise
        except asyncio.TimeoutError:
            self._report("transcribe", "Transcription timed out")
            return None
        except Exception as exc:
            self._report("transcribe", describe_error(exc))
            return None
        finally:
            self._start_task = None
            self._transcribe_task = None
            self._set_state(RecordingState.IDLE)

    def cancel(self) -> None:
        """Abandon any in-flight capture or transcription and return to idle."""

        self._discarded = True
        for task in (self._start_task, self._transcribe_task):
            if task is not None and not task.done():
                task.cancel()
        self._start_task = None
        self._transcribe_task = None
        self._set_state(RecordingState.IDLE)

    async def _run_start(self) -> bool:
        try:
            await self._backend.start_recording()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # A concurrent stop() owns the state once it has moved past recording.
            if self._state is RecordingState.RECORDING:
                self._set_state(RecordingState.IDLE)
                self._start_task = None
            self._report("record", describe_error(exc))
            return False
        return True

    def _set_state(self, state: RecordingState) -> None:
        if state is self._state:
            return
        LOGGER.debug("Recording %s: %s -> %s", self._document_id, self._state.value, state.value)
        self._state = state
        if self._bus is not None:
            self._bus.publish(RecordingStateChanged(document_id=self._document_id, state=state))

    def _report(self, action: str, message: str) -> None:
        if self._on_error is None:
            LOGGER.warning("%s failed for %s: %s", action.capitalize(), self._document_id, message)
            return
        self._on_error(action, message)
