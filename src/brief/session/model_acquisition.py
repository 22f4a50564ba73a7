"""Process-wide tracking of the speech model's availability."""

from __future__ import annotations

import asyncio
import logging

from ..events import EventBus, ModelDownloadProgress, ModelStatusChanged, NoticePosted
from ..notes.models import ModelStatus
from ..services.backends import AudioBackend
from ..services.errors import describe_error

__all__ = ["ModelAcquisition"]

LOGGER = logging.getLogger(__name__)


class ModelAcquisition:
    """Checks for the speech model and downloads it on request.

    Status moves ``checking -> ready | missing`` and, on download,
    ``missing -> downloading -> ready | missing``. Progress reported while
    downloading never decreases.

    Events Emitted:
        - ModelStatusChanged: on every status change and progress step
        - NoticePosted: when a check or download fails
    """

    def __init__(
        self,
        backend: AudioBackend,
        event_bus: EventBus,
        *,
        download_timeout: float | None = None,
    ) -> None:
        self._backend = backend
        self._bus = event_bus
        self._timeout = download_timeout
        self._status = ModelStatus.CHECKING
        self._percent = 0
        self._task: asyncio.Future[None] | None = None
        self._cancel_requested = False
        self.last_error: str | None = None

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def percent(self) -> int:
        """Download progress; zero unless downloading."""
        return self._percent if self._status is ModelStatus.DOWNLOADING else 0

    @property
    def is_ready(self) -> bool:
        return self._status is ModelStatus.READY

    async def check(self) -> ModelStatus:
        if self._status is ModelStatus.DOWNLOADING:
            return self._status
        self._set_status(ModelStatus.CHECKING)
        try:
            info = await self._backend.check_model()
        except Exception as exc:
            self._fail(f"Could not check speech model: {describe_error(exc)}")
            return self._status
        self._set_status(ModelStatus.READY if info.exists else ModelStatus.MISSING)
        return self._status

    async def download(self) -> bool:
        """Fetch the model; returns True once it is ready."""

        if self._status is not ModelStatus.MISSING:
            LOGGER.debug("Ignoring download request while model is %s", self._status.value)
            return self.is_ready

        self._percent = 0
        self._cancel_requested = False
        self.last_error = None
        self._set_status(ModelStatus.DOWNLOADING)
        self._bus.subscribe(ModelDownloadProgress, self._on_progress)
        try:
            self._task = asyncio.ensure_future(self._backend.download_model())
            await asyncio.wait_for(self._task, timeout=self._timeout)
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._set_status(ModelStatus.MISSING)
                raise
            self._fail("Model download cancelled")
            return False
        except asyncio.TimeoutError:
            self._fail("Model download timed out")
            return False
        except Exception as exc:
            self._fail(describe_error(exc))
            return False
        finally:
            self._bus.unsubscribe(ModelDownloadProgress, self._on_progress)
            self._task = None
        self._set_status(ModelStatus.READY)
        LOGGER.info("Speech model ready")
        return True

    def cancel(self) -> None:
        task = self._task
        if task is not None and not task.done():
            self._cancel_requested = True
            task.cancel()

    def _on_progress(self, event: ModelDownloadProgress) -> None:
        if self._status is not ModelStatus.DOWNLOADING:
            return
        percent = max(self._percent, min(100, max(0, int(event.percent))))
        if percent == self._percent:
            return
        self._percent = percent
        self._bus.publish(ModelStatusChanged(status=ModelStatus.DOWNLOADING, percent=percent))

    def _set_status(self, status: ModelStatus) -> None:
        if status is self._status and status is not ModelStatus.DOWNLOADING:
            return
        LOGGER.debug("Speech model status: %s -> %s", self._status.value, status.value)
        self._status = status
        self._bus.publish(ModelStatusChanged(status=status, percent=self.percent))

    def _fail(self, message: str) -> None:
        LOGGER.warning(message)
        self.last_error = message
        self._set_status(ModelStatus.MISSING)
        self._bus.publish(NoticePosted(message=message))
