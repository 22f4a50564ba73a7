"""Debounced autosave for one open note.

Edits arm a quiescence timer; every new edit re-arms it, and only the most
recent ``(content, meta)`` pair is written when the timer expires. Writes
for the note, whether debounced or immediate, go through one lock so they
never interleave and the last issued write is the one that lands.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..events import AutosaveFailed, DocumentSaved, EventBus, NoticePosted
from ..notes.models import DocumentMeta, utcnow
from ..services.backends import NoteBackend
from ..services.errors import BackendError, describe_error

__all__ = ["AutosaveScheduler", "DEFAULT_AUTOSAVE_DELAY"]

LOGGER = logging.getLogger(__name__)
DEFAULT_AUTOSAVE_DELAY = 0.8

SaveCallback = Callable[[str], Any]


class AutosaveScheduler:
    """Coalesces edits of one note into a single write per quiescence window.

    Events Emitted:
        - DocumentSaved: after each accepted write
        - AutosaveFailed / NoticePosted: when a write still fails after retries
    """

    def __init__(
        self,
        document_id: str,
        backend: NoteBackend,
        *,
        delay: float = DEFAULT_AUTOSAVE_DELAY,
        on_saved: SaveCallback | None = None,
        event_bus: EventBus | None = None,
        retries: int = 3,
        retry_min_wait: float = 0.2,
        retry_max_wait: float = 2.0,
        last_updated_at: datetime | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._document_id = document_id
        self._backend = backend
        self._delay = max(0.0, float(delay))
        self._on_saved = on_saved
        self._bus = event_bus
        self._retries = max(1, int(retries))
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._last_updated_at = last_updated_at
        self._clock = clock

        self._pending: tuple[str, DocumentMeta] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[bool]] = set()
        self._lock = asyncio.Lock()
        self._closed = False
        self._write_count = 0
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def is_armed(self) -> bool:
        """True while a quiescence timer is waiting to fire."""
        return self._timer is not None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def write_count(self) -> int:
        """Number of writes the backend accepted."""
        return self._write_count

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_updated_at(self) -> datetime | None:
        return self._last_updated_at

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, content: str, meta: DocumentMeta) -> None:
        """Remember ``(content, meta)`` and restart the quiescence timer."""

        if self._closed:
            LOGGER.debug("Ignoring autosave for closed note %s", self._document_id)
            return
        self._pending = (content, meta)
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._on_timer)

    async def write_now(self, content: str, meta: DocumentMeta) -> bool:
        """Persist ``(content, meta)`` immediately.

        Any armed timer is disarmed: the pair given here is the latest state,
        so the pending debounced write would only repeat older content.
        """

        if self._closed:
            LOGGER.debug("Ignoring immediate write for closed note %s", self._document_id)
            return False
        self._cancel_timer()
        self._pending = (content, meta)
        return await self._write_pending(immediate=True)

    async def flush(self) -> bool:
        """Write a pending save now and wait for writes already in flight.

        Returns True if this call wrote something.
        """

        self._cancel_timer()
        await self._wait_inflight()
        if self._pending is None:
            return False
        return await self._write_pending(immediate=False)

    async def hold(self) -> None:
        """Disarm the timer, keeping the pending save, and wait for running writes."""

        self._cancel_timer()
        await self._wait_inflight()

    def resume(self) -> None:
        """Re-arm the timer for a save left pending by :meth:`hold`."""

        if self._closed or self._pending is None or self._timer is not None:
            return
        self._timer = asyncio.get_running_loop().call_later(self._delay, self._on_timer)

    def cancel(self) -> None:
        """Drop the pending save without writing it."""

        self._cancel_timer()
        if self._pending is not None:
            LOGGER.debug("Discarding pending autosave for %s", self._document_id)
        self._pending = None

    async def close(self, *, flush: bool = True) -> None:
        """Stop accepting saves; flush or discard what is pending."""

        if flush:
            await self.flush()
        else:
            self.cancel()
            await self._wait_inflight()
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._write_pending(immediate=False))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _wait_inflight(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _write_pending(self, *, immediate: bool) -> bool:
        async with self._lock:
            pending = self._pending
            if pending is None:
                return False
            self._pending = None
            content, meta = pending
            try:
                await self._persist(content, meta)
            except Exception as exc:
                # Keep the failed pair unless newer edits replaced it meanwhile.
                if self._pending is None:
                    self._pending = pending
                self._report_failure(exc)
                return False
        await self._notify(immediate)
        return True

    async def _persist(self, content: str, meta: DocumentMeta) -> None:
        stamp = self._clock()
        if self._last_updated_at is not None and stamp < self._last_updated_at:
            stamp = self._last_updated_at
        stamped = meta.with_updated_at(stamp)

        attempts = 0
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self._backend.write(self._document_id, content, stamped)
        except Exception as exc:
            exc.attempts = attempts  # type: ignore[attr-defined]
            raise

        self._last_updated_at = stamp
        self._write_count += 1
        self._last_error = None
        LOGGER.debug(
            "Saved %s (%d chars, attempt %d)", self._document_id, len(content), attempts
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=self._retry_min_wait, max=self._retry_max_wait),
            retry=retry_if_exception_type((BackendError, OSError)),
        )

    def _report_failure(self, exc: Exception) -> None:
        message = describe_error(exc)
        attempts = getattr(exc, "attempts", 1) or 1
        self._last_error = message
        LOGGER.warning(
            "Autosave for %s failed after %d attempt(s): %s", self._document_id, attempts, message
        )
        if self._bus is not None:
            self._bus.publish(AutosaveFailed(document_id=self._document_id, error=message, attempts=attempts))
            self._bus.publish(
                NoticePosted(message=f"Could not save note: {message}", document_id=self._document_id)
            )

    async def _notify(self, immediate: bool) -> None:
        if self._bus is not None:
            self._bus.publish(DocumentSaved(document_id=self._document_id, immediate=immediate))
        if self._on_saved is None:
            return
        try:
            result = self._on_saved(self._document_id)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.warning("Save callback for %s failed", self._document_id, exc_info=True)
