"""Event bus infrastructure for decoupled session communication.

The workspace, the session coordinators, the control surface and the audio
backend talk to each other through this bus instead of holding references
to one another's live state.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from .notes.models import DocumentSummary, ModelStatus, RecordingState

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base for everything published on an :class:`EventBus`.

    Subclasses are slotted dataclasses carrying plain values only.
    """


# Published too often to log each delivery.
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Document Events
# =============================================================================


@dataclass(slots=True)
class DocumentCreated(Event):
    """Emitted after a new, empty note has been written by the backend."""

    document_id: str


@dataclass(slots=True)
class DocumentOpened(Event):
    """Emitted when a note becomes the active session.

    Attributes:
        document_id: The identifier of the opened note.
        title: The note title as read from the backend.
    """

    document_id: str
    title: str = ""


@dataclass(slots=True)
class DocumentClosed(Event):
    """Emitted when the active session for a note is torn down."""

    document_id: str


@dataclass(slots=True)
class DocumentSaved(Event):
    """Emitted after a write for a note has been accepted by the backend.

    Attributes:
        document_id: The identifier of the saved note.
        immediate: True for writes issued right after an action (enhance,
            transcription), False for debounced autosaves.
    """

    document_id: str
    immediate: bool = False


@dataclass(slots=True)
class DocumentDeleted(Event):
    """Emitted after a note has been removed from the backend."""

    document_id: str


@dataclass(slots=True)
class DocumentListRefreshed(Event):
    """Emitted whenever the workspace re-lists the notes directory."""

    summaries: tuple["DocumentSummary", ...]


@dataclass(slots=True)
class AutosaveFailed(Event):
    """Emitted when a write still fails after its retries were exhausted.

    Attributes:
        document_id: The note whose pending edits could not be persisted.
        error: A short description of the last failure.
        attempts: How many write attempts were made.
    """

    document_id: str
    error: str
    attempts: int = 1


# =============================================================================
# Action Events
# =============================================================================


@dataclass(slots=True)
class EnhanceCompleted(Event):
    """Emitted when an enhancement result has replaced a note's content."""

    document_id: str
    mode: str


@dataclass(slots=True)
class ActionFailed(Event):
    """Emitted when a user-initiated action fails.

    Attributes:
        document_id: The note the action was issued for.
        action: Short action name ("enhance", "record", "transcribe").
        error: The user-visible error message.
    """

    document_id: str
    action: str
    error: str


@dataclass(slots=True)
class RecordingStateChanged(Event):
    """Emitted on every recording/transcription state transition."""

    document_id: str
    state: "RecordingState"


@dataclass(slots=True)
class ModelStatusChanged(Event):
    """Emitted when the speech model acquisition status changes.

    Attributes:
        status: The new status.
        percent: Download progress, meaningful only while downloading.
    """

    status: "ModelStatus"
    percent: int = 0


@dataclass(slots=True)
class ModelDownloadProgress(Event):
    """Progress update published while the speech model downloads.

    Attributes:
        downloaded: Bytes received so far.
        total: Total bytes expected.
        percent: Integer completion percentage.
    """

    downloaded: int
    total: int
    percent: int


_QUIET_EVENT_TYPES.add(ModelDownloadProgress)


@dataclass(slots=True)
class NoticePosted(Event):
    """Emitted when a short message should be shown near the interaction.

    Attributes:
        message: The notice text to display to the user.
        document_id: The note the notice relates to, if any.
    """

    message: str
    document_id: str | None = None


class EventBus(Generic[E]):
    """Typed publish/subscribe hub shared by the workspace and its sessions.

    Bound-method handlers are held through :class:`weakref.WeakMethod`, so a
    subscription never keeps a session or control surface alive. Handlers run
    synchronously on the event loop thread; the bus does no locking.

    Example::

        bus = EventBus()
        bus.subscribe(DocumentSaved, lambda event: print(event.document_id))
        bus.publish(DocumentSaved(document_id="2024-05-01-abcde"))
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: DefaultDict[type[Event], list[_Subscription]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Deliver ``event_type`` to ``handler``; subscribing twice delivers twice."""
        self._subscriptions[event_type].append(_Subscription.wrap(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Drop the earliest subscription of ``handler``. Unknown handlers are ignored."""
        entries = self._subscriptions.get(event_type, [])
        index = next((i for i, entry in enumerate(entries) if entry.refers_to(handler)), None)
        if index is None:
            return
        del entries[index]
        logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)

    def publish(self, event: E) -> None:
        """Call every live handler for ``type(event)`` in subscription order.

        A handler that raises is logged; the others still run.
        """
        event_type = type(event)
        entries = self._subscriptions.get(event_type)
        verbose = event_type not in _QUIET_EVENT_TYPES
        if not entries:
            if verbose:
                logger.debug("%s published with no subscribers", event_type.__name__)
            return
        if verbose:
            logger.debug("Publishing %s to %d subscriber(s)", event_type.__name__, len(entries))

        stale = False
        # Snapshot: handlers may unsubscribe while being called.
        for entry in tuple(entries):
            handler = entry.target()
            if handler is None:
                stale = True
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("%s failed while handling %s", _describe(handler), event_type.__name__)
        if stale:
            entries[:] = [entry for entry in entries if entry.alive]

    def clear(self) -> None:
        self._subscriptions.clear()
        logger.debug("Cleared all event subscriptions")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Number of subscriptions, for one event type or overall."""
        if event_type is not None:
            return len(self._subscriptions.get(event_type, ()))
        return sum(len(entries) for entries in self._subscriptions.values())


class _Subscription:
    """One subscribed handler, weakly held when it is a bound method."""

    __slots__ = ("_target", "_weak")

    def __init__(self, target: WeakMethod | Handler, weak: bool) -> None:
        self._target = target
        self._weak = weak

    @classmethod
    def wrap(cls, handler: Handler) -> _Subscription:
        if inspect.ismethod(handler):
            return cls(WeakMethod(handler), weak=True)
        return cls(handler, weak=False)

    @property
    def alive(self) -> bool:
        return self.target() is not None

    def target(self) -> Handler | None:
        if self._weak:
            return self._target()  # type: ignore[operator]
        return self._target  # type: ignore[return-value]

    def refers_to(self, handler: Handler) -> bool:
        current = self.target()
        return current is not None and current == handler


def _describe(handler: Handler) -> str:
    owner = getattr(handler, "__self__", None)
    func = getattr(handler, "__func__", None)
    if owner is not None and func is not None:
        return f"{type(owner).__name__}.{func.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "DocumentCreated",
    "DocumentOpened",
    "DocumentClosed",
    "DocumentSaved",
    "DocumentDeleted",
    "DocumentListRefreshed",
    "AutosaveFailed",
    "EnhanceCompleted",
    "ActionFailed",
    "RecordingStateChanged",
    "ModelStatusChanged",
    "ModelDownloadProgress",
    "NoticePosted",
]
