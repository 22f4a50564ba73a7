"""Action registry routing control-surface requests to the open session.

The control surface only knows a note id. It asks the registry to invoke an
action for that id; whichever session currently owns the id has registered
the handler that performs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

__all__ = ["ActionKind", "ActionHandler", "ActionRegistry", "RegistrationToken"]

LOGGER = logging.getLogger(__name__)

ActionHandler = Callable[[Any], Any]


class ActionKind(Enum):
    """Actions a control surface can request for a note."""

    ENHANCE = "enhance"
    RECORD_START = "record_start"
    RECORD_STOP = "record_stop"


@dataclass(eq=False, slots=True)
class RegistrationToken:
    """Handle returned by :meth:`ActionRegistry.register`.

    Releasing a token removes the entry only while it still maps to the
    handler this token registered.
    """

    document_id: str
    kind: ActionKind
    handler: ActionHandler
    _registry: "ActionRegistry | None" = field(default=None, repr=False)

    def release(self) -> bool:
        registry = self._registry
        if registry is None:
            return False
        self._registry = None
        return registry.deregister(self)


class ActionRegistry:
    """Keyed table of at most one handler per ``(document_id, kind)``."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, ActionKind], ActionHandler] = {}

    def register(self, document_id: str, kind: ActionKind, handler: ActionHandler) -> RegistrationToken:
        """Install ``handler``, silently replacing any previous one for the key."""

        key = (document_id, kind)
        if key in self._handlers:
            LOGGER.debug("Replacing %s handler for %s", kind.value, document_id)
        self._handlers[key] = handler
        return RegistrationToken(document_id, kind, handler, self)

    def deregister(self, token: RegistrationToken) -> bool:
        key = (token.document_id, token.kind)
        if self._handlers.get(key) is not token.handler:
            LOGGER.debug("Ignoring stale %s deregistration for %s", token.kind.value, token.document_id)
            return False
        del self._handlers[key]
        return True

    def invoke(self, document_id: str, kind: ActionKind, payload: Any = None) -> Any:
        """Call the registered handler and return its result.

        Async handlers return their coroutine, which the caller may await or
        schedule. With no handler registered this is a no-op returning None.
        """

        handler = self._handlers.get((document_id, kind))
        if handler is None:
            LOGGER.debug("No %s handler registered for %s", kind.value, document_id)
            return None
        return handler(payload)

    def is_registered(self, document_id: str, kind: ActionKind) -> bool:
        return (document_id, kind) in self._handlers

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)
