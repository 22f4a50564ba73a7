"""Unit tests for :mod:`brief.events`."""

from __future__ import annotations

import gc

from brief.events import (
    DocumentSaved,
    EventBus,
    ModelDownloadProgress,
    NoticePosted,
)


class _Listener:
    def __init__(self) -> None:
        self.received: list[DocumentSaved] = []

    def on_saved(self, event: DocumentSaved) -> None:
        self.received.append(event)


class TestEventBusSubscription:
    """Tests for EventBus subscription functionality."""

    def test_publish_reaches_handlers_in_order(self) -> None:
        bus = EventBus()
        calls: list[str] = []
        bus.subscribe(DocumentSaved, lambda event: calls.append("first"))
        bus.subscribe(DocumentSaved, lambda event: calls.append("second"))

        bus.publish(DocumentSaved(document_id="n1"))

        assert calls == ["first", "second"]

    def test_events_are_routed_by_type(self) -> None:
        bus = EventBus()
        saved: list[DocumentSaved] = []
        bus.subscribe(DocumentSaved, saved.append)

        bus.publish(NoticePosted(message="hello"))

        assert saved == []

    def test_unsubscribe_removes_handler(self) -> None:
        bus = EventBus()
        listener = _Listener()
        bus.subscribe(DocumentSaved, listener.on_saved)

        bus.unsubscribe(DocumentSaved, listener.on_saved)
        bus.publish(DocumentSaved(document_id="n1"))

        assert listener.received == []
        assert bus.handler_count(DocumentSaved) == 0

    def test_unsubscribe_unknown_handler_is_ignored(self) -> None:
        bus = EventBus()

        bus.unsubscribe(DocumentSaved, lambda event: None)

        assert bus.handler_count() == 0


class TestEventBusLifetime:
    def test_bound_methods_are_held_weakly(self) -> None:
        bus = EventBus()
        listener = _Listener()
        bus.subscribe(DocumentSaved, listener.on_saved)

        del listener
        gc.collect()
        bus.publish(DocumentSaved(document_id="n1"))

        assert bus.handler_count(DocumentSaved) == 0

    def test_handler_exception_does_not_stop_others(self) -> None:
        bus = EventBus()
        received: list[ModelDownloadProgress] = []

        def broken(event: ModelDownloadProgress) -> None:
            raise RuntimeError("boom")

        bus.subscribe(ModelDownloadProgress, broken)
        bus.subscribe(ModelDownloadProgress, received.append)

        bus.publish(ModelDownloadProgress(downloaded=1, total=2, percent=50))

        assert len(received) == 1

    def test_handler_may_unsubscribe_during_publish(self) -> None:
        bus = EventBus()
        calls: list[str] = []

        def once(event: DocumentSaved) -> None:
            calls.append("once")
            bus.unsubscribe(DocumentSaved, once)

        bus.subscribe(DocumentSaved, once)
        bus.publish(DocumentSaved(document_id="n1"))
        bus.publish(DocumentSaved(document_id="n1"))

        assert calls == ["once"]

    def test_clear(self) -> None:
        bus = EventBus()
        bus.subscribe(DocumentSaved, lambda event: None)

        bus.clear()

        assert bus.handler_count() == 0
