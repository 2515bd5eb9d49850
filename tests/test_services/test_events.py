"""Tests for the event bus."""

from __future__ import annotations

import logging

import pytest

from webeep_sync.events import Disconnected, EventBus, Reconnected, UsernameResolved


class TestEventBus:
    def test_delivers_by_event_class(self) -> None:
        bus = EventBus()
        seen: list[object] = []
        bus.subscribe(Disconnected, seen.append)

        bus.emit(Disconnected())
        bus.emit(Reconnected())

        assert seen == [Disconnected()]

    def test_listeners_run_in_subscription_order(self) -> None:
        bus = EventBus()
        order: list[str] = []
        bus.subscribe(UsernameResolved, lambda e: order.append(f"first:{e.username}"))
        bus.subscribe(UsernameResolved, lambda e: order.append(f"second:{e.username}"))

        bus.emit(UsernameResolved(username="ada"))

        assert order == ["first:ada", "second:ada"]

    def test_unsubscribe_stops_delivery(self) -> None:
        bus = EventBus()
        seen: list[object] = []
        unsubscribe = bus.subscribe(Reconnected, seen.append)

        unsubscribe()
        unsubscribe()
        bus.emit(Reconnected())

        assert seen == []

    def test_failing_listener_does_not_block_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        bus = EventBus()
        seen: list[object] = []

        def broken(_: Disconnected) -> None:
            msg = "listener bug"
            raise RuntimeError(msg)

        bus.subscribe(Disconnected, broken)
        bus.subscribe(Disconnected, seen.append)

        with caplog.at_level(logging.ERROR, logger="webeep_sync.events"):
            bus.emit(Disconnected())

        assert seen == [Disconnected()]
        assert "Listener for Disconnected failed" in caplog.text

    def test_emit_without_listeners_is_a_no_op(self) -> None:
        EventBus().emit(Disconnected())
