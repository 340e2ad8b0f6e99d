"""Tests for the lifecycle event observer."""
import pytest
from structlog.testing import capture_logs

from core.events import EVENT_NAMES, SENT_ERROR, SENT_SUCCESS, MessageEvents


class TestMessageEvents:
    @pytest.mark.asyncio
    async def test_listener_receives_arguments(self):
        events = MessageEvents()
        seen = []
        events.on(SENT_ERROR, lambda error, message: seen.append((error, message)))
        await events.emit(SENT_ERROR, "boom", "m1")
        assert seen == [("boom", "m1")]

    @pytest.mark.asyncio
    async def test_decorator_and_async_listener(self):
        events = MessageEvents()
        seen = []

        @events.on(SENT_SUCCESS)
        async def record(message):
            seen.append(message)

        await events.emit(SENT_SUCCESS, "m1")
        assert seen == ["m1"]
        assert events.listeners(SENT_SUCCESS) == [record]

    @pytest.mark.asyncio
    async def test_off(self):
        events = MessageEvents()
        seen = []
        listener = events.on(SENT_SUCCESS, seen.append)
        events.off(SENT_SUCCESS, listener)
        events.off(SENT_SUCCESS, listener)
        await events.emit(SENT_SUCCESS, "m1")
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self):
        events = MessageEvents()
        seen = []

        def explode(message):
            raise RuntimeError("listener bug")

        events.on(SENT_SUCCESS, explode)
        events.on(SENT_SUCCESS, seen.append)
        await events.emit(SENT_SUCCESS, "m1")
        assert seen == ["m1"]

    @pytest.mark.asyncio
    async def test_listener_failure_is_logged(self):
        events = MessageEvents()

        def explode(message):
            raise RuntimeError("listener bug")

        events.on(SENT_SUCCESS, explode)
        with capture_logs() as logs:
            await events.emit(SENT_SUCCESS, "m1")

        (entry,) = logs
        assert entry["event"] == "event_listener_error"
        assert entry["event_name"] == SENT_SUCCESS
        assert entry["listener"] == "explode"
        assert entry["error"] == "listener bug"

    @pytest.mark.asyncio
    async def test_emit_without_listeners(self):
        await MessageEvents().emit(SENT_SUCCESS, "m1")

    def test_event_names(self):
        assert set(EVENT_NAMES) == {
            "message:queue:error", "message:queue:success",
            "message:sent:error", "message:sent:success",
            "message:requeue:error", "message:requeue:success",
        }
