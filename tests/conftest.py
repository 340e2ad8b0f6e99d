"""Shared test fixtures for the message dispatch service."""
import pytest
from typing import Any

from core.dispatcher import MessageDispatcher
from core.events import EVENT_NAMES, MessageEvents
from database.store_memory import InMemoryMessageStore
from job_queue.message_queue import InMemoryMessageQueue
from models.errors import TransportError
from models.message import Message
from transports.base import Transport, TransportRegistry
from transports.echo import EchoTransport


class FailingTransport(Transport):
    """Rejects every message with the configured error."""
    name = "failing"

    def __init__(self, *args, error: Exception = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.error = error or TransportError("Recipient rejected", code="550", status=550)
        self.calls = 0

    async def send(self, message) -> dict[str, Any]:
        self.calls += 1
        raise self.error


class PullTransport(Transport):
    """Accepts messages for later pickup, like an SMS gateway poller."""
    name = "pull"

    async def send(self, message) -> dict[str, Any]:
        return {"message": "queued", "state": "Queued"}


class EventRecorder:
    def __init__(self, events: MessageEvents):
        self.calls: list[tuple[str, tuple]] = []
        for name in EVENT_NAMES:
            events.on(name, self._listener(name))

    def _listener(self, name):
        def record(*args):
            self.calls.append((name, args))
        return record

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def args(self, name: str) -> list[tuple]:
        return [args for n, args in self.calls if n == name]


@pytest.fixture
def make_message():
    def factory(**overrides) -> Message:
        data = {"from": "a@x.com", "to": "b@x.com", "body": "hi", "transport": "echo"}
        data.update(overrides)
        return Message(**data)
    return factory


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def queue() -> InMemoryMessageQueue:
    return InMemoryMessageQueue(promote_interval=0)


@pytest.fixture
def failing_transport() -> FailingTransport:
    return FailingTransport()


@pytest.fixture
def registry(failing_transport) -> TransportRegistry:
    registry = TransportRegistry()
    registry.register(EchoTransport())
    registry.register(PullTransport())
    registry.register(failing_transport)
    return registry


@pytest.fixture
def events() -> MessageEvents:
    return MessageEvents()


@pytest.fixture
def recorder(events) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture
def dispatcher(store, queue, registry, events) -> MessageDispatcher:
    return MessageDispatcher(store=store, queue=queue, registry=registry, events=events)
