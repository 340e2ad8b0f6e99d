"""
MessageEvents — per-dispatcher observer for lifecycle notifications.

Events are a best-effort side channel: every operation also reports its
outcome by return value or exception. Listener failures are logged and
never propagate into the dispatcher.

    events = MessageEvents()

    @events.on(SENT_ERROR)
    async def alert(error, message):
        ...
"""
from __future__ import annotations

import inspect
import structlog
from collections import defaultdict
from typing import Any, Callable, Optional

logger = structlog.get_logger()

QUEUE_ERROR = "message:queue:error"
QUEUE_SUCCESS = "message:queue:success"
SENT_ERROR = "message:sent:error"
SENT_SUCCESS = "message:sent:success"
REQUEUE_ERROR = "message:requeue:error"
REQUEUE_SUCCESS = "message:requeue:success"

EVENT_NAMES = (
    QUEUE_ERROR, QUEUE_SUCCESS, SENT_ERROR,
    SENT_SUCCESS, REQUEUE_ERROR, REQUEUE_SUCCESS,
)

Listener = Callable[..., Any]


class MessageEvents:
    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Optional[Listener] = None):
        """Register a listener; usable directly or as a decorator."""
        if listener is None:
            def decorator(fn: Listener) -> Listener:
                self._listeners[event].append(fn)
                return fn
            return decorator
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def listeners(self, event: str) -> list[Listener]:
        return list(self._listeners.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        for listener in self.listeners(event):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("event_listener_error",
                             event_name=event,
                             listener=getattr(listener, "__name__", repr(listener)),
                             error=str(e))
