"""
Transports — pluggable delivery backends resolved by name.

Provides:
- Transport: abstract base every delivery backend implements
- TransportRegistry: name → transport lookup, lifecycle for all registered

A transport's send() returns a result dict that is stored on the message;
a "state" key in it (e.g. "Queued" for pull transports) overrides the
post-send state. Failures are raised, preferably as TransportError.
"""
from __future__ import annotations

import abc
import structlog
from typing import TYPE_CHECKING, Any, Optional

from models.errors import ResolutionError

if TYPE_CHECKING:
    from core.events import MessageEvents
    from models.message import Message

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  TRANSPORT: Abstract Base
# ══════════════════════════════════════════════════════════════

class Transport(abc.ABC):
    """
    Base class for all transports.

    `queue_name`, when set, is the queue that messages routed to this
    transport are placed on. `events`, when set, receives the same
    sent:success / sent:error notifications as the dispatcher's observer.
    """

    name: str = ""
    queue_name: Optional[str] = None

    def __init__(
        self,
        name: Optional[str] = None,
        queue_name: Optional[str] = None,
        events: Optional[MessageEvents] = None,
    ):
        self.name = name or self.name or type(self).__name__.lower()
        self.queue_name = queue_name or self.queue_name
        self.events = events
        self._config: dict[str, Any] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, config: dict[str, Any]) -> None:
        self._config = dict(config or {})
        self._initialized = True

    @abc.abstractmethod
    async def send(self, message: Message) -> dict[str, Any]:
        ...

    async def shutdown(self) -> None:
        pass


# ══════════════════════════════════════════════════════════════
#  TRANSPORT REGISTRY
# ══════════════════════════════════════════════════════════════

class TransportRegistry:
    def __init__(self):
        self._transports: dict[str, Transport] = {}

    def register(self, transport: Transport) -> Transport:
        if not transport.name:
            raise ValueError("Transport must have a name")
        self._transports[transport.name] = transport
        logger.debug("transport_registered", transport=transport.name)
        return transport

    def resolve(self, name: Optional[str]) -> Transport:
        if not name or not name.strip():
            raise ResolutionError(name)
        transport = self._transports.get(name)
        if transport is None:
            raise ResolutionError(name)
        return transport

    def get(self, name: str) -> Optional[Transport]:
        return self._transports.get(name)

    def names(self) -> list[str]:
        return list(self._transports.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._transports

    def __len__(self) -> int:
        return len(self._transports)

    async def initialize_all(self, configs: Optional[dict[str, Any]] = None):
        configs = configs or {}
        for name, transport in self._transports.items():
            try:
                await transport.initialize(configs.get(name, {}))
            except Exception as e:
                logger.error("transport_init_failed", transport=name, error=str(e))

    async def shutdown_all(self):
        for name, transport in self._transports.items():
            try:
                await transport.shutdown()
            except Exception as e:
                logger.warning("transport_shutdown_failed", transport=name, error=str(e))
