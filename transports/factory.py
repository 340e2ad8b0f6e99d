"""
Transport Factory — Build the transport registry from configuration.

Configuration in settings.yaml:
    transports:
      email-hook:              # registry name, referenced by message.transport
        enabled: true
        type: webhook          # echo | log | webhook (defaults to the entry name)
        options:
          url: "https://example.com/hooks/mail"
          queue_name: "email"  # optional: queue for messages using this transport
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import Settings
from transports.base import Transport, TransportRegistry
from transports.echo import EchoTransport
from transports.log import LogTransport
from transports.webhook import WebhookTransport

logger = structlog.get_logger()

TRANSPORT_TYPES: dict[str, type[Transport]] = {
    "echo": EchoTransport,
    "log": LogTransport,
    "webhook": WebhookTransport,
}


def build_registry(settings: Settings, events=None,
                   registry: Optional[TransportRegistry] = None) -> TransportRegistry:
    """Create and register every enabled transport. Call initialize_all() afterwards."""
    registry = registry or TransportRegistry()
    for name, cfg in settings.transports.items():
        if not cfg.enabled:
            continue
        kind = cfg.type or name
        cls = TRANSPORT_TYPES.get(kind)
        if cls is None:
            raise ValueError(f"Unknown transport type {kind!r} for {name!r}")
        registry.register(cls(
            name=name,
            queue_name=cfg.options.get("queue_name"),
            events=events,
        ))
    logger.info("transports_registered", transports=registry.names())
    return registry


def transport_configs(settings: Settings) -> dict[str, dict]:
    return {name: cfg.options for name, cfg in settings.transports.items() if cfg.enabled}
