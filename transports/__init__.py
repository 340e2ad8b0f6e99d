"""
Transports — delivery backends resolved by name through a TransportRegistry.

Quick start:
  from transports import TransportRegistry, EchoTransport
  registry = TransportRegistry()
  registry.register(EchoTransport())
  transport = registry.resolve("echo")
"""
from transports.base import Transport, TransportRegistry
from transports.echo import EchoTransport
from transports.log import LogTransport
from transports.webhook import WebhookTransport
from transports.factory import TRANSPORT_TYPES, build_registry, transport_configs

__all__ = [
    "Transport", "TransportRegistry",
    "EchoTransport", "LogTransport", "WebhookTransport",
    "TRANSPORT_TYPES", "build_registry", "transport_configs",
]
