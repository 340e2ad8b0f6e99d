"""Tests for the transport contract, registry, built-ins and registry factory."""
import json

import httpx
import pytest

from config.settings import Settings, TransportConfig
from models.errors import ResolutionError, TransportError
from models.message import Message
from transports import (
    EchoTransport, LogTransport, Transport, TransportRegistry, WebhookTransport,
    build_registry, transport_configs,
)


def _message(**overrides) -> Message:
    data = {"from": "a@x.com", "to": "b@x.com", "body": "hi", "transport": "webhook"}
    data.update(overrides)
    return Message(**data).prepare()


class BrokenTransport(Transport):
    name = "broken"

    async def initialize(self, config):
        raise RuntimeError("bad credentials")

    async def send(self, message):
        return {}

    async def shutdown(self):
        raise RuntimeError("already closed")


class TestTransportRegistry:
    def test_register_and_resolve(self):
        registry = TransportRegistry()
        echo = registry.register(EchoTransport())
        assert registry.resolve("echo") is echo
        assert registry.names() == ["echo"]
        assert "echo" in registry
        assert len(registry) == 1

    @pytest.mark.parametrize("name", ["missing", "", "  ", None])
    def test_unresolvable_names(self, name):
        registry = TransportRegistry()
        registry.register(EchoTransport())
        with pytest.raises(ResolutionError):
            registry.resolve(name)

    def test_custom_name(self):
        registry = TransportRegistry()
        registry.register(EchoTransport(name="dry-run", queue_name="bulk"))
        transport = registry.resolve("dry-run")
        assert transport.queue_name == "bulk"

    @pytest.mark.asyncio
    async def test_initialize_all_passes_config(self):
        registry = TransportRegistry()
        echo = registry.register(EchoTransport())
        await registry.initialize_all({"echo": {"state": "Queued"}})
        assert echo.initialized
        result = await echo.send(_message())
        assert result == {"message": "success", "state": "Queued"}

    @pytest.mark.asyncio
    async def test_lifecycle_failures_do_not_propagate(self):
        registry = TransportRegistry()
        registry.register(BrokenTransport())
        echo = registry.register(EchoTransport())
        await registry.initialize_all({})
        assert echo.initialized
        await registry.shutdown_all()


class TestBuiltinTransports:
    @pytest.mark.asyncio
    async def test_echo(self):
        echo = EchoTransport()
        message = _message()
        assert await echo.send(message) == {"message": "success"}
        assert echo.sent == [message.id]

    @pytest.mark.asyncio
    async def test_log_reports_sent_state(self):
        transport = LogTransport()
        await transport.initialize({"max_body": 10})
        result = await transport.send(_message(body="x" * 50))
        assert result == {"message": "logged", "state": "Sent"}


class TestWebhookTransport:
    async def _transport(self, handler, **config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = WebhookTransport(client=client)
        await transport.initialize({"url": "https://hooks.example.com/messages", **config})
        return transport

    @pytest.mark.asyncio
    async def test_posts_document(self):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            return httpx.Response(202, json={"id": "remote-1"})

        transport = await self._transport(handler)
        message = _message()
        result = await transport.send(message)

        assert result == {"message": "success", "status": 202, "id": "remote-1"}
        body = json.loads(requests[0].content)
        assert body["id"] == message.id
        assert body["from"] == "a@x.com"
        assert body["to"] == ["b@x.com"]
        await transport.shutdown()

    @pytest.mark.asyncio
    async def test_response_state_is_returned(self):
        transport = await self._transport(
            lambda request: httpx.Response(200, json={"state": "Queued"})
        )
        result = await transport.send(_message())
        assert result["state"] == "Queued"

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        transport = await self._transport(lambda request: httpx.Response(200, text="ok"))
        assert await transport.send(_message()) == {"message": "success", "status": 200}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        transport = await self._transport(
            lambda request: httpx.Response(503, text="unavailable")
        )
        with pytest.raises(TransportError) as exc_info:
            await transport.send(_message())
        assert exc_info.value.status == 503
        assert exc_info.value.code == "http_error"
        assert exc_info.value.transport == "webhook"

    @pytest.mark.asyncio
    async def test_missing_url(self):
        transport = WebhookTransport()
        await transport.initialize({})
        with pytest.raises(TransportError) as exc_info:
            await transport.send(_message())
        assert exc_info.value.code == "not_configured"


class TestBuildRegistry:
    def _settings(self) -> Settings:
        return Settings(transports={
            "echo": TransportConfig(type="echo"),
            "audit": TransportConfig(type="log", options={"queue_name": "audit"}),
            "hook": TransportConfig(enabled=False, type="webhook"),
        })

    def test_registers_enabled_transports(self):
        registry = build_registry(self._settings())
        assert registry.names() == ["echo", "audit"]
        assert isinstance(registry.resolve("audit"), LogTransport)
        assert registry.resolve("audit").queue_name == "audit"

    def test_transport_configs(self):
        assert transport_configs(self._settings()) == {
            "echo": {}, "audit": {"queue_name": "audit"},
        }

    def test_unknown_type(self):
        settings = Settings(transports={"x": TransportConfig(type="carrier-pigeon")})
        with pytest.raises(ValueError):
            build_registry(settings)
