"""Echo transport — accepts every message without delivering it (dry runs, tests)."""
from __future__ import annotations

from typing import Any

from transports.base import Transport


class EchoTransport(Transport):
    name = "echo"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sent: list[str] = []

    async def send(self, message) -> dict[str, Any]:
        self.sent.append(message.id)
        result: dict[str, Any] = {"message": "success"}
        if self._config.get("state"):
            result["state"] = self._config["state"]
        return result
