"""
Log transport — writes a message summary to the structured log.

Behaves like a pull transport: the message is handed off, not delivered,
so the post-send state is Sent.
"""
from __future__ import annotations

import structlog
from typing import Any

from transports.base import Transport

logger = structlog.get_logger()


class LogTransport(Transport):
    name = "log"

    async def send(self, message) -> dict[str, Any]:
        max_body = int(self._config.get("max_body", 200))
        body = message.body or ""
        logger.info("message_logged",
                    transport=self.name,
                    message_id=message.id,
                    type=message.type.value,
                    sender=message.sender,
                    to=message.to,
                    subject=message.subject,
                    body=body[:max_body])
        return {"message": "logged", "state": "Sent"}
