"""
Error kinds raised by the message lifecycle.

  MessageValidationError — required field missing after normalization
  DuplicateKeyError      — hash collision on insert
  ResolutionError        — unknown transport name
  TransportError         — transport send failed (normalized to code/message/status)
  PersistenceError       — store or queue I/O failure
  NotFoundError          — record missing (benign for worker processing)
"""
from __future__ import annotations

from typing import Any, Optional


class MessageError(Exception):
    """Base exception for all message operations."""


class MessageValidationError(MessageError):
    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Message validation failed: missing {', '.join(fields)}")


class DuplicateKeyError(MessageError):
    def __init__(self, hash_value: str):
        self.hash = hash_value
        super().__init__(f"Duplicate message hash: {hash_value}")


class ResolutionError(MessageError):
    def __init__(self, name: Optional[str]):
        self.name = name
        super().__init__(f"Unable to resolve transport: {name!r}")


class TransportError(MessageError):
    """Send failure reported by (or raised inside) a transport."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
        transport: str = "",
    ):
        self.code = code
        self.status = status
        self.transport = transport
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: BaseException, transport: str = "") -> TransportError:
        if isinstance(exc, TransportError):
            return exc
        return cls(
            str(exc) or type(exc).__name__,
            code=getattr(exc, "code", None) or type(exc).__name__,
            status=getattr(exc, "status", None),
            transport=transport,
        )

    def to_result(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self), "status": self.status}


class PersistenceError(MessageError):
    pass


class NotFoundError(MessageError):
    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")
