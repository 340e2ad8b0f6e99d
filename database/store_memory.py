"""
InMemoryMessageStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Full interface compatibility with SqlMessageStore
  - Hash index enforcing message uniqueness
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional

from database.criteria import matches
from database.store_base import BaseMessageStore
from models.errors import DuplicateKeyError, PersistenceError
from models.message import Message

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryMessageStore(BaseMessageStore):
    """
    Holds persisted documents (camelCase dicts), not Message instances, so
    callers never share mutable state with the store.
    """

    def __init__(self):
        self._messages: dict[str, dict] = {}        # id → document
        self._hash_index: dict[str, str] = {}       # hash → id
        logger.info("inmemory_store_initialized")

    # ── Writes ────────────────────────────────────────────

    async def create(self, message: Message) -> Message:
        message.prepare()
        if message.id in self._messages:
            raise PersistenceError(f"Message {message.id} already exists")
        self._check_hash(message)
        now = _utcnow()
        message.created_at = message.created_at or now
        message.updated_at = now
        self._put(message)
        logger.debug("message_created", message_id=message.id, hash=message.hash)
        return message

    async def save(self, message: Message) -> Message:
        message.prepare()
        self._check_hash(message)
        now = _utcnow()
        if message.created_at is None:
            message.created_at = now
        message.updated_at = now
        self._put(message)
        return message

    def _check_hash(self, message: Message) -> None:
        owner = self._hash_index.get(message.hash)
        if owner is not None and owner != message.id:
            raise DuplicateKeyError(message.hash)

    def _put(self, message: Message) -> None:
        doc = message.to_document()
        previous = self._messages.get(message.id)
        if previous and previous.get("hash") != doc["hash"]:
            self._hash_index.pop(previous.get("hash"), None)
        self._messages[message.id] = doc
        self._hash_index[doc["hash"]] = message.id
        self._on_change()

    def _on_change(self) -> None:
        """Hook for persistent subclasses."""

    # ── Reads ─────────────────────────────────────────────

    async def find_by_id(self, message_id: str) -> Optional[Message]:
        doc = self._messages.get(message_id)
        return Message.from_document(doc) if doc else None

    async def find_by_hash(self, hash_value: str) -> Optional[Message]:
        mid = self._hash_index.get(hash_value)
        if not mid:
            return None
        return await self.find_by_id(mid)

    async def find(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        return [
            Message.from_document(doc)
            for doc in self._messages.values()
            if matches(doc, criteria)
        ]

    # ── Stats ─────────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        sent = sum(1 for d in self._messages.values() if d.get("sentAt") is not None)
        return {
            "messages": len(self._messages),
            "sent": sent,
            "unsent": len(self._messages) - sent,
        }
