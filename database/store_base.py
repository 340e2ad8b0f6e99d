"""
Abstract Message Store — Interface for all storage backends.

Implementations:
  - SqlMessageStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryMessageStore (dict-based, single-process, no persistence)
  - FileMessageStore     (JSON file on disk, single-process, durable)

Every backend runs Message.prepare() before writing, maintains
createdAt/updatedAt, and rejects a second record carrying an existing hash
with DuplicateKeyError.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from models.message import Message


class BaseMessageStore(ABC):
    """Interface that all message store backends must implement."""

    @abstractmethod
    async def create(self, message: Message) -> Message:
        """Insert a new record. Raises DuplicateKeyError on hash collision."""
        ...

    @abstractmethod
    async def save(self, message: Message) -> Message:
        """Insert or replace the record with message.id."""
        ...

    @abstractmethod
    async def find_by_id(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    async def find_by_hash(self, hash_value: str) -> Optional[Message]:
        ...

    @abstractmethod
    async def find(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        ...

    async def close(self) -> None:
        pass
