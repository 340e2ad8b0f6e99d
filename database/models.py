"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - JSON type instead of PostgreSQL-specific JSONB — on PG the dialect maps
    JSON to jsonb automatically; on MySQL it uses native JSON; on SQLite
    it serializes to TEXT.
  - Recipient lists live in JSON columns; the SQL store filters them in Python.
  - String primary keys (uuid hex) — no database-specific sequences.
  - `hash` carries the unique index that implements message dedup.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, DateTime, Text, Index, JSON
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.message import Message


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ──────────────────────────────────────────────────────────────
#  Messages
# ──────────────────────────────────────────────────────────────

class MessageRow(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), default="EMAIL")
    mime: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), default="Outbound")
    state: Mapped[str] = mapped_column(String(16), default="Unknown", index=True)
    mode: Mapped[str] = mapped_column(String(8), default="Push")

    sender: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    to: Mapped[Any] = mapped_column(JSON, default=list)
    cc: Mapped[Any] = mapped_column(JSON, default=list)
    bcc: Mapped[Any] = mapped_column(JSON, default=list)
    subject: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[Any] = mapped_column(JSON, nullable=True)

    transport: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    queue_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="normal")
    options: Mapped[Any] = mapped_column(JSON, default=dict)
    hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_messages_queue_sent", "queue_name", "sent_at"),
    )

    # ── Conversion ────────────────────────────────────────

    def apply(self, message: Message) -> MessageRow:
        """Copy every field of the message onto this row."""
        self.id = message.id
        self.type = message.type.value
        self.mime = message.mime.value if message.mime else None
        self.direction = message.direction.value
        self.state = message.state.value
        self.mode = message.mode.value
        self.sender = message.sender
        self.to = list(message.to)
        self.cc = list(message.cc)
        self.bcc = list(message.bcc)
        self.subject = message.subject
        self.body = message.body
        self.sent_at = message.sent_at
        self.failed_at = message.failed_at
        self.result = message.model_dump(mode="json", include={"result"})["result"]
        self.transport = message.transport
        self.queue_name = message.queue_name
        self.priority = message.priority.value
        self.options = dict(message.options)
        self.hash = message.hash
        self.created_at = message.created_at
        self.updated_at = message.updated_at
        return self

    @classmethod
    def from_message(cls, message: Message) -> MessageRow:
        return cls().apply(message)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id, "type": self.type, "mime": self.mime,
            "direction": self.direction, "state": self.state, "mode": self.mode,
            "from": self.sender, "to": self.to or [], "cc": self.cc or [],
            "bcc": self.bcc or [], "subject": self.subject, "body": self.body,
            "sentAt": self.sent_at, "failedAt": self.failed_at,
            "result": self.result, "transport": self.transport,
            "queueName": self.queue_name, "priority": self.priority,
            "options": self.options or {}, "hash": self.hash,
            "createdAt": self.created_at, "updatedAt": self.updated_at,
        }

    def to_message(self) -> Message:
        return Message.from_document(self.to_document())
