"""
SqlMessageStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

Criteria on scalar columns become WHERE clauses; criteria on JSON columns
(recipient lists, result, options) are evaluated Python-side since JSON
containment is not portable across dialects.
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.criteria import is_operator, matches
from database.models import MessageRow
from database.session import (
    create_engine, create_session_factory, session_scope, init_db, close_db,
)
from database.store_base import BaseMessageStore
from models.errors import DuplicateKeyError, PersistenceError
from models.message import Message, _utcnow

logger = structlog.get_logger()

_COLUMNS = {
    "id": MessageRow.id,
    "type": MessageRow.type,
    "mime": MessageRow.mime,
    "direction": MessageRow.direction,
    "state": MessageRow.state,
    "mode": MessageRow.mode,
    "from": MessageRow.sender,
    "subject": MessageRow.subject,
    "body": MessageRow.body,
    "sentAt": MessageRow.sent_at,
    "failedAt": MessageRow.failed_at,
    "transport": MessageRow.transport,
    "queueName": MessageRow.queue_name,
    "priority": MessageRow.priority,
    "hash": MessageRow.hash,
    "createdAt": MessageRow.created_at,
    "updatedAt": MessageRow.updated_at,
}


def _sql_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _eq_clause(column, value):
    value = _sql_value(value)
    return column.is_(None) if value is None else column == value


def _op_clause(column, op: str, arg: Any):
    if op == "$exists":
        return column.isnot(None) if arg else column.is_(None)
    if op == "$ne":
        value = _sql_value(arg)
        if value is None:
            return column.isnot(None)
        return or_(column != value, column.is_(None))
    if op in ("$in", "$nin"):
        values = [_sql_value(v) for v in arg]
        present = [v for v in values if v is not None]
        wants_null = len(present) != len(values)
        if op == "$in":
            clause = column.in_(present)
            return or_(clause, column.is_(None)) if wants_null else clause
        if wants_null:
            return and_(column.notin_(present), column.isnot(None))
        return or_(column.notin_(present), column.is_(None))
    raise ValueError(f"Unsupported criteria operator: {op}")


def _clause(column, expected: Any):
    if is_operator(expected):
        return and_(*[_op_clause(column, op, arg) for op, arg in expected.items()])
    return _eq_clause(column, expected)


def split_criteria(criteria: Optional[dict[str, Any]]) -> tuple[list, dict[str, Any]]:
    """Return (SQL clauses, criteria left for Python-side filtering)."""
    clauses, remaining = [], {}
    for key, expected in (criteria or {}).items():
        column = _COLUMNS.get(key)
        if column is None:
            remaining[key] = expected
        else:
            clauses.append(_clause(column, expected))
    return clauses, remaining


class SqlMessageStore(BaseMessageStore):
    """
    Persistent message store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    def __init__(self, url: str = "sqlite:///./messages.db", echo: bool = False,
                 auto_create: bool = True):
        self._engine = create_engine(url, echo=echo)
        self._sessions = create_session_factory(self._engine)
        self._auto_create = auto_create
        self._schema_ready = not auto_create

    @property
    def engine(self):
        return self._engine

    async def init(self) -> None:
        await init_db(self._engine)
        self._schema_ready = True

    @asynccontextmanager
    async def _session(self, hash_value: Optional[str] = None) -> AsyncGenerator[AsyncSession, None]:
        if not self._schema_ready:
            await self.init()
        try:
            async with session_scope(self._sessions) as db:
                yield db
        except IntegrityError as e:
            if hash_value and "hash" in str(e.orig).lower():
                raise DuplicateKeyError(hash_value) from e
            raise PersistenceError(str(e.orig)) from e
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(str(e)) from e

    # ── Writes ────────────────────────────────────────────

    async def create(self, message: Message) -> Message:
        message.prepare()
        now = _utcnow()
        message.created_at = message.created_at or now
        message.updated_at = now
        async with self._session(message.hash) as db:
            db.add(MessageRow.from_message(message))
        logger.debug("message_created", message_id=message.id, hash=message.hash)
        return message

    async def save(self, message: Message) -> Message:
        message.prepare()
        now = _utcnow()
        if message.created_at is None:
            message.created_at = now
        message.updated_at = now
        async with self._session(message.hash) as db:
            row = await db.get(MessageRow, message.id)
            if row is None:
                db.add(MessageRow.from_message(message))
            else:
                row.apply(message)
        return message

    # ── Reads ─────────────────────────────────────────────

    async def find_by_id(self, message_id: str) -> Optional[Message]:
        async with self._session() as db:
            row = await db.get(MessageRow, message_id)
            return row.to_message() if row else None

    async def find_by_hash(self, hash_value: str) -> Optional[Message]:
        async with self._session() as db:
            stmt = select(MessageRow).where(MessageRow.hash == hash_value)
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return row.to_message() if row else None

    async def find(self, criteria: Optional[dict[str, Any]] = None) -> list[Message]:
        clauses, remaining = split_criteria(criteria)
        async with self._session() as db:
            stmt = select(MessageRow).order_by(MessageRow.created_at)
            if clauses:
                stmt = stmt.where(and_(*clauses))
            result = await db.execute(stmt)
            rows = result.scalars().all()
        return [
            row.to_message() for row in rows
            if matches(row.to_document(), remaining)
        ]

    async def close(self) -> None:
        await close_db(self._engine)
