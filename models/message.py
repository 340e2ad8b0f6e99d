"""
Message — the persisted notification record and its enums.

Python attributes are snake_case; the persisted / wire layout uses the
camelCase aliases (`from`, `sentAt`, `queueName`, ...) and the enum string
literals verbatim, so transports and queues see the same document shape
regardless of the store backend.

Lifecycle:
    construct → prepare() (normalize + validate) → persist → mutated by the
    dispatcher as queue/send operations happen. Never hard-deleted here.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.errors import MessageValidationError
from models.hashing import compute_hash


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MessageType(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


class Mime(str, Enum):
    TEXT = "text/plain"
    HTML = "text/html"


class Direction(str, Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class State(str, Enum):
    UNKNOWN = "Unknown"         # waiting to be claimed, mainly by pull transports
    RECEIVED = "Received"       # received from a transport (inbound)
    SENT = "Sent"               # handed to a pull transport
    QUEUED = "Queued"           # pull transport acknowledged it queued the message
    DELIVERED = "Delivered"     # delivered to the receiver(s)


class SendMode(str, Enum):
    PUSH = "Push"
    PULL = "Pull"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ──────────────────────────────────────────────────────────────
#  HTML detection
# ──────────────────────────────────────────────────────────────

_HTML_TAGS = (
    "a", "abbr", "address", "article", "aside", "b", "blockquote", "body",
    "br", "button", "caption", "center", "code", "div", "dl", "dt", "dd",
    "em", "fieldset", "font", "footer", "form", "h1", "h2", "h3", "h4", "h5",
    "h6", "head", "header", "hr", "html", "i", "iframe", "img", "input",
    "label", "li", "link", "main", "meta", "nav", "ol", "p", "pre", "section",
    "small", "span", "strong", "style", "sub", "sup", "table", "tbody", "td",
    "tfoot", "th", "thead", "title", "tr", "u", "ul",
)
_HTML_RE = re.compile(
    r"<!doctype\s+html|</?(?:%s)\b[^>]*>" % "|".join(_HTML_TAGS),
    re.IGNORECASE,
)


def is_html(text: Optional[str]) -> bool:
    """True when the text contains markup for a known HTML element."""
    return bool(text) and _HTML_RE.search(text) is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


# ──────────────────────────────────────────────────────────────
#  Message
# ──────────────────────────────────────────────────────────────

class Message(BaseModel):
    """A notification message: intent, addressing, content, routing and outcome."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    type: MessageType = MessageType.EMAIL
    mime: Optional[Mime] = None
    direction: Direction = Direction.OUTBOUND
    state: State = State.UNKNOWN
    mode: SendMode = SendMode.PUSH

    sender: Optional[str] = Field(default=None, alias="from")
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: Optional[str] = None
    body: Optional[str] = None

    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")
    failed_at: Optional[datetime] = Field(default=None, alias="failedAt")
    result: Any = None

    transport: Optional[str] = None
    queue_name: Optional[str] = Field(default=None, alias="queueName")
    priority: Priority = Priority.NORMAL
    options: dict[str, Any] = Field(default_factory=dict)
    hash: Optional[str] = None

    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _coerce_recipients(cls, value: Any) -> list[str]:
        return _as_list(value)

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_options(cls, value: Any) -> dict[str, Any]:
        return value or {}

    # ── Derived ───────────────────────────────────────────────

    @property
    def is_sent(self) -> bool:
        return self.sent_at is not None

    # ── Pre-persist hook ──────────────────────────────────────

    def prepare(self) -> Message:
        """
        Normalize and validate before persistence, in order:
        recipients → queue name → hash → mime, then required fields.
        """
        self.to = _as_list(self.to)
        self.cc = _as_list(self.cc)
        self.bcc = _as_list(self.bcc)

        if not self.queue_name:
            self.queue_name = self.type.value.lower()

        if not self.hash or not self.hash.strip():
            self.hash = compute_hash(self)

        if self.mime is None:
            self.mime = Mime.HTML if is_html(self.body) else Mime.TEXT

        missing = []
        if not self.sender or not self.sender.strip():
            missing.append("from")
        if not self.to or not all(r and r.strip() for r in self.to):
            missing.append("to")
        if not self.body or not self.body.strip():
            missing.append("body")
        if missing:
            raise MessageValidationError(missing)
        return self

    def mark_sent(self, result: Any, state: Optional[str] = None) -> None:
        """sent_at keeps the first successful send."""
        if self.sent_at is None:
            self.sent_at = _utcnow()
        self.state = State(state) if state else State.DELIVERED
        self.result = result

    def mark_failed(self, result: Any) -> None:
        self.failed_at = _utcnow()
        self.result = result

    # ── Persisted form ────────────────────────────────────────

    def to_document(self) -> dict[str, Any]:
        """Persisted / wire layout: camelCase keys, enum literals, ISO datetimes."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Message:
        return cls.model_validate(document)
