"""
Message fingerprint used as the store's dedup key.

Only the fields in HASH_FIELDS take part, in that order, so two messages that
agree on them hash identically whatever their options, subject, state or
outcome fields hold.
"""
from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from models.message import Message

HASH_FIELDS = (
    "type", "direction", "from", "to",
    "transport", "queueName", "body", "priority",
)


def hash_projection(document: dict[str, Any]) -> list[list[Any]]:
    return [[name, document.get(name)] for name in HASH_FIELDS]


def hash_document(document: dict[str, Any]) -> str:
    canonical = json.dumps(
        hash_projection(document),
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


def compute_hash(message: Message) -> str:
    return hash_document(message.to_document())
