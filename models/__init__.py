"""Message record, enums, fingerprinting and error kinds."""
from models.errors import (
    MessageError, MessageValidationError, DuplicateKeyError,
    ResolutionError, TransportError, PersistenceError, NotFoundError,
)
from models.hashing import HASH_FIELDS, compute_hash, hash_document
from models.message import (
    Message, MessageType, Mime, Direction, State, SendMode, Priority, is_html,
)

__all__ = [
    "Message", "MessageType", "Mime", "Direction", "State", "SendMode", "Priority",
    "is_html", "HASH_FIELDS", "compute_hash", "hash_document",
    "MessageError", "MessageValidationError", "DuplicateKeyError",
    "ResolutionError", "TransportError", "PersistenceError", "NotFoundError",
]
