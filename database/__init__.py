"""
Database layer — Multi-backend message persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON file on disk, for small deployments)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  message = await store.find_by_id("abc123")
"""
from database.criteria import matches, sent_criteria, unsent_criteria
from database.models import Base, MessageRow
from database.session import create_engine, session_scope, init_db, close_db
from database.store_base import BaseMessageStore
from database.store import SqlMessageStore
from database.store_memory import InMemoryMessageStore
from database.store_file import FileMessageStore
from database.store_factory import create_store

__all__ = [
    # Criteria
    "matches", "sent_criteria", "unsent_criteria",
    # ORM models
    "Base", "MessageRow",
    # Session management
    "create_engine", "session_scope", "init_db", "close_db",
    # Store interface
    "BaseMessageStore",
    # Store backends
    "SqlMessageStore", "InMemoryMessageStore", "FileMessageStore",
    # Factory
    "create_store",
]
