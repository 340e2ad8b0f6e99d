"""
FileMessageStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    messages.json      {id: document}

Features:
  - Survives process restarts (unlike InMemoryMessageStore)
  - No external dependencies (no database server, no Redis)
  - Flush on every mutation, or batched with flush_interval_s > 0
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, edge devices, air-gapped environments.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from pathlib import Path
from typing import Optional

from database.store_memory import InMemoryMessageStore
from models.errors import PersistenceError

logger = structlog.get_logger()


class FileMessageStore(InMemoryMessageStore):
    """
    Extends InMemoryMessageStore with JSON file persistence.

    On init: loads all documents from disk and rebuilds the hash index.
    On every write: flushes to disk (or schedules a batched flush).
    """

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._load()
        logger.info("file_store_initialized",
                    data_dir=str(self._data_dir), messages=len(self._messages))

    @property
    def path(self) -> Path:
        return self._data_dir / "messages.json"

    # ── Load / Save ───────────────────────────────────────

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("file_store_load_error", path=str(self.path), error=str(e))
            return
        self._messages = data if isinstance(data, dict) else {}
        self._hash_index = {
            doc["hash"]: mid for mid, doc in self._messages.items() if doc.get("hash")
        }

    def _flush(self) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(self._messages, f, indent=2, default=str)
            tmp_path.replace(self.path)  # atomic on POSIX
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    def _on_change(self) -> None:
        if self._flush_interval <= 0:
            self._flush()
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(
                self._deferred_flush()
            )

    async def _deferred_flush(self) -> None:
        """Batch flush after interval."""
        await asyncio.sleep(self._flush_interval)
        if self._dirty:
            self._dirty = False
            self._flush()

    def flush_all(self) -> None:
        """Force flush to disk."""
        self._dirty = False
        self._flush()
        logger.info("file_store_flushed_all", messages=len(self._messages))

    async def close(self) -> None:
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
        if self._dirty:
            self.flush_all()
