"""
JSON Document Stores

Every learning-engine store (weight history, evaluation log, fast-tier set,
transfer log, learned patterns) persists as one JSON document addressed by a
relative path. Components depend only on the two-method contract below, so a
test can hand them a ``MemoryJsonStore`` and never touch disk.

Contract:
- ``await read(path)`` returns the decoded value, or ``None`` when the document
  does not exist (or cannot be decoded). It never raises for absence.
- ``await write(path, value)`` replaces the document, creating any missing
  parent structure. Write faults (permissions, full disk) propagate.

Back-ends:
- FileJsonStore: one file per path under a root directory, atomic replace
- MemoryJsonStore: dict-backed, for tests and single-process embedding
- SqliteJsonStore: aiosqlite ``documents`` table in WAL mode, single-file deployments
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import aiosqlite

from . import config as cfg
from .models import utc_now

log = logging.getLogger("learning_engine.store")


class JsonStore(ABC):
    """Async read/write of JSON documents keyed by relative path."""

    @abstractmethod
    async def read(self, path: str) -> Optional[Any]:
        """Return the stored value or None when absent."""

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Replace the stored value, creating parent structure as needed."""

    async def close(self) -> None:
        """Release any held resources (no-op by default)."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class FileJsonStore(JsonStore):
    """
    One JSON file per document under ``root``.

    Writes land in a temporary sibling file first and are moved into place with
    ``os.replace`` so a reader in another process never observes a half-written
    document. Blocking file I/O runs in a worker thread.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else cfg.ENGINE_HOME

    def resolve(self, path: str) -> Path:
        return self.root / path

    async def read(self, path: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read_sync, self.resolve(path))

    async def write(self, path: str, value: Any) -> None:
        await asyncio.to_thread(self._write_sync, self.resolve(path), value)

    @staticmethod
    def _read_sync(file_path: Path) -> Optional[Any]:
        try:
            raw = file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning(f"Unreadable document {file_path}: {e}")
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning(f"Corrupt JSON in {file_path}, treating as absent: {e}")
            return None

    @staticmethod
    def _write_sync(file_path: Path, value: Any) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(value, indent=2, ensure_ascii=False) + "\n"
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{file_path.name}.", suffix=".tmp", dir=str(file_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, file_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class MemoryJsonStore(JsonStore):
    """Dict-backed store. Values are deep-copied in and out, like a real round trip."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._documents: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.write_count = 0

    async def read(self, path: str) -> Optional[Any]:
        if path not in self._documents:
            return None
        return copy.deepcopy(self._documents[path])

    async def write(self, path: str, value: Any) -> None:
        # Reject anything a JSON file could not hold
        json.dumps(value)
        self._documents[path] = copy.deepcopy(value)
        self.write_count += 1

    def paths(self):
        return sorted(self._documents)


SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS documents (
    path TEXT PRIMARY KEY,
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SqliteJsonStore(JsonStore):
    """
    JSON documents stored as rows of a single SQLite database.

    Usage:
        async with SqliteJsonStore(db_path) as store:
            await store.write("grpo-history.json", {...})
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else cfg.ENGINE_HOME / cfg.SQLITE_FILE
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        async with self._lock:
            if self._db is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._db = await aiosqlite.connect(str(self.db_path))
                await self._db.executescript(SCHEMA)
                await self._db.commit()
            return self._db

    async def read(self, path: str) -> Optional[Any]:
        db = await self._connection()
        cursor = await db.execute("SELECT body FROM documents WHERE path = ?", (path,))
        row = await cursor.fetchone()
        await cursor.close()
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            log.warning(f"Corrupt JSON document {path} in {self.db_path}, treating as absent: {e}")
            return None

    async def write(self, path: str, value: Any) -> None:
        body = json.dumps(value, ensure_ascii=False)
        db = await self._connection()
        await db.execute(
            """
            INSERT INTO documents (path, body, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                body = excluded.body,
                updated_at = excluded.updated_at
            """,
            (path, body, utc_now()),
        )
        await db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
