"""
Named Exclusive Locks — cross-process mutual exclusion for hot-swap batches

Contract (shared by every implementation):
- ``await acquire()`` waits with backoff until the lock is held, or raises
  ``LockTimeout`` once ``max_wait`` seconds have passed.
- A lock held longer than ``stale_after`` seconds is presumed abandoned by a
  crashed holder and is reclaimed by the next acquirer.
- ``await release()`` gives the lock up; releasing a lock this instance does
  not hold is a no-op.
- ``async with lock:`` acquires on entry and always releases on exit.

FileNamedLock creates the lock file with ``O_CREAT | O_EXCL`` (atomic on local
filesystems) and records ``{pid, hostname, acquired_at}`` so other processes
can judge staleness. Reclaiming a stale file and releasing both re-check the
holder under an ``flock`` on a sidecar ``.guard`` file, so a lock that was
reclaimed and re-created in the meantime is never deleted. InProcessLock wraps
``asyncio.Lock`` with the same timeout behaviour for deployments where one
process owns the store.
"""

import asyncio
import fcntl
import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from . import config as cfg

log = logging.getLogger("learning_engine.locking")


class LockTimeout(RuntimeError):
    """Raised when a named lock cannot be acquired within its maximum wait."""


class NamedLock:
    """Base class: async context manager over acquire/release."""

    name: str = "lock"

    async def acquire(self) -> None:
        raise NotImplementedError

    async def release(self) -> None:
        raise NotImplementedError

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


class FileNamedLock(NamedLock):
    """Lock file with PID/hostname metadata and stale reclamation."""

    def __init__(
        self,
        path: Path,
        max_wait: float = cfg.LOCK_MAX_WAIT_S,
        stale_after: float = cfg.LOCK_STALE_S,
        retry_interval: float = cfg.LOCK_RETRY_S,
        max_retry_interval: float = cfg.LOCK_RETRY_MAX_S,
    ):
        self.path = Path(path)
        self.name = self.path.name
        self.max_wait = max_wait
        self.stale_after = stale_after
        self.retry_interval = retry_interval
        self.max_retry_interval = max_retry_interval
        self._token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._token is not None

    async def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.max_wait
        delay = self.retry_interval

        while True:
            if self._try_create():
                return

            if self._reclaim_stale():
                log.warning(f"Reclaimed stale lock {self.path}")
                continue

            if time.monotonic() >= deadline:
                raise LockTimeout(f"Failed to acquire lock {self.name} within {self.max_wait}s")

            log.debug(f"Lock {self.name} busy, retrying in {delay:.3f}s")
            await asyncio.sleep(min(delay, max(0.0, deadline - time.monotonic())))
            delay = min(delay * 2, self.max_retry_interval)

    async def release(self) -> None:
        if self._token is None:
            return
        try:
            with self._guard():
                holder = self._read_metadata()
                if holder is None or holder.get("token") == self._token:
                    self._remove()
                    return
            log.warning(f"Lock {self.name} was reclaimed by another holder; leaving it in place")
        finally:
            self._token = None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False

        token = f"{os.getpid()}-{time.time_ns()}"
        metadata = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": time.time(),
            "token": token,
        }
        try:
            os.write(fd, json.dumps(metadata).encode("utf-8"))
        finally:
            os.close(fd)
        self._token = token
        return True

    def _read_metadata(self) -> Optional[dict]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {}

    def _is_stale(self) -> bool:
        metadata = self._read_metadata()
        if metadata is None:
            # Released between our create attempt and this check
            return False
        acquired_at = metadata.get("acquired_at")
        if not isinstance(acquired_at, (int, float)):
            # Unreadable or half-written metadata: fall back to the file's age
            try:
                acquired_at = self.path.stat().st_mtime
            except FileNotFoundError:
                return False
        return time.time() - acquired_at > self.stale_after

    @contextmanager
    def _guard(self):
        """Serialize stale checks and removals across processes with flock on a sidecar file."""
        guard_path = self.path.with_name(self.path.name + ".guard")
        with open(guard_path, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _reclaim_stale(self) -> bool:
        """Remove the lock file if it is stale when re-checked under the guard."""
        with self._guard():
            if not self._is_stale():
                return False
            self._remove()
            return True

    def _remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class InProcessLock(NamedLock):
    """asyncio.Lock with the named-lock timeout contract (single-process deployments)."""

    def __init__(self, name: str = "hotswap", max_wait: float = cfg.LOCK_MAX_WAIT_S):
        self.name = name
        self.max_wait = max_wait
        self._lock = asyncio.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.max_wait)
        except asyncio.TimeoutError:
            raise LockTimeout(f"Failed to acquire lock {self.name} within {self.max_wait}s") from None

    async def release(self) -> None:
        if self._lock.locked():
            self._lock.release()
