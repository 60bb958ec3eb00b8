"""
Tests for learning_engine.locking

Covers:
- Lock file creation with holder metadata and removal on release
- Timeout when another holder keeps the lock
- Stale lock reclamation (by metadata age and by file age)
- Release leaves a lock reclaimed by someone else untouched
- In-process lock timeout contract
"""

import asyncio
import json
import os
import time

import pytest

from learning_engine.locking import FileNamedLock, InProcessLock, LockTimeout


class TestFileNamedLock:
    """Test the lock-file implementation"""

    @pytest.mark.asyncio
    async def test_acquire_writes_metadata(self, tmp_path):
        lock = FileNamedLock(tmp_path / ".hotswap.lock")
        await lock.acquire()
        try:
            metadata = json.loads((tmp_path / ".hotswap.lock").read_text())
            assert metadata["pid"] == os.getpid()
            assert "hostname" in metadata
            assert lock.held
        finally:
            await lock.release()
        assert not (tmp_path / ".hotswap.lock").exists()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        lock = FileNamedLock(tmp_path / "missing" / ".hotswap.lock")
        async with lock:
            assert (tmp_path / "missing" / ".hotswap.lock").exists()

    @pytest.mark.asyncio
    async def test_second_holder_times_out(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        first = FileNamedLock(path)
        second = FileNamedLock(path, max_wait=0.1, retry_interval=0.01)
        async with first:
            with pytest.raises(LockTimeout, match="within"):
                await second.acquire()
        assert not second.held

    @pytest.mark.asyncio
    async def test_waits_for_release(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        first = FileNamedLock(path)
        second = FileNamedLock(path, max_wait=2.0, retry_interval=0.01)
        await first.acquire()

        async def release_soon():
            await asyncio.sleep(0.05)
            await first.release()

        releaser = asyncio.create_task(release_soon())
        await second.acquire()
        await releaser
        assert second.held
        await second.release()

    @pytest.mark.asyncio
    async def test_stale_lock_reclaimed(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        path.write_text(json.dumps({"pid": 999999, "acquired_at": time.time() - 120, "token": "dead"}))

        lock = FileNamedLock(path, max_wait=0.5, stale_after=30)
        async with lock:
            assert json.loads(path.read_text())["pid"] == os.getpid()

    @pytest.mark.asyncio
    async def test_late_reclaimer_keeps_fresh_lock(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        path.write_text(json.dumps({"pid": 999999, "acquired_at": time.time() - 120, "token": "dead"}))
        first = FileNamedLock(path, max_wait=0.5, stale_after=30)
        second = FileNamedLock(path, max_wait=0.1, stale_after=30, retry_interval=0.01)

        # Both waiters saw the abandoned lock; the first reclaims it and re-creates it
        assert first._is_stale() and second._is_stale()
        await first.acquire()
        token = json.loads(path.read_text())["token"]

        assert not second._reclaim_stale()
        assert json.loads(path.read_text())["token"] == token
        with pytest.raises(LockTimeout):
            await second.acquire()

        await first.release()
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_unreadable_metadata_uses_file_age(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        path.write_text("garbage")
        old = time.time() - 120
        os.utime(path, (old, old))

        lock = FileNamedLock(path, max_wait=0.5, stale_after=30)
        async with lock:
            assert lock.held

    @pytest.mark.asyncio
    async def test_fresh_unreadable_lock_is_respected(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        path.write_text("garbage")

        lock = FileNamedLock(path, max_wait=0.1, stale_after=30, retry_interval=0.01)
        with pytest.raises(LockTimeout):
            await lock.acquire()

    @pytest.mark.asyncio
    async def test_release_keeps_foreign_lock(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        lock = FileNamedLock(path)
        await lock.acquire()
        path.write_text(json.dumps({"pid": 1, "acquired_at": time.time(), "token": "someone-else"}))

        await lock.release()
        assert path.exists()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self, tmp_path):
        path = tmp_path / ".hotswap.lock"
        with pytest.raises(RuntimeError, match="boom"):
            async with FileNamedLock(path):
                raise RuntimeError("boom")
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_release_without_acquire_is_noop(self, tmp_path):
        lock = FileNamedLock(tmp_path / ".hotswap.lock")
        await lock.release()
        assert not lock.held


class TestInProcessLock:
    """Test the asyncio.Lock wrapper"""

    @pytest.mark.asyncio
    async def test_timeout_when_held(self):
        lock = InProcessLock("hotswap", max_wait=0.05)
        await lock.acquire()
        try:
            with pytest.raises(LockTimeout, match="hotswap"):
                await lock.acquire()
        finally:
            await lock.release()

    @pytest.mark.asyncio
    async def test_context_manager(self):
        lock = InProcessLock(max_wait=0.05)
        async with lock:
            assert lock.held
        assert not lock.held

    @pytest.mark.asyncio
    async def test_timeout_is_runtime_error(self):
        assert issubclass(LockTimeout, RuntimeError)

