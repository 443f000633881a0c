"""
Tests for the scratch file store and its age-based sweep.
"""

import os
import time

import aiofiles.os
import pytest

from mp3relay.services.temp_store import TempFileStore


def _write(path, data=b"x", age_seconds=0):
    path.write_bytes(data)
    if age_seconds:
        stamp = time.time() - age_seconds
        os.utime(path, (stamp, stamp))
    return path


class TestAllocate:
    """Test cases for TempFileStore.allocate()."""

    @pytest.mark.asyncio
    async def test_paths_are_unique(self, temp_store):
        """Test that concurrent-style allocations never collide."""
        paths = [await temp_store.allocate(".mp3") for _ in range(200)]
        assert len(set(paths)) == 200
        assert all(path.parent == temp_store.directory for path in paths)
        assert all(path.suffix == ".mp3" for path in paths)

    @pytest.mark.asyncio
    async def test_allocate_does_not_create_file(self, temp_store):
        path = await temp_store.allocate(".webm")
        assert not path.exists()
        assert path.name.endswith(".webm")

    @pytest.mark.asyncio
    async def test_skips_existing_name(self, temp_dir):
        """Test that a name already on disk is drawn again."""
        store = TempFileStore(temp_dir, clock=lambda: 1000.0)
        names = iter(["taken.mp3", "taken.mp3", "free.mp3"])
        store._new_name = lambda suffix: next(names)
        _write(temp_dir / "taken.mp3")

        path = await store.allocate(".mp3")

        assert path.name == "free.mp3"

    @pytest.mark.asyncio
    async def test_creates_missing_directory(self, tmp_path):
        store = TempFileStore(tmp_path / "not" / "yet")
        path = await store.allocate()
        assert path.parent.is_dir()


class TestDiscard:
    """Test cases for TempFileStore.discard()."""

    @pytest.mark.asyncio
    async def test_removes_file(self, temp_store):
        path = _write(await temp_store.allocate())
        assert await temp_store.discard(path) is True
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_is_idempotent(self, temp_store):
        """Test that discarding twice is harmless."""
        path = _write(await temp_store.allocate())
        await temp_store.discard(path)
        assert await temp_store.discard(path) is False
        assert await temp_store.discard(None) is False


class TestSweep:
    """Test cases for TempFileStore.sweep()."""

    @pytest.mark.asyncio
    async def test_deletes_only_old_files(self, temp_store, temp_dir):
        """Test that files past the threshold go and recent ones stay."""
        old = _write(temp_dir / "old.mp3", age_seconds=31 * 60)
        older = _write(temp_dir / "older.webm", age_seconds=3 * 3600)
        recent = _write(temp_dir / "recent.mp3", age_seconds=10 * 60)
        fresh = _write(temp_dir / "fresh.mp3")

        deleted = await temp_store.sweep()

        assert deleted == 2
        assert not old.exists()
        assert not older.exists()
        assert recent.exists()
        assert fresh.exists()

    @pytest.mark.asyncio
    async def test_no_file_outlives_threshold(self, temp_store, temp_dir):
        for index in range(5):
            _write(temp_dir / f"{index}.mp3", age_seconds=1800 + 60 * (index + 1))

        await temp_store.sweep()

        assert os.listdir(temp_dir) == []

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        store = TempFileStore(tmp_path / "gone")
        assert await store.sweep() == 0

    @pytest.mark.asyncio
    async def test_continues_after_failure(self, temp_store, temp_dir, monkeypatch):
        """Test that one undeletable file does not stop the sweep."""
        stuck = _write(temp_dir / "stuck.mp3", age_seconds=3600)
        other = _write(temp_dir / "other.mp3", age_seconds=3600)
        real_remove = aiofiles.os.remove

        async def flaky_remove(path, *args, **kwargs):
            if os.path.basename(str(path)) == "stuck.mp3":
                raise PermissionError("read-only")
            return await real_remove(path, *args, **kwargs)

        monkeypatch.setattr(aiofiles.os, "remove", flaky_remove)

        deleted = await temp_store.sweep()

        assert deleted == 1
        assert stuck.exists()
        assert not other.exists()

    @pytest.mark.asyncio
    async def test_uses_store_clock(self, temp_dir):
        """Test that age is measured against the injected clock."""
        path = _write(temp_dir / "a.mp3")
        store = TempFileStore(temp_dir, max_age_seconds=1800, clock=lambda: time.time() + 1801)

        assert await store.sweep() == 1
        assert not path.exists()
