import asyncio
import os
import time
from pathlib import Path

import pytest

from textstore.services.blob_store import BlobStore


async def test_put_creates_root_and_publishes(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path / "nested" / "blobs")

    published = await store.put("abc.txt", b"hello")

    assert published is True
    assert (tmp_path / "nested" / "blobs" / "abc.txt").read_bytes() == b"hello"


async def test_put_is_idempotent(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)

    assert await store.put("abc.txt", b"hello") is True
    assert await store.put("abc.txt", b"hello") is False

    assert (tmp_path / "abc.txt").read_bytes() == b"hello"
    # No temp files left behind by either write.
    assert sorted(p.name for p in tmp_path.iterdir()) == ["abc.txt"]


async def test_concurrent_puts_publish_once(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)

    results = await asyncio.gather(*(store.put("same.txt", b"payload") for _ in range(8)))

    assert results.count(True) == 1
    assert (tmp_path / "same.txt").read_bytes() == b"payload"
    assert [p.name for p in tmp_path.iterdir()] == ["same.txt"]


async def test_get_missing_returns_none(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path / "never-created")

    assert await store.get("nope.txt") is None
    assert await store.exists("nope.txt") is False


async def test_get_streams_in_chunks(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path, chunk_size=4)
    await store.put("k.txt", b"0123456789")

    stream = await store.get("k.txt")
    chunks = [chunk async for chunk in stream]

    assert chunks == [b"0123", b"4567", b"89"]


@pytest.mark.parametrize("key", ["", "../escape.txt", "a/b.txt", "a\\b.txt", ".hidden.txt"])
async def test_rejects_unsafe_keys(tmp_path: Path, key: str) -> None:
    store = BlobStore(root=tmp_path)

    with pytest.raises(ValueError):
        await store.put(key, b"x")


async def test_key_for_appends_suffix(tmp_path: Path) -> None:
    assert BlobStore(root=tmp_path).key_for("abc") == "abc.txt"
    assert BlobStore(root=tmp_path, suffix=".log").key_for("abc") == "abc.log"


async def test_list_keys_skips_temp_files(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    await store.put("a.txt", b"a")
    (tmp_path / ".b.txt.deadbeef.tmp").write_bytes(b"partial")

    keys = [key for key, _ in await store.list_keys()]

    assert keys == ["a.txt"]


async def test_remove_stale_temp_files_respects_age(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    old = tmp_path / ".old.txt.1111.tmp"
    fresh = tmp_path / ".fresh.txt.2222.tmp"
    old.write_bytes(b"x")
    fresh.write_bytes(b"y")
    an_hour_ago = time.time() - 3600
    os.utime(old, (an_hour_ago, an_hour_ago))

    removed = await store.remove_stale_temp_files(min_age_seconds=60)

    assert removed == 1
    assert not old.exists()
    assert fresh.exists()


async def test_delete(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    await store.put("a.txt", b"a")

    assert await store.delete("a.txt") is True
    assert await store.delete("a.txt") is False
    assert await store.get("a.txt") is None


async def test_cancelled_put_leaves_no_files(tmp_path: Path, monkeypatch) -> None:
    store = BlobStore(root=tmp_path)
    writing = asyncio.Event()

    async def stalled_write(temp_path, data):
        temp_path.write_bytes(data[:3])
        writing.set()
        await asyncio.sleep(3600)

    monkeypatch.setattr(store, "_write_temp", stalled_write)
    task = asyncio.create_task(store.put("k.txt", b"partial upload"))
    await writing.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert not (tmp_path / "k.txt").exists()
    assert list(tmp_path.glob(".*.tmp")) == []


async def test_scans_of_missing_root_are_empty(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path / "never-created")

    assert await store.list_keys() == []
    assert await store.remove_stale_temp_files(min_age_seconds=0) == 0


async def test_quarantine_skips_fresh_and_missing_blobs(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    await store.put("fresh.txt", b"new")

    assert await store.quarantine("fresh.txt", min_age_seconds=60) is None
    assert await store.quarantine("absent.txt", min_age_seconds=60) is None
    assert (tmp_path / "fresh.txt").exists()


async def test_quarantine_then_restore(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    await store.put("old.txt", b"old")
    an_hour_ago = time.time() - 3600
    os.utime(tmp_path / "old.txt", (an_hour_ago, an_hour_ago))

    held = await store.quarantine("old.txt", min_age_seconds=60)

    assert held is not None
    assert await store.exists("old.txt") is False
    assert [key for key, _ in await store.list_keys()] == []

    await store.restore(held, "old.txt")

    assert (tmp_path / "old.txt").read_bytes() == b"old"
    assert [p.name for p in tmp_path.iterdir()] == ["old.txt"]


async def test_quarantine_then_discard(tmp_path: Path) -> None:
    store = BlobStore(root=tmp_path)
    await store.put("old.txt", b"old")
    an_hour_ago = time.time() - 3600
    os.utime(tmp_path / "old.txt", (an_hour_ago, an_hour_ago))

    held = await store.quarantine("old.txt", min_age_seconds=60)
    await store.discard(held)

    assert list(tmp_path.iterdir()) == []
