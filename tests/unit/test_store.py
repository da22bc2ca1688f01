import asyncio
import json

import pytest

from app.models.schemas import FileStatus
from app.utils.errors import InvalidInput, IOFailure
from domains.file_sync.store import FileRecordStore


@pytest.mark.asyncio
async def test_add_file_creates_pending_record_and_blob(store, make_blob, media_dir, state_file):
    source = make_blob(b"jpeg-bytes")

    record = await store.add_file(source, "photo.jpg")

    assert record.status is FileStatus.PENDING
    assert record.file_name == "photo.jpg"
    assert not source.exists()
    assert (media_dir / "photo.jpg").read_bytes() == b"jpeg-bytes"

    pending = await store.get_pending()
    assert [r.file_key for r in pending] == [record.file_key]

    on_disk = json.loads(state_file.read_text())
    assert on_disk == [{
        "fileKey": record.file_key,
        "fileName": "photo.jpg",
        "status": "PENDING",
        "timestamp": record.timestamp,
    }]


@pytest.mark.asyncio
async def test_add_file_without_name_uses_generated_key(store, make_blob, media_dir):
    record = await store.add_file(make_blob(), "")

    assert record.file_name == record.file_key
    assert (media_dir / record.file_key).exists()


@pytest.mark.asyncio
async def test_same_name_twice_gets_two_blobs(store, make_blob, media_dir):
    first = await store.add_file(make_blob(b"one"), "photo.jpg")
    second = await store.add_file(make_blob(b"two"), "photo.jpg")

    assert first.file_name == "photo.jpg"
    assert second.file_name == f"photo-{second.file_key[:8]}.jpg"
    assert (media_dir / first.file_name).read_bytes() == b"one"
    assert (media_dir / second.file_name).read_bytes() == b"two"


@pytest.mark.asyncio
async def test_unsafe_names_are_sanitized(store, make_blob, media_dir):
    record = await store.add_file(make_blob(), "../../etc/passwd")

    assert "/" not in record.file_name
    assert (media_dir / record.file_name).exists()


@pytest.mark.asyncio
async def test_failed_move_creates_no_record(store, tmp_path, state_file):
    with pytest.raises(IOFailure):
        await store.add_file(tmp_path / "does-not-exist.bin", "ghost.bin")

    assert await store.get_pending() == []
    assert not state_file.exists()


@pytest.mark.asyncio
async def test_failed_persist_rolls_back_blob(store, make_blob, media_dir, monkeypatch):
    def broken_persist():
        raise IOFailure("disk full")

    monkeypatch.setattr(store, "_persist", broken_persist)

    with pytest.raises(IOFailure):
        await store.add_file(make_blob(), "photo.jpg")

    assert store.list_records() == []
    assert list(media_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_update_unknown_key_returns_none_and_changes_nothing(store, make_blob, state_file):
    record = await store.add_file(make_blob(), "photo.jpg")
    before = state_file.read_text()

    assert await store.update_status("no-such-key", FileStatus.COMPLETED) is None

    assert state_file.read_text() == before
    assert store.get(record.file_key).status is FileStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [FileStatus.COMPLETED, FileStatus.FAILED])
async def test_terminal_status_deletes_blob(store, make_blob, media_dir, status):
    record = await store.add_file(make_blob(), "photo.jpg")

    updated = await store.update_status(record.file_key, status)

    assert updated.status is status
    assert not (media_dir / "photo.jpg").exists()
    assert await store.get_pending() == []
    assert store.get(record.file_key).status is status


@pytest.mark.asyncio
async def test_repeated_terminal_update_succeeds(store, make_blob):
    record = await store.add_file(make_blob(), "photo.jpg")

    assert await store.update_status(record.file_key, FileStatus.COMPLETED) is not None
    again = await store.update_status(record.file_key, FileStatus.COMPLETED)

    assert again is not None
    assert again.status is FileStatus.COMPLETED


@pytest.mark.asyncio
async def test_terminal_record_cannot_return_to_pending(store, make_blob):
    record = await store.add_file(make_blob(), "photo.jpg")
    await store.update_status(record.file_key, FileStatus.FAILED)

    with pytest.raises(InvalidInput):
        await store.update_status(record.file_key, FileStatus.PENDING)


@pytest.mark.asyncio
@pytest.mark.parametrize("first, second", [
    (FileStatus.COMPLETED, FileStatus.FAILED),
    (FileStatus.FAILED, FileStatus.COMPLETED),
    (FileStatus.EXPIRED, FileStatus.COMPLETED),
])
async def test_terminal_status_is_final(store, make_blob, state_file, first, second):
    record = await store.add_file(make_blob(), "photo.jpg")
    await store.update_status(record.file_key, first)
    before = state_file.read_text()

    with pytest.raises(InvalidInput):
        await store.update_status(record.file_key, second)

    assert store.get(record.file_key).status is first
    assert state_file.read_text() == before


@pytest.mark.asyncio
async def test_concurrent_mutations_are_all_persisted(store, make_blob, media_dir, state_file):
    records = await asyncio.gather(*[
        store.add_file(make_blob(f"blob-{i}".encode()), f"file-{i}.bin") for i in range(8)
    ])
    finished = {r.file_key: FileStatus.COMPLETED if i % 2 else FileStatus.FAILED
                for i, r in enumerate(records[:4])}

    await asyncio.gather(
        *[store.update_status(key, status) for key, status in finished.items()],
        *[store.add_file(make_blob(), f"late-{i}.bin") for i in range(4)],
    )

    on_disk = {item["fileKey"]: item["status"] for item in json.loads(state_file.read_text())}
    assert len(on_disk) == 12
    for key, status in finished.items():
        assert on_disk[key] == status.value
    for record in records[4:]:
        assert on_disk[record.file_key] == "PENDING"
        assert (media_dir / record.file_name).exists()


@pytest.mark.asyncio
async def test_orphan_sweep_racing_add_keeps_new_blob(store, make_blob, media_dir):
    record, removed = await asyncio.gather(
        store.add_file(make_blob(b"fresh"), "photo.jpg"),
        store.remove_orphan_blobs(),
    )

    assert removed == []
    assert (media_dir / record.file_name).read_bytes() == b"fresh"
    assert [r.file_key for r in await store.get_pending()] == [record.file_key]


@pytest.mark.asyncio
async def test_cleanup_never_touches_blob_of_newer_record_with_same_name(store, make_blob, media_dir):
    old = await store.add_file(make_blob(b"old"), "photo.jpg")
    await store.update_status(old.file_key, FileStatus.COMPLETED)

    new = await store.add_file(make_blob(b"new"), "photo.jpg")
    assert new.file_name == "photo.jpg"

    await store.update_status(old.file_key, FileStatus.COMPLETED)

    assert (media_dir / "photo.jpg").read_bytes() == b"new"


@pytest.mark.asyncio
async def test_records_survive_restart(store, make_blob, media_dir, state_file):
    record = await store.add_file(make_blob(), "photo.jpg")
    await store.update_status(record.file_key, FileStatus.COMPLETED)

    reopened = FileRecordStore(media_dir, state_file)
    await reopened.initialize()

    assert reopened.get(record.file_key).status is FileStatus.COMPLETED
    assert len(reopened) == 1


@pytest.mark.asyncio
async def test_get_pending_sees_writes_of_another_instance(store, make_blob, media_dir, state_file):
    other = FileRecordStore(media_dir, state_file)
    await other.initialize()

    record = await other.add_file(make_blob(), "photo.jpg")

    pending = await store.get_pending()
    assert [r.file_key for r in pending] == [record.file_key]
    assert store.get_blob_path(record.file_key) == media_dir / "photo.jpg"


@pytest.mark.asyncio
async def test_get_blob_path_unknown_key(store):
    assert store.get_blob_path("missing") is None


@pytest.mark.asyncio
async def test_returned_records_are_copies(store, make_blob):
    record = await store.add_file(make_blob(), "photo.jpg")
    record.status = FileStatus.COMPLETED

    assert store.get(record.file_key).status is FileStatus.PENDING


@pytest.mark.asyncio
async def test_corrupt_state_file_starts_empty(media_dir, state_file):
    state_file.parent.mkdir(parents=True)
    state_file.write_text("{not json")

    store = FileRecordStore(media_dir, state_file)
    await store.initialize()

    assert store.list_records() == []


@pytest.mark.asyncio
async def test_expire_stale_flips_old_pending_records(store, make_blob, media_dir):
    old = await store.add_file(make_blob(), "old.jpg")
    done = await store.add_file(make_blob(), "done.jpg")
    await store.update_status(done.file_key, FileStatus.COMPLETED)

    two_hours_later = old.timestamp + 2 * 3600 * 1000
    expired = await store.expire_stale(3600, now=two_hours_later)

    assert [r.file_key for r in expired] == [old.file_key]
    assert store.get(old.file_key).status is FileStatus.EXPIRED
    assert store.get(done.file_key).status is FileStatus.COMPLETED
    assert not (media_dir / "old.jpg").exists()


@pytest.mark.asyncio
async def test_expire_stale_keeps_fresh_records(store, make_blob):
    record = await store.add_file(make_blob(), "fresh.jpg")

    assert await store.expire_stale(3600, now=record.timestamp + 1000) == []
    assert store.get(record.file_key).status is FileStatus.PENDING


@pytest.mark.asyncio
async def test_remove_orphan_blobs(store, make_blob, media_dir):
    record = await store.add_file(make_blob(), "kept.jpg")
    (media_dir / "stray.jpg").write_bytes(b"left behind")

    removed = await store.remove_orphan_blobs()

    assert removed == ["stray.jpg"]
    assert (media_dir / record.file_name).exists()


@pytest.mark.asyncio
async def test_stats_counts_by_status(store, make_blob):
    await store.add_file(make_blob(b"12345"), "a.jpg")
    done = await store.add_file(make_blob(), "b.jpg")
    await store.update_status(done.file_key, FileStatus.FAILED)

    stats = await store.stats()

    assert stats.total == 2
    assert stats.by_status["PENDING"] == 1
    assert stats.by_status["FAILED"] == 1
    assert stats.by_status["EXPIRED"] == 0
    assert stats.pending_bytes == 5
