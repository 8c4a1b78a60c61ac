# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup pipeline tests.

These tests drive the BackupService end to end against an in-memory remote
store and verify the core guarantees:
1. A changed file is uploaded once with the checksum of its content
2. Unchanged files are never re-uploaded
3. Two tasks for the same path never run at the same time
4. Failures are recorded, never raised out of a worker
5. The queue is lossy under burst and closed after stop
"""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from conftest import FakeRemoteStore, sha256, write_file

from changevault.backup.manager import PipelineContext, process_task
from changevault.backup.queue import PathLocks, TaskQueue, WorkerPool
from changevault.config import BackupConfig, CompressionFormat
from changevault.core import BackupService, is_excluded
from changevault.exceptions import TransientNetworkError
from changevault.models import (
    BackupTask,
    ChangeEvent,
    FileBackupState,
    FileStatus,
    Operation,
    TransformFlags,
)
from changevault.vault.transform import TransformSettings, decode


def _event(path: Path, operation=Operation.CREATE) -> ChangeEvent:
    size = path.stat().st_size if path.exists() else 0
    return ChangeEvent(path=str(path), operation=operation, size=size)


@pytest_asyncio.fixture
async def make_service(test_config: BackupConfig, state_store, reporter):
    """Factory for services sharing the test state store and reporter."""
    services = []

    def factory(remote: FakeRemoteStore, **overrides) -> BackupService:
        config = test_config.with_updates(**overrides) if overrides else test_config
        service = BackupService(config, state_store, remote, reporter)
        services.append(service)
        return service

    yield factory

    for service in services:
        if service.running:
            await service.stop()


# ============================================================================
# Single file
# ============================================================================

@pytest.mark.asyncio
async def test_create_uploads_once_with_content_checksum(make_service, fake_remote, temp_dir):
    """create "a" = "x" -> one upload of size 1 with sha256("x"), state success/1."""
    path = write_file(temp_dir / "src" / "a", "x")
    service = make_service(fake_remote)
    await service.start()

    assert service.submit_change(_event(path)) is True
    await service.stop(drain=True)

    assert fake_remote.uploads == [(str(path), 1, sha256(b"x"))]
    state = service.store.get(str(path))
    assert state.status == FileStatus.SUCCESS
    assert state.backup_count == 1
    assert state.last_checksum == sha256(b"x")
    assert service.successful == 1


@pytest.mark.asyncio
async def test_unchanged_file_is_skipped(make_service, fake_remote, temp_dir):
    """A second modify with identical content is skipped without upload."""
    path = write_file(temp_dir / "src" / "a.txt", "same content")
    service = make_service(fake_remote)
    await service.start()

    service.submit_change(_event(path))
    await service.queue.join()
    service.submit_change(_event(path, Operation.MODIFY))
    await service.stop(drain=True)

    assert len(fake_remote.uploads) == 1
    assert service.skipped == 1
    assert service.store.get(str(path)).backup_count == 1


@pytest.mark.asyncio
async def test_changed_content_is_uploaded_again(make_service, fake_remote, temp_dir):
    """New content produces a new upload and bumps backup_count."""
    path = write_file(temp_dir / "src" / "a.txt", "v1")
    service = make_service(fake_remote)
    await service.start()

    service.submit_change(_event(path))
    await service.queue.join()
    write_file(path, "version 2")
    service.submit_change(_event(path, Operation.MODIFY))
    await service.stop(drain=True)

    assert [u[2] for u in fake_remote.uploads] == [sha256(b"v1"), sha256(b"version 2")]
    assert service.store.get(str(path)).backup_count == 2


@pytest.mark.asyncio
async def test_transformed_payload_round_trips(make_service, fake_remote, temp_dir):
    """With compression and encryption the stored object decodes to the file."""
    content = b"compress me please " * 400
    path = write_file(temp_dir / "src" / "big.txt", content)
    service = make_service(
        fake_remote,
        compression_enabled=True,
        compression_format=CompressionFormat.ZSTD,
        encryption_enabled=True,
        encryption_password="pw",
    )
    await service.start()
    service.submit_change(_event(path))
    await service.stop(drain=True)

    (stored,) = fake_remote.objects.values()
    _, size, checksum = fake_remote.uploads[0]
    flags = TransformFlags(compressed=True, compression_format="zstd", encrypted=True)
    settings = TransformSettings(encryption_enabled=True, password="pw")

    assert size == len(stored)
    assert checksum == sha256(content)
    assert decode(stored, flags, settings) == content

    (record,) = await service.store.history(str(path))
    assert record["is_compressed"] is True
    assert record["is_encrypted"] is True
    assert record["original_size"] == len(content)
    assert record["compressed_size"] == len(stored)


# ============================================================================
# Concurrency
# ============================================================================

@pytest.mark.asyncio
async def test_k_files_with_fewer_workers(make_service, fake_remote, temp_dir):
    """K files, C < K workers -> every file succeeds and the queue is empty."""
    files = [write_file(temp_dir / "src" / f"f{i}.bin", f"content {i}") for i in range(12)]
    service = make_service(fake_remote, workers=3)
    await service.start()

    for path in files:
        assert service.submit_change(_event(path))
    await service.stop(drain=True)

    assert service.successful == 12
    assert service.queue.empty()
    assert {u[0] for u in fake_remote.uploads} == {str(p) for p in files}


@pytest.mark.asyncio
async def test_workers_run_in_parallel(make_service, temp_dir):
    """Different paths are processed concurrently."""
    remote = FakeRemoteStore(delay=0.05)
    files = [write_file(temp_dir / "src" / f"f{i}", f"{i}") for i in range(4)]
    service = make_service(remote, workers=4)
    await service.start()

    for path in files:
        service.submit_change(_event(path))
    await service.stop(drain=True)

    assert remote.max_active > 1


@pytest.mark.asyncio
async def test_same_path_tasks_are_serialized(make_service, temp_dir):
    """Duplicate tasks for one path never overlap; the later ones see the new state."""
    remote = FakeRemoteStore(delay=0.05)
    path = write_file(temp_dir / "src" / "hot.txt", "hot")
    service = make_service(remote, workers=4)
    await service.start()

    for _ in range(3):
        service.submit_change(_event(path, Operation.MODIFY))
    await service.stop(drain=True)

    assert remote.max_active_per_path == 1
    assert len(remote.uploads) == 1
    assert service.skipped == 2
    assert len(service.context.path_locks) == 0


# ============================================================================
# Failures and deletes
# ============================================================================

@pytest.mark.asyncio
async def test_upload_failure_is_recorded(make_service, fake_remote, temp_dir):
    """A failed upload marks the path failed and persists a failure record."""
    path = write_file(temp_dir / "src" / "a.txt", "data")
    fake_remote.fail_uploads.add(str(path))
    service = make_service(fake_remote)
    await service.start()

    service.submit_change(_event(path))
    await service.stop(drain=True)

    assert service.failed == 1
    state = service.store.get(str(path))
    assert state.status == FileStatus.FAILED
    assert state.last_checksum == sha256(b"data")
    assert state.backup_count == 0

    (record,) = await service.store.history(str(path))
    assert record["status"] == "failed"
    assert "Upload failed" in record["error_message"]


@pytest.mark.asyncio
async def test_failed_path_is_retried_on_metadata_change(make_service, fake_remote, temp_dir):
    """After a failure, a chmod event re-admits the path."""
    path = write_file(temp_dir / "src" / "a.txt", "data")
    fake_remote.fail_uploads.add(str(path))
    service = make_service(fake_remote)
    await service.start()

    service.submit_change(_event(path))
    await service.queue.join()
    fake_remote.fail_uploads.clear()

    assert service.submit_change(_event(path, Operation.CHMOD)) is True
    await service.stop(drain=True)

    assert service.store.get(str(path)).status == FileStatus.SUCCESS


@pytest.mark.asyncio
async def test_missing_file_fails_with_local_io(make_service, fake_remote, temp_dir):
    """A file that vanished before the worker read it is a local_io failure."""
    path = temp_dir / "src" / "gone.txt"
    service = make_service(fake_remote)
    await service.start()

    service.submit_change(ChangeEvent(path=str(path), operation=Operation.CREATE, size=3))
    await service.stop(drain=True)

    assert service.failed == 1
    assert fake_remote.uploads == []
    assert service.store.get(str(path)).status == FileStatus.FAILED

    report = await service.reporter.get_latest_report()
    assert report["results"][0]["error_kind"] == "local_io"


@pytest.mark.asyncio
async def test_delete_marks_state_without_upload(make_service, fake_remote, state_store, temp_dir):
    """delete never touches the network and sets the state to deleted."""
    path = str(temp_dir / "src" / "old.txt")
    await state_store.set(path, FileBackupState(status=FileStatus.SUCCESS, last_checksum="c"))
    service = make_service(fake_remote)
    await service.start()

    assert service.submit_change(ChangeEvent(path=path, operation=Operation.DELETE)) is True
    await service.stop(drain=True)

    assert fake_remote.uploads == []
    assert service.store.get(path).status == FileStatus.DELETED
    assert service.successful == 1


@pytest.mark.asyncio
async def test_metadata_event_for_missing_path_is_dropped(make_service, fake_remote, temp_dir):
    """chmod / rename for a path that no longer exists never reach the queue."""
    service = make_service(fake_remote)
    missing = str(temp_dir / "nope.txt")

    assert service.submit_change(ChangeEvent(path=missing, operation=Operation.CHMOD)) is False
    assert service.submit_change(ChangeEvent(path=missing, operation=Operation.RENAME)) is False
    assert service.queue.submitted == 0


@pytest.mark.asyncio
async def test_excluded_paths_are_dropped(make_service, fake_remote, temp_dir):
    """Exclude patterns filter events before classification."""
    service = make_service(fake_remote, exclude_patterns=["*.tmp", "cache/"])

    tmp = write_file(temp_dir / "src" / "x.tmp", "t")
    cached = write_file(temp_dir / "cache" / "y.txt", "c")
    kept = write_file(temp_dir / "src" / "z.txt", "z")

    assert service.submit_change(_event(tmp)) is False
    assert service.submit_change(_event(cached)) is False
    assert service.submit_change(_event(kept)) is True
    assert service.excluded == 2


def test_is_excluded_patterns():
    assert is_excluded("/a/b/file.swp", ["*.swp"])
    assert is_excluded("/a/.git/config", [".git/"])
    assert not is_excluded("/a/git/config", [".git/"])
    assert not is_excluded("/a/b/file.txt", ["*.swp", "build/"])


# ============================================================================
# Queue and lifecycle
# ============================================================================

@pytest.mark.asyncio
async def test_full_queue_drops_submissions(make_service, fake_remote, temp_dir):
    """With no workers running a full queue drops further tasks."""
    service = make_service(fake_remote, queue_capacity=2)
    files = [write_file(temp_dir / "src" / f"f{i}", "x") for i in range(3)]

    results = [service.submit_change(_event(p)) for p in files]

    assert results == [True, True, False]
    assert service.queue.dropped == 1
    assert service.queue.qsize() == 2


@pytest.mark.asyncio
async def test_stop_rejects_new_submissions(make_service, fake_remote, temp_dir):
    """After stop() every submission is rejected."""
    service = make_service(fake_remote)
    await service.start()
    await service.stop()

    path = write_file(temp_dir / "src" / "late.txt", "late")
    assert service.submit_change(_event(path)) is False
    assert service.queue.rejected == 1


@pytest.mark.asyncio
async def test_non_draining_stop_abandons_queued_tasks(make_service, temp_dir):
    """In-flight tasks finish; tasks still queued are abandoned."""
    remote = FakeRemoteStore(delay=0.3)
    files = [write_file(temp_dir / "src" / f"f{i}", f"{i}") for i in range(3)]
    service = make_service(remote, workers=1)
    await service.start()

    for path in files:
        service.submit_change(_event(path))
    await asyncio.sleep(0.1)

    abandoned = await service.stop(drain=False)

    assert abandoned == 2
    assert service.queue.abandoned == 2
    assert service.successful == 1
    assert len(remote.uploads) == 1


@pytest.mark.asyncio
async def test_start_fails_when_remote_unhealthy(make_service, temp_dir):
    """An unreachable remote store aborts start() before any worker runs."""
    remote = FakeRemoteStore()
    remote.healthy = False
    service = make_service(remote)

    with pytest.raises(TransientNetworkError):
        await service.start()

    assert service.running is False
    assert service.pool.running is False


@pytest.mark.asyncio
async def test_stop_writes_report_with_stats(make_service, fake_remote, temp_dir):
    """stop() closes the report with merged statistics."""
    path = write_file(temp_dir / "src" / "a.txt", "report me")
    service = make_service(fake_remote)
    await service.start()
    service.submit_change(_event(path))
    await service.stop(drain=True)

    report = await service.reporter.get_latest_report()
    assert report["total_files"] == 1
    assert report["successful"] == 1
    assert report["statistics"]["successful"] == 1
    assert report["statistics"]["total_files"] == 1
    assert report["results"][0]["file_path"] == str(path)
    assert report["results"][0]["checksum"] == sha256(b"report me")


@pytest.mark.asyncio
async def test_get_stats_merges_store_and_counters(make_service, fake_remote, temp_dir):
    path = write_file(temp_dir / "src" / "a.txt", "abc")
    service = make_service(fake_remote)
    await service.start()
    service.submit_change(_event(path))
    await service.queue.join()

    stats = await service.get_stats()

    assert stats["successful"] == 1
    assert stats["submitted"] == 1
    assert stats["queued"] == 0
    assert stats["status_counts"] == {"success": 1}
    assert stats["running"] is True


@pytest.mark.asyncio
async def test_run_cleanup(make_service, fake_remote, state_store):
    """The maintenance pass reports pruned states and removed records."""
    service = make_service(fake_remote)
    await state_store.mark_deleted("/data/recent.txt")

    outcome = await service.run_cleanup()

    assert outcome == {"pruned_states": 0, "removed_records": 0}
    assert state_store.get("/data/recent.txt") is not None


# ============================================================================
# Building blocks
# ============================================================================

@pytest.mark.asyncio
async def test_worker_survives_handler_errors():
    """A raising handler is logged and the worker keeps going."""
    queue: TaskQueue[str] = TaskQueue(10)
    seen = []

    async def handler(item):
        if item == "bad":
            raise RuntimeError("boom")
        seen.append(item)

    pool = WorkerPool(queue, handler)
    for item in ("a", "bad", "b"):
        queue.submit(item)
    pool.start(1)
    await pool.stop(drain=True)

    assert seen == ["a", "b"]
    assert pool.failed == 1
    assert pool.processed == 3


@pytest.mark.asyncio
async def test_path_locks_fifo_and_cleanup():
    """Waiters acquire a path lock in claim order; the table empties afterwards."""
    locks = PathLocks()
    order = []

    async def hold(tag, delay):
        async with locks.hold("/p"):
            order.append(tag)
            await asyncio.sleep(delay)

    first = asyncio.create_task(hold(1, 0.05))
    await asyncio.sleep(0)
    assert locks.locked("/p")
    rest = [asyncio.create_task(hold(i, 0)) for i in (2, 3)]
    await asyncio.gather(first, *rest)

    assert order == [1, 2, 3]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_process_task_direct(state_store, fake_remote, temp_dir):
    """process_task returns the recorded result and None when unchanged."""
    path = write_file(temp_dir / "src" / "a", "x")
    ctx = PipelineContext(store=state_store, network=fake_remote, settings=TransformSettings())
    task = BackupTask.from_event(_event(path))

    result = await process_task(task, ctx)
    assert result.success is True
    assert result.remote_id == "obj-1"
    assert result.original_size == result.transformed_size == 1

    assert await process_task(task, ctx) is None
