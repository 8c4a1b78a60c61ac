# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
State store tests: cached file state, write-through persistence and
backup history.
"""

import asyncio
from datetime import datetime, timedelta, UTC
from pathlib import Path

import aiosqlite
import pytest

from changevault.exceptions import StateStoreError
from changevault.models import (
    BackupResult,
    FileBackupState,
    FileStatus,
    Operation,
    SearchCriteria,
    TransformFlags,
)
from changevault.vault.sqlite_vault import SQLiteStateStore


def _result(path="/data/a.txt", checksum="c1", success=True, end_time=None, **kwargs):
    now = end_time or datetime.now(UTC)
    return BackupResult(
        path=path,
        operation=Operation.MODIFY,
        success=success,
        start_time=now - timedelta(seconds=1),
        end_time=now,
        remote_id="obj-1" if success else "",
        error=None if success else "boom",
        error_kind=None if success else "transient_network",
        original_size=10,
        transformed_size=8,
        checksum=checksum,
        transform_flags=TransformFlags(compressed=True, compression_format="gzip"),
        **kwargs,
    )


# ============================================================================
# File state
# ============================================================================

@pytest.mark.asyncio
async def test_record_outcome_success_increments_count(state_store):
    """Each successful outcome bumps backup_count and stores the checksum."""
    await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    state = await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c2")

    assert state.status == FileStatus.SUCCESS
    assert state.last_checksum == "c2"
    assert state.backup_count == 2
    assert state.last_backup_time is not None


@pytest.mark.asyncio
async def test_record_outcome_failure_keeps_count(state_store):
    """A failure records status failed without counting a backup."""
    await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    state = await state_store.record_outcome("/data/a.txt", FileStatus.FAILED, "c2")

    assert state.status == FileStatus.FAILED
    assert state.last_checksum == "c2"
    assert state.backup_count == 1


@pytest.mark.asyncio
async def test_mark_deleted_keeps_checksum(state_store):
    """Deleting keeps the last checksum and flips the status."""
    await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    state = await state_store.mark_deleted("/data/a.txt")

    assert state.status == FileStatus.DELETED
    assert state.last_checksum == "c1"


@pytest.mark.asyncio
async def test_get_returns_copy(state_store):
    """Mutating a returned state does not change the cache."""
    await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    state = state_store.get("/data/a.txt")
    state.backup_count = 99

    assert state_store.get("/data/a.txt").backup_count == 1
    assert state_store.get("/missing") is None


@pytest.mark.asyncio
async def test_states_survive_reopen(temp_dir: Path):
    """States are written through and reloaded into the cache on open."""
    db_path = temp_dir / "state.db"
    async with SQLiteStateStore(db_path) as store:
        await store.set(
            "/data/a.txt", FileBackupState(status=FileStatus.SUCCESS, last_checksum="c1")
        )
        await store.record_outcome("/data/b.txt", FileStatus.FAILED, "c2")

    async with SQLiteStateStore(db_path) as store:
        states = store.all_states()
        assert set(states) == {"/data/a.txt", "/data/b.txt"}
        assert states["/data/a.txt"].last_checksum == "c1"
        assert states["/data/b.txt"].status == FileStatus.FAILED


@pytest.mark.asyncio
async def test_concurrent_record_outcome_is_serialized(state_store):
    """Concurrent read-modify-writes on one path never lose an increment."""
    await asyncio.gather(
        *(state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, f"c{i}") for i in range(20))
    )
    assert state_store.get("/data/a.txt").backup_count == 20


@pytest.mark.asyncio
async def test_prune_deleted_states(state_store):
    """Only deleted states older than max_age are forgotten."""
    old = datetime.now(UTC) - timedelta(days=2)
    await state_store.set(
        "/data/old.txt", FileBackupState(status=FileStatus.DELETED, last_backup_time=old)
    )
    await state_store.mark_deleted("/data/new.txt")
    await state_store.record_outcome("/data/kept.txt", FileStatus.SUCCESS, "c1")

    removed = await state_store.prune_deleted_states(timedelta(hours=24))

    assert removed == 1
    assert state_store.get("/data/old.txt") is None
    assert state_store.get("/data/new.txt") is not None
    assert state_store.get("/data/kept.txt") is not None


@pytest.mark.asyncio
async def test_closed_store_raises(temp_dir: Path):
    """Writes on a store that was never opened raise StateStoreError."""
    store = SQLiteStateStore(temp_dir / "state.db")
    with pytest.raises(StateStoreError) as exc:
        await store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    assert exc.value.kind == "state_store"


# ============================================================================
# Backup history
# ============================================================================

@pytest.mark.asyncio
async def test_insert_record_is_idempotent_per_checksum(state_store):
    """Re-inserting the same (path, checksum) updates the existing row."""
    first = await state_store.insert_record(_result(success=False))
    second = await state_store.insert_record(_result(success=True))

    assert first == second
    history = await state_store.history("/data/a.txt")
    assert len(history) == 1
    assert history[0]["status"] == "success"
    assert history[0]["file_id"] == "obj-1"
    assert history[0]["is_compressed"] is True
    assert history[0]["compression_format"] == "gzip"


@pytest.mark.asyncio
async def test_history_newest_first(state_store):
    """History is ordered by backup time, newest first, and limited."""
    base = datetime.now(UTC) - timedelta(hours=1)
    for i in range(3):
        await state_store.insert_record(
            _result(checksum=f"c{i}", end_time=base + timedelta(minutes=i))
        )

    history = await state_store.history("/data/a.txt", limit=2)
    assert [r["checksum"] for r in history] == ["c2", "c1"]


@pytest.mark.asyncio
async def test_search_filters(state_store):
    """Search matches path substrings and status."""
    await state_store.insert_record(_result(path="/data/reports/q1.csv", checksum="a"))
    await state_store.insert_record(
        _result(path="/data/reports/q2.csv", checksum="b", success=False)
    )
    await state_store.insert_record(_result(path="/data/img/logo.png", checksum="c"))

    reports = await state_store.search(SearchCriteria(file_path="reports"))
    assert {r["file_path"] for r in reports} == {
        "/data/reports/q1.csv",
        "/data/reports/q2.csv",
    }

    failed = await state_store.search(SearchCriteria(status=FileStatus.FAILED))
    assert [r["file_path"] for r in failed] == ["/data/reports/q2.csv"]


@pytest.mark.asyncio
async def test_stats(state_store):
    """Stats aggregate states and successful history sizes."""
    await state_store.record_outcome("/data/a.txt", FileStatus.SUCCESS, "c1")
    await state_store.record_outcome("/data/b.txt", FileStatus.FAILED, "c2")
    await state_store.insert_record(_result(checksum="c1"))
    await state_store.insert_record(_result(path="/data/b.txt", checksum="c2", success=False))

    stats = await state_store.stats()
    assert stats["total_files"] == 2
    assert stats["status_counts"] == {"success": 1, "failed": 1}
    assert stats["total_original_size"] == 10
    assert stats["total_compressed_size"] == 8
    assert stats["recent_backups_24h"] == 2


@pytest.mark.asyncio
async def test_cleanup_old_records(state_store, temp_dir: Path):
    """Only successful rows older than the retention are removed."""
    old = datetime.now(UTC) - timedelta(days=100)
    await state_store.insert_record(_result(checksum="old", end_time=old))
    await state_store.insert_record(_result(checksum="old-failed", end_time=old, success=False))
    await state_store.insert_record(_result(checksum="new"))

    removed = await state_store.cleanup_old_records(90)

    assert removed == 1
    async with aiosqlite.connect(temp_dir / "state.db") as db:
        async with db.execute("SELECT checksum FROM backup_records ORDER BY checksum") as cursor:
            remaining = [row[0] async for row in cursor]
    assert remaining == ["new", "old-failed"]
