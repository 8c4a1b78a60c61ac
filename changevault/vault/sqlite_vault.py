# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault SQLite Vault - Durable per-file state and backup history.

The store owns two things:
1. An in-memory cache of FileBackupState keyed by path, which serves every
   read made by the classifier and the workers
2. A SQLite database (file_states + backup_records) that every write goes
   through to before the cache is updated

Writes are serialized by a single asyncio.Lock, so a read-modify-write in
record_outcome() is never interleaved with another write.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Dict, List

import aiosqlite
import structlog

from changevault.exceptions import StateStoreError
from changevault.models import (
    BackupRecord,
    BackupResult,
    FileBackupState,
    FileStatus,
    SearchCriteria,
)

logger = structlog.get_logger()

_RECORD_COLUMNS = """
    id, file_path, file_id, checksum, original_size, compressed_size,
    is_compressed, is_encrypted, compression_format, backup_time, status,
    error_message, operation
"""


def _row_to_record(row) -> BackupRecord:
    return BackupRecord(
        id=row[0],
        file_path=row[1],
        file_id=row[2] or "",
        checksum=row[3],
        original_size=row[4],
        compressed_size=row[5] or 0,
        is_compressed=bool(row[6]),
        is_encrypted=bool(row[7]),
        compression_format=row[8] or "none",
        backup_time=row[9],
        status=row[10],
        error_message=row[11],
        operation=row[12] or "",
    )


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteStateStore:
    """
    State store backed by aiosqlite with a write-through cache.

    Usage:
        store = SQLiteStateStore(Path("./backup.db"))
        await store.open()
        state = store.get("/data/a.txt")
        await store.record_outcome("/data/a.txt", FileStatus.SUCCESS, checksum)
        await store.close()
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._cache: Dict[str, FileBackupState] = {}
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def _conn(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise StateStoreError("State store is not open", operation=operation)
        return self._db

    async def open(self) -> None:
        """
        Open the database, create the schema and load cached states.

        Idempotent: calling open() on an open store does nothing.
        """
        if self._db is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS backup_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_path TEXT NOT NULL,
                    file_id TEXT,
                    checksum TEXT NOT NULL,
                    original_size INTEGER NOT NULL,
                    compressed_size INTEGER,
                    is_compressed BOOLEAN DEFAULT FALSE,
                    is_encrypted BOOLEAN DEFAULT FALSE,
                    compression_format TEXT DEFAULT 'none',
                    backup_time TEXT NOT NULL,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    operation TEXT,
                    UNIQUE(file_path, checksum)
                )
            """)

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS file_states (
                    file_path TEXT PRIMARY KEY,
                    last_checksum TEXT,
                    last_backup TEXT,
                    backup_count INTEGER DEFAULT 0,
                    status TEXT NOT NULL
                )
            """)

            await self._db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backup_records_file_path
                ON backup_records(file_path)
            """)

            await self._db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backup_records_status
                ON backup_records(status)
            """)

            await self._db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backup_records_backup_time
                ON backup_records(backup_time)
            """)

            await self._db.commit()

            self._cache.clear()
            async with self._db.execute(
                """
                SELECT file_path, last_checksum, last_backup, backup_count, status
                FROM file_states
                """
            ) as cursor:
                async for row in cursor:
                    self._cache[row[0]] = FileBackupState(
                        status=FileStatus(row[4]),
                        last_checksum=row[1] or "",
                        last_backup_time=_parse_time(row[2]),
                        backup_count=row[3] or 0,
                    )

        except (aiosqlite.Error, OSError) as e:
            if self._db is not None:
                await self._db.close()
                self._db = None
            raise StateStoreError(
                f"Failed to open state store: {e}",
                operation="open",
                path=str(self.db_path),
            ) from e

        logger.info(
            "state_store_opened",
            db_path=str(self.db_path),
            cached_states=len(self._cache),
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is None:
            return
        async with self._write_lock:
            await self._db.close()
            self._db = None
        logger.info("state_store_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> "SQLiteStateStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # File state
    # ------------------------------------------------------------------

    def get(self, path: str) -> FileBackupState | None:
        """
        Get the cached state of a path.

        Returns a copy so callers cannot mutate the cache.
        """
        state = self._cache.get(path)
        return replace(state) if state is not None else None

    def all_states(self) -> Dict[str, FileBackupState]:
        """Snapshot of every cached state."""
        return {path: replace(state) for path, state in self._cache.items()}

    async def _persist_state(self, path: str, state: FileBackupState) -> None:
        db = self._conn("set")
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO file_states
                (file_path, last_checksum, last_backup, backup_count, status)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    path,
                    state.last_checksum,
                    state.last_backup_time.isoformat() if state.last_backup_time else None,
                    state.backup_count,
                    state.status.value,
                ),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise StateStoreError(
                f"Failed to persist file state: {e}",
                operation="set",
                path=path,
            ) from e

    async def set(self, path: str, state: FileBackupState) -> None:
        """
        Replace the state of a path.

        Args:
            path: File path
            state: New state
        """
        async with self._write_lock:
            await self._persist_state(path, state)
            self._cache[path] = replace(state)

    async def record_outcome(
        self,
        path: str,
        status: FileStatus,
        checksum: str = "",
    ) -> FileBackupState:
        """
        Apply the outcome of a backup attempt to a path's state.

        A successful attempt increments backup_count. An empty checksum
        keeps the previously stored one.

        Args:
            path: File path
            status: Outcome status
            checksum: Checksum of the content that was attempted

        Returns:
            The updated state
        """
        status = FileStatus(status)
        async with self._write_lock:
            current = self._cache.get(path)
            state = replace(current) if current else FileBackupState(status=status)

            state.status = status
            state.last_backup_time = datetime.now(UTC)
            if checksum:
                state.last_checksum = checksum
            if status == FileStatus.SUCCESS:
                state.backup_count += 1

            await self._persist_state(path, state)
            self._cache[path] = state

        logger.debug(
            "file_state_updated",
            path=path,
            status=status.value,
            backup_count=state.backup_count,
        )
        return replace(state)

    async def mark_deleted(self, path: str) -> FileBackupState:
        """Record that a path was deleted locally."""
        return await self.record_outcome(path, FileStatus.DELETED)

    async def prune_deleted_states(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """
        Forget paths that were deleted more than max_age ago.

        Args:
            max_age: How long a deleted state is kept

        Returns:
            Number of states removed
        """
        cutoff = datetime.now(UTC) - max_age
        async with self._write_lock:
            stale = [
                path
                for path, state in self._cache.items()
                if state.status == FileStatus.DELETED
                and state.last_backup_time is not None
                and state.last_backup_time < cutoff
            ]
            if not stale:
                return 0

            db = self._conn("prune_deleted_states")
            try:
                await db.executemany(
                    "DELETE FROM file_states WHERE file_path = ?",
                    [(path,) for path in stale],
                )
                await db.commit()
            except aiosqlite.Error as e:
                raise StateStoreError(
                    f"Failed to prune deleted states: {e}",
                    operation="prune_deleted_states",
                ) from e

            for path in stale:
                del self._cache[path]

        logger.info("deleted_states_pruned", count=len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Backup history
    # ------------------------------------------------------------------

    async def insert_record(self, result: BackupResult) -> int:
        """
        Persist the history row for a backup attempt.

        A second attempt for the same (path, checksum) updates the existing
        row, so re-uploading after a crash does not duplicate history.

        Args:
            result: Completed backup result

        Returns:
            Row id of the record
        """
        flags = result.transform_flags
        status = FileStatus.SUCCESS if result.success else FileStatus.FAILED
        params = (
            result.path,
            result.remote_id,
            result.checksum,
            result.original_size,
            result.transformed_size,
            flags.compressed,
            flags.encrypted,
            flags.compression_format,
            result.end_time.isoformat(),
            status.value,
            result.error,
            result.operation.value,
        )

        async with self._write_lock:
            db = self._conn("insert_record")
            try:
                async with db.execute(
                    """
                    INSERT INTO backup_records
                    (file_path, file_id, checksum, original_size, compressed_size,
                     is_compressed, is_encrypted, compression_format, backup_time,
                     status, error_message, operation)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(file_path, checksum) DO UPDATE SET
                        file_id = excluded.file_id,
                        original_size = excluded.original_size,
                        compressed_size = excluded.compressed_size,
                        is_compressed = excluded.is_compressed,
                        is_encrypted = excluded.is_encrypted,
                        compression_format = excluded.compression_format,
                        backup_time = excluded.backup_time,
                        status = excluded.status,
                        error_message = excluded.error_message,
                        operation = excluded.operation
                    RETURNING id
                    """,
                    params,
                ) as cursor:
                    row = await cursor.fetchone()
                await db.commit()
            except aiosqlite.Error as e:
                raise StateStoreError(
                    f"Failed to insert backup record: {e}",
                    operation="insert_record",
                    path=result.path,
                ) from e

        record_id = row[0] if row else 0
        logger.debug("backup_record_saved", record_id=record_id, path=result.path)
        return record_id

    async def _select_records(self, query: str, params: list, operation: str) -> List[BackupRecord]:
        db = self._conn(operation)
        records: List[BackupRecord] = []
        try:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    records.append(_row_to_record(row))
        except aiosqlite.Error as e:
            raise StateStoreError(
                f"Failed to query backup records: {e}",
                operation=operation,
            ) from e
        return records

    async def history(self, path: str, limit: int = 50) -> List[BackupRecord]:
        """
        Get the backup history of one path, newest first.

        Args:
            path: File path
            limit: Maximum number of records

        Returns:
            List of backup records
        """
        return await self._select_records(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM backup_records
            WHERE file_path = ?
            ORDER BY backup_time DESC
            LIMIT ?
            """,
            [path, limit],
            "history",
        )

    async def search(self, criteria: SearchCriteria) -> List[BackupRecord]:
        """
        Search backup history.

        Args:
            criteria: Filters; file_path is a substring match

        Returns:
            Matching records, newest first
        """
        query = f"SELECT {_RECORD_COLUMNS} FROM backup_records WHERE 1=1"
        params: List = []

        if criteria.file_path:
            query += " AND file_path LIKE ?"
            params.append(f"%{criteria.file_path}%")

        if criteria.status is not None:
            query += " AND status = ?"
            params.append(FileStatus(criteria.status).value)

        if criteria.start_time is not None:
            query += " AND backup_time >= ?"
            params.append(criteria.start_time.isoformat())

        if criteria.end_time is not None:
            query += " AND backup_time <= ?"
            params.append(criteria.end_time.isoformat())

        query += " ORDER BY backup_time DESC LIMIT ?"
        params.append(criteria.limit)

        return await self._select_records(query, params, "search")

    async def stats(self) -> dict:
        """
        Get aggregate statistics.

        Returns:
            Dict with total_files, status_counts, total_original_size,
            total_compressed_size and recent_backups_24h
        """
        db = self._conn("stats")
        stats: dict = {}
        recent_cutoff = (datetime.now(UTC) - timedelta(hours=24)).isoformat()

        try:
            async with db.execute("SELECT COUNT(*) FROM file_states") as cursor:
                row = await cursor.fetchone()
                stats["total_files"] = row[0] if row else 0

            async with db.execute(
                "SELECT status, COUNT(*) FROM file_states GROUP BY status"
            ) as cursor:
                stats["status_counts"] = {row[0]: row[1] async for row in cursor}

            async with db.execute(
                """
                SELECT SUM(original_size), SUM(compressed_size)
                FROM backup_records
                WHERE status = 'success'
                """
            ) as cursor:
                row = await cursor.fetchone()
                stats["total_original_size"] = row[0] or 0
                stats["total_compressed_size"] = row[1] or 0

            async with db.execute(
                "SELECT COUNT(*) FROM backup_records WHERE backup_time > ?",
                (recent_cutoff,),
            ) as cursor:
                row = await cursor.fetchone()
                stats["recent_backups_24h"] = row[0] if row else 0

        except aiosqlite.Error as e:
            raise StateStoreError(f"Failed to compute stats: {e}", operation="stats") from e

        return stats

    async def cleanup_old_records(self, days: int) -> int:
        """
        Delete successful history rows older than the given number of days.

        Args:
            days: Retention in days

        Returns:
            Number of rows removed
        """
        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()

        async with self._write_lock:
            db = self._conn("cleanup_old_records")
            try:
                cursor = await db.execute(
                    """
                    DELETE FROM backup_records
                    WHERE backup_time < ? AND status = 'success'
                    """,
                    (cutoff,),
                )
                removed = cursor.rowcount
                await db.commit()
                if removed > 0:
                    await db.execute("VACUUM")
            except aiosqlite.Error as e:
                raise StateStoreError(
                    f"Failed to cleanup old records: {e}",
                    operation="cleanup_old_records",
                ) from e

        if removed > 0:
            logger.info("old_backup_records_removed", count=removed, retention_days=days)
        return removed
