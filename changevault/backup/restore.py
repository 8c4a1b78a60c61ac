# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Restore Orchestrator - Restores files listed in a manifest.

Each manifest entry is restored to target_dir / basename(entry.path):
1. If a file with the expected checksum is already there, it is kept and
   counted as restored without downloading anything
2. Otherwise the object is downloaded, the inverse transform is applied and
   the plaintext checksum is verified
3. The file is written atomically (temp file, then rename) with the
   entry's permissions

A failing entry is recorded in the progress errors and the remaining
entries continue. When every entry is done a restore-report-<ts>.json is
written into target_dir.
"""

import asyncio
import hashlib
import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog
from ulid import ULID

from changevault.backup.manifest import (
    ManifestEntry,
    RestoreManifest,
    load_manifest,
    save_manifest,
)
from changevault.backup.queue import TaskQueue, WorkerPool
from changevault.config import BackupConfig
from changevault.exceptions import (
    ChangeVaultError,
    ChecksumMismatchError,
    LocalIOError,
    ManifestError,
)
from changevault.models import TransformFlags
from changevault.transport import NetworkAdapter
from changevault.vault.transform import TransformSettings, decode

logger = structlog.get_logger()

_HASH_BLOCK = 1024 * 1024


@dataclass(frozen=True)
class RestoreError:
    """One entry that could not be restored."""

    path: str
    remote_id: str
    message: str
    kind: str
    time: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.path,
            "file_id": self.remote_id,
            "error": self.message,
            "kind": self.kind,
            "time": self.time.isoformat(),
        }


@dataclass
class RestoreProgress:
    """Aggregate progress of a restore run."""

    total_files: int = 0
    restored_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    total_size: int = 0
    restored_size: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    errors: List[RestoreError] = field(default_factory=list)
    report_path: Path | None = None

    @property
    def completed_files(self) -> int:
        return self.restored_files + self.failed_files

    @property
    def success_rate(self) -> float:
        if self.total_files == 0:
            return 0.0
        return self.restored_files / self.total_files * 100

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now(UTC)
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "restored_files": self.restored_files,
            "failed_files": self.failed_files,
            "completed_files": self.completed_files,
            "skipped_files": self.skipped_files,
            "total_size": self.total_size,
            "restored_size": self.restored_size,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration_seconds,
            "success_rate": self.success_rate,
            "errors": [e.to_dict() for e in self.errors],
        }


def file_checksum(path: Path) -> str | None:
    """
    SHA-256 of a local file, or None if it is not a readable regular file.

    Blocking; run it on an executor thread.
    """
    if not path.is_file():
        return None
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(_HASH_BLOCK), b""):
                digest.update(block)
    except OSError:
        return None
    return digest.hexdigest()


async def write_file_atomic(target: Path, data: bytes, permissions: int) -> None:
    """
    Write data to target via a temp file in the same directory.

    Args:
        target: Final path
        data: Content
        permissions: File mode applied before the rename
    """
    temp_path = target.with_name(f".{target.name}.{ULID()}.tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        os.chmod(temp_path, permissions)
        os.replace(temp_path, target)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise LocalIOError(
            f"Failed to write restored file: {e}",
            path=str(target),
            operation="write",
        ) from e


class RestoreOrchestrator:
    """
    Restores manifests with a pool of concurrent workers.

    Usage:
        orchestrator = RestoreOrchestrator(client, config)
        progress = await orchestrator.restore_from_manifest(manifest_path, target_dir)
    """

    def __init__(
        self,
        network: NetworkAdapter,
        config: BackupConfig,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.network = network
        self.config = config
        self.settings = TransformSettings.from_config(config)
        self.workers = config.workers
        self._executor = executor
        self._lock = threading.Lock()
        self._progress = RestoreProgress()

    def get_progress(self) -> RestoreProgress:
        """Snapshot of the current (or last) restore run."""
        with self._lock:
            return replace(self._progress, errors=list(self._progress.errors))

    def _mark_restored(self, size: int, skipped: bool = False) -> None:
        with self._lock:
            self._progress.restored_files += 1
            self._progress.restored_size += size
            if skipped:
                self._progress.skipped_files += 1

    def _mark_failed(self, entry: ManifestEntry, message: str, kind: str) -> None:
        with self._lock:
            self._progress.failed_files += 1
            self._progress.errors.append(
                RestoreError(
                    path=entry.path,
                    remote_id=entry.remote_id,
                    message=message,
                    kind=kind,
                )
            )

    def _flags_for(self, entry: ManifestEntry) -> TransformFlags:
        return entry.transform_flags(
            default_format=self.settings.compression_format.value,
            default_encrypted=False,
        )

    async def _fetch_plaintext(
        self,
        remote_id: str,
        flags: TransformFlags | None,
        expected_checksum: str,
        path: str,
    ) -> bytes:
        """Download an object and undo its transforms."""
        data = await self.network.download(remote_id)

        if not self.config.restore_apply_transform:
            return data

        loop = asyncio.get_event_loop()
        if flags is not None and not flags.is_identity:
            data = await loop.run_in_executor(self._executor, decode, data, flags, self.settings)

        if self.config.verify_restored_checksum and expected_checksum:
            actual = await loop.run_in_executor(
                self._executor, lambda: hashlib.sha256(data).hexdigest()
            )
            if actual != expected_checksum:
                raise ChecksumMismatchError(
                    f"Restored content checksum mismatch for {path}",
                    path=path,
                    expected=expected_checksum,
                    actual=actual,
                )

        return data

    async def _restore_entry(self, entry: ManifestEntry, target_dir: Path) -> None:
        name = Path(entry.path).name
        if not name:
            self._mark_failed(
                entry, f"Entry has no file name: {entry.path!r}", ManifestError.kind
            )
            return

        target = target_dir / name
        loop = asyncio.get_event_loop()

        try:
            if entry.checksum:
                existing = await loop.run_in_executor(self._executor, file_checksum, target)
                if existing == entry.checksum:
                    logger.debug("restore_skipped_checksum_match", path=str(target))
                    self._mark_restored(entry.size, skipped=True)
                    return

            data = await self._fetch_plaintext(
                entry.remote_id,
                self._flags_for(entry),
                entry.checksum,
                entry.path,
            )
            await write_file_atomic(target, data, entry.permissions)

        except Exception as e:
            if isinstance(e, ChangeVaultError):
                message, kind = e.message, e.kind
            else:
                message, kind = str(e) or type(e).__name__, "unexpected"
            logger.error(
                "restore_file_failed",
                path=entry.path,
                remote_id=entry.remote_id,
                error=message,
                error_kind=kind,
            )
            self._mark_failed(entry, message, kind)
            return

        logger.info("file_restored", path=str(target), size=entry.size)
        self._mark_restored(entry.size)

    async def restore(self, manifest: RestoreManifest, target_dir: Path) -> RestoreProgress:
        """
        Restore every entry of a manifest into target_dir.

        Args:
            manifest: Entries to restore
            target_dir: Directory receiving the files

        Returns:
            Final progress, including the path of the written restore report
        """
        target_dir = Path(target_dir)
        entries = list(manifest.files)

        with self._lock:
            self._progress = RestoreProgress(
                total_files=len(entries),
                total_size=sum(entry.size for entry in entries),
            )

        logger.info(
            "restore_started",
            backup_id=manifest.backup_id,
            files=len(entries),
            target_dir=str(target_dir),
        )

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                f"Failed to create target directory: {e}",
                path=str(target_dir),
                operation="mkdir",
            ) from e

        if entries:
            queue: TaskQueue[ManifestEntry] = TaskQueue(len(entries), name="restore")
            for entry in entries:
                queue.submit(entry)

            pool = WorkerPool(
                queue,
                lambda entry: self._restore_entry(entry, target_dir),
                name="restore",
            )
            pool.start(min(self.workers, len(entries)))
            await pool.stop(drain=True)

        with self._lock:
            self._progress.end_time = datetime.now(UTC)

        report_path = await self._write_report(manifest, target_dir)
        with self._lock:
            self._progress.report_path = report_path

        progress = self.get_progress()
        logger.info(
            "restore_completed",
            report_path=str(report_path),
            restored=progress.restored_files,
            skipped=progress.skipped_files,
            failed=progress.failed_files,
            duration=progress.duration_seconds,
        )
        return progress

    async def restore_from_manifest(
        self,
        manifest_path: Path,
        target_dir: Path,
    ) -> RestoreProgress:
        """
        Load a manifest file and restore it.

        Raises:
            ManifestError: If the manifest cannot be read
        """
        manifest = await load_manifest(Path(manifest_path))
        return await self.restore(manifest, target_dir)

    async def restore_file(
        self,
        remote_id: str,
        target_path: Path,
        flags: TransformFlags | None = None,
        checksum: str = "",
        permissions: int = 0o644,
    ) -> Path:
        """
        Restore a single object to an explicit path.

        Unlike restore(), failures are raised to the caller.

        Args:
            remote_id: Remote id to download
            target_path: Destination file
            flags: Transforms applied at upload time; None means identity
            checksum: Expected plaintext checksum, verified when given
            permissions: File mode of the restored file

        Returns:
            The written path
        """
        target_path = Path(target_path)
        logger.info("restoring_single_file", remote_id=remote_id, target=str(target_path))

        data = await self._fetch_plaintext(remote_id, flags, checksum, str(target_path))
        await write_file_atomic(target_path, data, permissions)

        logger.info("file_restored", path=str(target_path), size=len(data))
        return target_path

    async def _write_report(self, manifest: RestoreManifest, target_dir: Path) -> Path:
        progress = self.get_progress()
        now = datetime.now(UTC)
        report = {
            "restore_id": f"restore-{ULID()}",
            "backup_id": manifest.backup_id,
            "target_dir": str(target_dir),
            **progress.to_dict(),
        }

        path = target_dir / f"restore-report-{now:%Y%m%d-%H%M%S}.json"
        try:
            async with aiofiles.open(path, "w") as f:
                await f.write(json.dumps(report, indent=2, default=str))
        except OSError as e:
            raise LocalIOError(
                f"Failed to write restore report: {e}",
                path=str(path),
                operation="write",
            ) from e
        return path


async def create_manifest_from_report(
    report_path: Path,
    manifest_path: Path,
) -> RestoreManifest:
    """
    Build a restore manifest from the successful uploads of a backup report.

    Args:
        report_path: Backup report written by the Reporter
        manifest_path: Where to write the manifest

    Returns:
        The manifest that was written
    """
    report_path = Path(report_path)
    try:
        async with aiofiles.open(report_path, "r") as f:
            report = json.loads(await f.read())
    except (OSError, ValueError) as e:
        raise ManifestError(f"Failed to read backup report: {e}", path=str(report_path)) from e

    entries = [
        ManifestEntry(
            path=result["file_path"],
            remote_id=result["file_id"],
            size=int(result.get("size") or 0),
            checksum=result.get("checksum") or "",
            backup_time=(
                datetime.fromisoformat(result["end_time"]) if result.get("end_time") else None
            ),
            compressed=bool(result.get("compressed", False)),
            compression_format=result.get("compression_format"),
            encrypted=bool(result.get("encrypted", False)),
        )
        for result in report.get("results") or []
        if result.get("success") and result.get("file_id")
    ]

    manifest = RestoreManifest(
        backup_id=report.get("id", ""),
        files=entries,
        source_path="multiple",
        metadata={
            "report_id": report.get("id"),
            "report_time": report.get("start_time"),
            "total_files": report.get("total_files"),
            "successful": report.get("successful"),
        },
    )

    await save_manifest(manifest, Path(manifest_path))
    logger.info("restore_manifest_created", path=str(manifest_path), files=len(entries))
    return manifest
