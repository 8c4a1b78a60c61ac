# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Backup Manager - Executes one backup task end to end.

Pipeline for a content task:
1. Read the file and compute its SHA-256 checksum
2. Skip if the stored state already holds this checksum with status success
3. Transform (compress, then encrypt) per configuration
4. Upload through the network adapter
5. Record the outcome in the state store and the reporter

Delete tasks only mark the path deleted; nothing is read or uploaded.

process_task() never raises for task-level failures. Every failure is
turned into a BackupResult with the error's kind tag.
"""

import asyncio
import hashlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import TYPE_CHECKING

import aiofiles
import structlog

from changevault.backup.queue import PathLocks
from changevault.exceptions import ChangeVaultError, LocalIOError, StateStoreError
from changevault.models import BackupResult, BackupTask, FileStatus, Operation, TransformFlags
from changevault.transport import NetworkAdapter
from changevault.vault.sqlite_vault import SQLiteStateStore
from changevault.vault.transform import TransformSettings, encode

if TYPE_CHECKING:
    from changevault.report import Reporter

logger = structlog.get_logger()


@dataclass
class PipelineContext:
    """Collaborators shared by every backup worker."""

    store: SQLiteStateStore
    network: NetworkAdapter
    settings: TransformSettings
    reporter: "Reporter | None" = None
    executor: ThreadPoolExecutor | None = None
    path_locks: PathLocks = field(default_factory=PathLocks)


def calculate_checksum(data: bytes) -> str:
    """
    Calculate SHA-256 hash of file content.

    Args:
        data: Data to hash

    Returns:
        Hex-encoded hash
    """
    return hashlib.sha256(data).hexdigest()


async def read_source_file(path: str) -> bytes:
    """
    Read a local file to back up.

    Args:
        path: File path

    Returns:
        File content
    """
    try:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()
    except FileNotFoundError as e:
        raise LocalIOError(f"File not found: {path}", path=path, operation="read") from e
    except OSError as e:
        raise LocalIOError(f"Failed to read file: {e}", path=path, operation="read") from e


async def _record_state(
    ctx: PipelineContext,
    path: str,
    status: FileStatus,
    checksum: str,
) -> None:
    try:
        await ctx.store.record_outcome(path, status, checksum)
    except StateStoreError as e:
        logger.error("file_state_update_failed", path=path, error=str(e))


async def _record_history(ctx: PipelineContext, result: BackupResult) -> None:
    try:
        await ctx.store.insert_record(result)
    except StateStoreError as e:
        logger.error("backup_record_save_failed", path=result.path, error=str(e))


async def _report(ctx: PipelineContext, result: BackupResult) -> None:
    if ctx.reporter is None:
        return
    try:
        await ctx.reporter.add_result(result)
    except LocalIOError as e:
        logger.error("backup_report_save_failed", path=result.path, error=str(e))


async def _process_delete(task: BackupTask, ctx: PipelineContext) -> BackupResult:
    start_time = datetime.now(UTC)
    try:
        await ctx.store.mark_deleted(task.path)
    except StateStoreError as e:
        logger.error("file_state_update_failed", path=task.path, error=str(e))

    result = BackupResult(
        path=task.path,
        operation=task.operation,
        success=True,
        start_time=start_time,
        end_time=datetime.now(UTC),
    )
    logger.info("file_marked_deleted", path=task.path)
    return result


async def _process_content(task: BackupTask, ctx: PipelineContext) -> BackupResult | None:
    loop = asyncio.get_event_loop()
    start_time = datetime.now(UTC)
    checksum = ""
    original_size = 0
    transformed_size = 0
    flags = TransformFlags()

    try:
        raw = await read_source_file(task.path)
        original_size = len(raw)
        checksum = await loop.run_in_executor(ctx.executor, calculate_checksum, raw)

        state = ctx.store.get(task.path)
        if (
            state is not None
            and state.status == FileStatus.SUCCESS
            and state.last_checksum == checksum
        ):
            logger.debug("file_unchanged_skipping", path=task.path)
            return None

        payload, flags = await loop.run_in_executor(ctx.executor, encode, raw, ctx.settings)
        transformed_size = len(payload)

        if flags.compressed:
            logger.debug(
                "file_compressed",
                path=task.path,
                original_size=original_size,
                compressed_size=transformed_size,
                format=flags.compression_format,
            )

        remote_id = await ctx.network.upload(task.path, payload, transformed_size, checksum)

    except Exception as e:
        if isinstance(e, ChangeVaultError):
            message, kind = e.message, e.kind
        else:
            message, kind = str(e) or type(e).__name__, "unexpected"
        result = BackupResult(
            path=task.path,
            operation=task.operation,
            success=False,
            start_time=start_time,
            end_time=datetime.now(UTC),
            error=message,
            error_kind=kind,
            original_size=original_size,
            transformed_size=transformed_size,
            checksum=checksum,
            transform_flags=flags,
        )
        logger.error(
            "file_backup_failed",
            path=task.path,
            error=message,
            error_kind=kind,
        )
        await _record_state(ctx, task.path, FileStatus.FAILED, checksum)
        await _record_history(ctx, result)
        return result

    result = BackupResult(
        path=task.path,
        operation=task.operation,
        success=True,
        start_time=start_time,
        end_time=datetime.now(UTC),
        remote_id=remote_id,
        original_size=original_size,
        transformed_size=transformed_size,
        checksum=checksum,
        transform_flags=flags,
    )
    await _record_state(ctx, task.path, FileStatus.SUCCESS, checksum)
    await _record_history(ctx, result)

    logger.info(
        "file_backed_up",
        path=task.path,
        remote_id=remote_id,
        duration=result.duration_seconds,
        compressed=flags.compressed,
        encrypted=flags.encrypted,
    )
    return result


async def process_task(task: BackupTask, ctx: PipelineContext) -> BackupResult | None:
    """
    Run one backup task while holding its path lock.

    Args:
        task: Task claimed from the queue
        ctx: Shared pipeline collaborators

    Returns:
        The recorded result, or None when the file was unchanged and skipped
    """
    async with ctx.path_locks.hold(task.path):
        if task.operation == Operation.DELETE:
            result = await _process_delete(task, ctx)
        else:
            result = await _process_content(task, ctx)

    if result is not None:
        await _report(ctx, result)
    return result
