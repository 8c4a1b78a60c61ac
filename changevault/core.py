# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Core - Backup service orchestrating every component.

The service owns the bounded task queue and the worker pool, and wires them
to the state store, the network adapter, the reporter and the restore
orchestrator:

    change event -> classifier -> TaskQueue -> WorkerPool -> process_task
"""

import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict

import structlog

from changevault.backup.manager import PipelineContext, process_task
from changevault.backup.queue import TaskQueue, WorkerPool
from changevault.backup.restore import RestoreOrchestrator, RestoreProgress
from changevault.classifier import should_backup
from changevault.config import BackupConfig
from changevault.exceptions import StateStoreError
from changevault.models import BackupTask, ChangeEvent, Operation
from changevault.report import Reporter
from changevault.transport import NetworkAdapter, RemoteStoreClient
from changevault.vault.sqlite_vault import SQLiteStateStore
from changevault.vault.transform import TransformSettings

logger = structlog.get_logger()

# Seconds between maintenance passes over the state store
CLEANUP_INTERVAL = 3600.0
DELETED_STATE_MAX_AGE = timedelta(hours=24)

# Events that only touch metadata; dropped when the path is already gone
METADATA_OPERATIONS = frozenset({Operation.CHMOD, Operation.RENAME})


def is_excluded(path: str, patterns: list[str]) -> bool:
    """
    Check a path against exclude patterns.

    Patterns ending in '/' match any directory component of that name,
    other patterns are globs matched against the full path and the file name.

    Args:
        path: File path from a change event
        patterns: Configured exclude patterns

    Returns:
        True if the path must not be backed up
    """
    parts = Path(path).parts
    name = os.path.basename(path)
    for pattern in patterns:
        if pattern.endswith("/"):
            if pattern.rstrip("/") in parts[:-1]:
                return True
        elif fnmatch(path, pattern) or fnmatch(name, pattern):
            return True
    return False


class BackupService:
    """
    Change-driven backup service.

    Usage:
        service = await initialize_backup_service(config)
        service.submit_change(ChangeEvent(path="/srv/data/a.txt", operation="modify"))
        ...
        await shutdown_backup_service(service)
    """

    def __init__(
        self,
        config: BackupConfig,
        store: SQLiteStateStore,
        network: NetworkAdapter,
        reporter: Reporter | None = None,
        executor: ThreadPoolExecutor | None = None,
        cleanup_interval: float = CLEANUP_INTERVAL,
    ):
        self.config = config
        self.store = store
        self.network = network
        self.reporter = reporter
        self.executor = executor
        self.cleanup_interval = cleanup_interval

        self.queue: TaskQueue[BackupTask] = TaskQueue(config.queue_capacity)
        self.pool: WorkerPool[BackupTask] = WorkerPool(self.queue, self._handle)
        self.context = PipelineContext(
            store=store,
            network=network,
            settings=TransformSettings.from_config(config),
            reporter=reporter,
            executor=executor,
        )
        self.restorer = RestoreOrchestrator(network, config, executor)

        self.successful = 0
        self.failed = 0
        self.skipped = 0
        self.excluded = 0

        self._started = False
        self._cleanup_task: asyncio.Task | None = None
        self._owns_network = False

    @property
    def running(self) -> bool:
        return self._started

    def submit_change(self, event: ChangeEvent) -> bool:
        """
        Offer a change event to the pipeline.

        Never blocks. The event is turned into a task only if it passes the
        exclude patterns and the classifier, and the queue has room.

        Args:
            event: Change event from the filesystem watcher

        Returns:
            True if a backup task was queued
        """
        if is_excluded(event.path, self.config.exclude_patterns):
            self.excluded += 1
            logger.debug("change_excluded", path=event.path)
            return False

        if event.operation in METADATA_OPERATIONS and not os.path.exists(event.path):
            logger.debug("change_path_missing", path=event.path, operation=event.operation.value)
            return False

        if not should_backup(event, self.store.get(event.path), self.config.max_file_size):
            return False

        queued = self.queue.submit(BackupTask.from_event(event))
        if queued:
            logger.debug(
                "backup_task_queued",
                path=event.path,
                operation=event.operation.value,
                size=event.size,
            )
        return queued

    async def _handle(self, task: BackupTask) -> None:
        result = await process_task(task, self.context)
        if result is None:
            self.skipped += 1
        elif result.success:
            self.successful += 1
        else:
            self.failed += 1

    async def start(self) -> None:
        """
        Open the state store, check the remote store and start the workers.

        Raises:
            StateStoreError: If the state store cannot be opened
            TransientNetworkError: If the remote store is unreachable
            PermanentClientError: If the remote store rejects the health check
        """
        if self._started:
            return

        if not self.store.is_open:
            await self.store.open()

        await self.network.health_check()

        if self.reporter is not None:
            self.reporter.start_new_report()

        self.pool.start(self.config.workers)
        self._cleanup_task = asyncio.create_task(
            self._periodic_cleanup(),
            name="changevault-cleanup",
        )
        self._started = True

        logger.info(
            "backup_service_started",
            workers=self.config.workers,
            queue_capacity=self.config.queue_capacity,
            compression=self.context.settings.flags.compression_format,
            encryption=self.context.settings.encryption_enabled,
        )

    async def stop(self, drain: bool = False) -> int:
        """
        Stop the workers and close the current report.

        Args:
            drain: Process every queued task before stopping

        Returns:
            Number of queued tasks abandoned
        """
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        abandoned = await self.pool.stop(drain=drain)
        self._started = False

        if self.reporter is not None:
            stats = await self.get_stats()
            await self.reporter.finish_report(stats)

        logger.info(
            "backup_service_stopped",
            successful=self.successful,
            failed=self.failed,
            skipped=self.skipped,
            abandoned=abandoned,
        )
        return abandoned

    async def run_cleanup(self) -> Dict[str, int]:
        """
        Prune deleted file states and expired history rows.

        A database_retention_days of 0 keeps history forever.

        Returns:
            Dict with the number of pruned states and removed records
        """
        pruned = await self.store.prune_deleted_states(DELETED_STATE_MAX_AGE)
        removed = 0
        if self.config.database_retention_days > 0:
            removed = await self.store.cleanup_old_records(self.config.database_retention_days)
        logger.info("state_store_cleanup", pruned_states=pruned, removed_records=removed)
        return {"pruned_states": pruned, "removed_records": removed}

    async def _periodic_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.run_cleanup()
            except StateStoreError as e:
                logger.error("state_store_cleanup_failed", error=str(e))

    async def get_stats(self) -> Dict[str, Any]:
        """
        Statistics from the state store merged with live pipeline counters.

        Returns:
            Dict of statistics; store figures are omitted if the store fails
        """
        stats: Dict[str, Any] = {}
        try:
            stats.update(await self.store.stats())
        except StateStoreError as e:
            logger.error("stats_unavailable", error=str(e))

        stats.update(self.queue.stats())
        stats.update(
            {
                "successful": self.successful,
                "failed": self.failed,
                "skipped": self.skipped,
                "excluded": self.excluded,
                "workers": self.config.workers,
                "busy_workers": self.pool.busy,
                "running": self._started,
            }
        )
        return stats

    async def restore_from_manifest(
        self,
        manifest_path: Path | str,
        target_dir: Path | str,
    ) -> RestoreProgress:
        """
        Restore every entry of a manifest file into target_dir.

        Args:
            manifest_path: Manifest JSON file
            target_dir: Directory restored files are written to

        Returns:
            Final restore progress
        """
        return await self.restorer.restore_from_manifest(Path(manifest_path), Path(target_dir))

    def get_progress(self) -> RestoreProgress:
        """Progress of the current or last restore."""
        return self.restorer.get_progress()


async def initialize_backup_service(
    config: BackupConfig,
    network: NetworkAdapter | None = None,
) -> BackupService:
    """
    Build a started BackupService with its own collaborators.

    Args:
        config: Backup configuration
        network: Network adapter to use; a RemoteStoreClient built from the
            config when omitted (and closed again on shutdown)

    Returns:
        Started service
    """
    executor = ThreadPoolExecutor(
        max_workers=config.workers,
        thread_name_prefix="changevault",
    )
    store = SQLiteStateStore(config.database_path)
    reporter = Reporter(config.report_dir, config.report_format, config.report_retention)

    owns_network = network is None
    if network is None:
        network = RemoteStoreClient(config)

    service = BackupService(config, store, network, reporter, executor)
    service._owns_network = owns_network

    try:
        await service.start()
    except Exception:
        await _dispose(service)
        raise

    return service


async def _dispose(service: BackupService) -> None:
    await service.store.close()
    if service._owns_network:
        await service.network.aclose()
    if service.executor is not None:
        service.executor.shutdown(wait=True)


async def shutdown_backup_service(service: BackupService, drain: bool = False) -> int:
    """
    Stop a service built by initialize_backup_service and release its resources.

    Args:
        service: Service to shut down
        drain: Process queued tasks before stopping

    Returns:
        Number of queued tasks abandoned
    """
    abandoned = await service.stop(drain=drain)
    await _dispose(service)
    return abandoned
