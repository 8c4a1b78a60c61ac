# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Task queue, backup execution and restore.
"""

from changevault.backup.queue import (
    PathLocks,
    TaskQueue,
    WorkerPool,
)

from changevault.backup.manager import (
    PipelineContext,
    calculate_checksum,
    process_task,
)

from changevault.backup.manifest import (
    ManifestEntry,
    RestoreManifest,
    load_manifest,
    save_manifest,
)

from changevault.backup.restore import (
    RestoreError,
    RestoreOrchestrator,
    RestoreProgress,
    create_manifest_from_report,
)

__all__ = [
    # Queue
    "TaskQueue",
    "WorkerPool",
    "PathLocks",
    # Manager
    "PipelineContext",
    "process_task",
    "calculate_checksum",
    # Manifest
    "ManifestEntry",
    "RestoreManifest",
    "load_manifest",
    "save_manifest",
    # Restore
    "RestoreOrchestrator",
    "RestoreProgress",
    "RestoreError",
    "create_manifest_from_report",
]
