# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Classifier - Decides whether a change event needs a backup task.

This is the dedup gate in front of the task queue. It only looks at the
event and the path's current state; it never touches the filesystem or
the network.
"""

import structlog

from changevault.models import ChangeEvent, FileBackupState, FileStatus, Operation

logger = structlog.get_logger()

# Operations that always produce a task
CONTENT_OPERATIONS = frozenset({Operation.CREATE, Operation.MODIFY, Operation.MANUAL})


def should_backup(
    event: ChangeEvent,
    current_state: FileBackupState | None,
    max_file_size: int,
) -> bool:
    """
    Decide whether an event should be turned into a backup task.

    Rules, in order:
    1. Directories are never backed up
    2. Files larger than max_file_size are rejected with a warning
    3. create / modify / manual are always admitted
    4. delete is admitted; the worker records the deletion without upload
    5. Other operations are admitted only if the path has no state yet
       or its last attempt failed

    Args:
        event: Change event to classify
        current_state: Stored state for event.path, if any
        max_file_size: Maximum file size in bytes

    Returns:
        True if a task should be queued
    """
    if event.is_directory:
        logger.debug("skipping_directory", path=event.path)
        return False

    if event.size > max_file_size:
        logger.warning(
            "file_too_large",
            path=event.path,
            size=event.size,
            max_size=max_file_size,
        )
        return False

    if event.operation in CONTENT_OPERATIONS:
        return True

    if event.operation == Operation.DELETE:
        return True

    if current_state is None:
        return True

    return current_state.status == FileStatus.FAILED
