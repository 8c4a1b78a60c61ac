# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Change classifier tests.

The classifier is the dedup gate in front of the task queue: it must admit
every content change and only re-admit metadata changes when the last
backup did not succeed.
"""

import pytest

from changevault.classifier import should_backup
from changevault.models import ChangeEvent, FileBackupState, FileStatus, Operation

MAX_SIZE = 1024


def _event(operation, size=10, is_directory=False):
    return ChangeEvent(
        path="/data/a.txt",
        operation=operation,
        size=size,
        is_directory=is_directory,
    )


def _state(status):
    return FileBackupState(status=status, last_checksum="abc", backup_count=1)


# ============================================================================
# Truth table
# ============================================================================

@pytest.mark.parametrize(
    "operation,state,expected",
    [
        (Operation.MODIFY, None, True),
        (Operation.MODIFY, _state(FileStatus.SUCCESS), True),
        (Operation.CREATE, _state(FileStatus.SUCCESS), True),
        (Operation.MANUAL, _state(FileStatus.SUCCESS), True),
        (Operation.DELETE, _state(FileStatus.SUCCESS), True),
        (Operation.DELETE, None, True),
        (Operation.CHMOD, _state(FileStatus.SUCCESS), False),
        (Operation.CHMOD, _state(FileStatus.FAILED), True),
        (Operation.CHMOD, _state(FileStatus.DELETED), False),
        (Operation.CHMOD, None, True),
        (Operation.RENAME, _state(FileStatus.SUCCESS), False),
        (Operation.RENAME, _state(FileStatus.FAILED), True),
        (Operation.RENAME, None, True),
    ],
)
def test_classifier_truth_table(operation, state, expected):
    """Admission depends on the operation and the last recorded status."""
    assert should_backup(_event(operation), state, MAX_SIZE) is expected


def test_directories_are_never_backed_up():
    """Directory events are rejected whatever the operation."""
    for operation in Operation:
        assert should_backup(_event(operation, is_directory=True), None, MAX_SIZE) is False


def test_oversized_files_are_rejected():
    """A file above max_file_size is rejected even for content changes."""
    assert should_backup(_event(Operation.MODIFY, size=MAX_SIZE + 1), None, MAX_SIZE) is False
    assert should_backup(_event(Operation.MODIFY, size=MAX_SIZE), None, MAX_SIZE) is True


def test_event_from_dict():
    """The producer's plain dict form is accepted."""
    event = ChangeEvent.from_dict(
        {
            "path": "/data/b.txt",
            "operation": "create",
            "timestamp": "2026-01-02T03:04:05+00:00",
            "size": 7,
        }
    )
    assert event.operation == Operation.CREATE
    assert event.size == 7
    assert event.is_directory is False
    assert event.timestamp.year == 2026


def test_event_rejects_unknown_operation():
    with pytest.raises(ValueError):
        ChangeEvent.from_dict({"path": "/x", "operation": "explode"})
