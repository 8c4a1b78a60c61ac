# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Models - Events, tasks, per-file state and backup results.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, TypedDict


class Operation(str, Enum):
    """Kind of filesystem change reported by the event producer."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"
    CHMOD = "chmod"
    MANUAL = "manual"


class FileStatus(str, Enum):
    """Outcome of the most recent backup attempt for a path."""

    SUCCESS = "success"
    FAILED = "failed"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem change, produced externally and consumed once."""

    path: str
    operation: Operation
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    size: int = 0
    is_directory: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "operation", Operation(self.operation))
        object.__setattr__(self, "path", str(self.path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from the producer's plain dict form.

        Args:
            data: Mapping with path, operation and optional timestamp,
                size and is_directory keys

        Returns:
            ChangeEvent instance
        """
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            path=data["path"],
            operation=Operation(data["operation"]),
            timestamp=timestamp or datetime.now(UTC),
            size=int(data.get("size", 0)),
            is_directory=bool(data.get("is_directory", False)),
        )


@dataclass(frozen=True)
class BackupTask:
    """Unit of work owned by the queue until exactly one worker claims it."""

    path: str
    operation: Operation
    timestamp: datetime
    size: int
    is_directory: bool = False

    @classmethod
    def from_event(cls, event: ChangeEvent) -> "BackupTask":
        return cls(
            path=event.path,
            operation=event.operation,
            timestamp=event.timestamp,
            size=event.size,
            is_directory=event.is_directory,
        )


@dataclass
class FileBackupState:
    """Durable backup state of one path."""

    status: FileStatus
    last_checksum: str = ""
    last_backup_time: datetime | None = None
    backup_count: int = 0

    def __post_init__(self) -> None:
        self.status = FileStatus(self.status)


@dataclass(frozen=True)
class TransformFlags:
    """Which content transforms were applied to an uploaded object."""

    compressed: bool = False
    compression_format: str = "none"
    encrypted: bool = False

    @property
    def is_identity(self) -> bool:
        return not self.compressed and not self.encrypted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compressed": self.compressed,
            "compression_format": self.compression_format,
            "encrypted": self.encrypted,
        }


@dataclass(frozen=True)
class BackupResult:
    """Outcome of one completed task. Never mutated after creation."""

    path: str
    operation: Operation
    success: bool
    start_time: datetime
    end_time: datetime
    remote_id: str = ""
    error: str | None = None
    error_kind: str | None = None
    original_size: int = 0
    transformed_size: int = 0
    checksum: str = ""
    transform_flags: TransformFlags = field(default_factory=TransformFlags)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON reports."""
        return {
            "file_path": self.path,
            "file_id": self.remote_id,
            "operation": self.operation.value,
            "success": self.success,
            "error_message": self.error,
            "error_kind": self.error_kind,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration_seconds,
            "size": self.original_size,
            "compressed_size": self.transformed_size,
            "checksum": self.checksum,
            **self.transform_flags.to_dict(),
        }


class BackupRecord(TypedDict):
    """Persisted history row for one backup attempt."""

    id: int
    file_path: str
    file_id: str
    checksum: str
    original_size: int
    compressed_size: int
    is_compressed: bool
    is_encrypted: bool
    compression_format: str
    backup_time: str  # ISO 8601
    status: str
    error_message: str | None
    operation: str


@dataclass(frozen=True)
class SearchCriteria:
    """Filters for searching backup history."""

    file_path: str | None = None  # Substring match
    status: FileStatus | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int = 100
