# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so that the worker
pool, restore orchestrator and network client can share it across threads.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
from urllib.parse import urlparse


class CompressionFormat(str, Enum):
    """Compression codec applied before upload."""

    NONE = "none"
    ZLIB = "zlib"  # Deflate stream with zlib header
    GZIP = "gzip"  # Deflate stream with gzip header
    ZSTD = "zstd"


class ReportFormat(str, Enum):
    """On-disk format of backup reports."""

    JSON = "json"


# 1 GiB
DEFAULT_MAX_FILE_SIZE = 1024 * 1024 * 1024


def _validate_base_url(base_url: str) -> bool:
    """Check that a remote base URL has an http(s) scheme and a host."""
    try:
        parsed = urlparse(base_url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup pipeline.

    Remote credentials may be left empty when the pipeline is driven with a
    custom network adapter; the HTTP client validates them itself.
    """

    # Remote object store API
    base_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    directory_id: str = ""
    timeout_seconds: float = 30.0
    retry_count: int = 3

    # Directories watched by the event producer
    directories: List[Path] = field(default_factory=list)

    # Glob patterns / path prefixes excluded by the event producer
    exclude_patterns: List[str] = field(default_factory=list)

    # Files larger than this are never queued
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    # Number of concurrent workers (backup and restore)
    workers: int = 5

    # Bounded task queue; submissions beyond this are dropped
    queue_capacity: int = 1000

    # Compression stage
    compression_enabled: bool = False
    compression_format: CompressionFormat = CompressionFormat.GZIP
    compression_level: int = 6

    # Encryption stage
    encryption_enabled: bool = False
    encryption_password: str = field(default="", repr=False)

    # Reports
    report_dir: Path = field(default_factory=lambda: Path("./reports"))
    report_format: ReportFormat = ReportFormat.JSON
    report_retention: int = 30

    # State store
    database_path: Path = field(default_factory=lambda: Path("./backup.db"))
    database_retention_days: int = 90

    # Restore behaviour
    restore_apply_transform: bool = True
    verify_restored_checksum: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.base_url and not _validate_base_url(self.base_url):
            errors.append(f"Invalid base_url: {self.base_url}")

        if self.timeout_seconds <= 0:
            errors.append(f"timeout_seconds must be > 0, got {self.timeout_seconds}")

        if self.retry_count < 0:
            errors.append(f"retry_count must be >= 0, got {self.retry_count}")

        if self.max_file_size < 0:
            errors.append(f"max_file_size must be >= 0, got {self.max_file_size}")

        if self.workers < 1:
            errors.append(f"workers must be >= 1, got {self.workers}")

        if self.queue_capacity < 1:
            errors.append(f"queue_capacity must be >= 1, got {self.queue_capacity}")

        try:
            CompressionFormat(self.compression_format)
        except ValueError:
            errors.append(f"Unsupported compression_format: {self.compression_format}")

        if self.encryption_enabled and not self.encryption_password:
            errors.append("encryption_password required when encryption is enabled")

        try:
            ReportFormat(self.report_format)
        except ValueError:
            errors.append(f"Unsupported report_format: {self.report_format}")

        if self.report_retention < 1:
            errors.append(f"report_retention must be >= 1, got {self.report_retention}")

        if self.database_retention_days < 0:
            errors.append(
                f"database_retention_days must be >= 0, got {self.database_retention_days}"
            )

        if errors:
            from changevault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

        # Normalize plain strings passed by callers
        object.__setattr__(
            self, "compression_format", CompressionFormat(self.compression_format)
        )
        object.__setattr__(self, "report_format", ReportFormat(self.report_format))
        object.__setattr__(self, "report_dir", Path(self.report_dir))
        object.__setattr__(self, "database_path", Path(self.database_path))
        object.__setattr__(self, "directories", [Path(d) for d in self.directories])

    @property
    def has_remote_credentials(self) -> bool:
        """True when enough is configured to talk to the remote store."""
        return bool(self.base_url and self.client_id and self.client_secret)

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import fields

        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return BackupConfig(**current)
