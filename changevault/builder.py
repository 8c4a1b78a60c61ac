# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Builder - Functional builder pattern for configuration.

This module provides pure functions for building BackupConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from dataclasses import fields
from pathlib import Path
from typing import Any, Callable, Dict, List

from changevault.config import (
    DEFAULT_MAX_FILE_SIZE,
    BackupConfig,
    CompressionFormat,
    ReportFormat,
)


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "base_url": "",
        "client_id": "",
        "client_secret": "",
        "directory_id": "",
        "timeout_seconds": 30.0,
        "retry_count": 3,
        "directories": [],
        "exclude_patterns": [],
        "max_file_size": DEFAULT_MAX_FILE_SIZE,
        "workers": 5,
        "queue_capacity": 1000,
        "compression_enabled": False,
        "compression_format": CompressionFormat.GZIP,
        "compression_level": 6,
        "encryption_enabled": False,
        "encryption_password": "",
        "report_dir": Path("./reports"),
        "report_format": ReportFormat.JSON,
        "report_retention": 30,
        "database_path": Path("./backup.db"),
        "database_retention_days": 90,
        "restore_apply_transform": True,
        "verify_restored_checksum": True,
    }


def with_remote(
    config: ConfigDict,
    base_url: str,
    client_id: str,
    client_secret: str,
    directory_id: str = "",
) -> ConfigDict:
    """
    Set the remote object store API and credentials.

    Args:
        config: Current configuration dictionary
        base_url: API base URL (http or https)
        client_id: Client id sent as the Client-ID header
        client_secret: Secret sent as the Client-Secret header
        directory_id: Optional remote directory uploads go to

    Returns:
        New configuration dictionary with remote settings
    """
    return {
        **config,
        "base_url": base_url,
        "client_id": client_id,
        "client_secret": client_secret,
        "directory_id": directory_id,
    }


def with_retries(
    config: ConfigDict,
    retry_count: int,
    timeout_seconds: float | None = None,
) -> ConfigDict:
    """
    Set the network retry budget and request timeout.

    Args:
        config: Current configuration dictionary
        retry_count: Extra attempts after the first one
        timeout_seconds: Per-request timeout

    Returns:
        New configuration dictionary
    """
    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")
    updated = {**config, "retry_count": retry_count}
    if timeout_seconds is not None:
        updated["timeout_seconds"] = timeout_seconds
    return updated


def watch_directories(config: ConfigDict, directories: List[Path | str]) -> ConfigDict:
    """
    Add directories watched by the event producer.

    Args:
        config: Current configuration dictionary
        directories: Directories to add

    Returns:
        New configuration dictionary with directories added
    """
    new_dirs = list(config["directories"]) + [Path(d) for d in directories]
    return {**config, "directories": new_dirs}


def exclude_patterns(config: ConfigDict, patterns: List[str]) -> ConfigDict:
    """
    Add glob patterns excluded from backup.

    Args:
        config: Current configuration dictionary
        patterns: Patterns such as ['*.tmp', '.git/']

    Returns:
        New configuration dictionary with patterns added
    """
    new_patterns = list(config["exclude_patterns"]) + patterns
    return {**config, "exclude_patterns": new_patterns}


def with_max_file_size(config: ConfigDict, max_bytes: int) -> ConfigDict:
    """Set the largest file size that is backed up."""
    if max_bytes < 0:
        raise ValueError(f"max_file_size must be >= 0, got {max_bytes}")
    return {**config, "max_file_size": max_bytes}


def with_workers(config: ConfigDict, workers: int) -> ConfigDict:
    """
    Set the number of concurrent workers.

    Args:
        config: Current configuration dictionary
        workers: Worker count used for backup and restore

    Returns:
        New configuration dictionary with workers set
    """
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return {**config, "workers": workers}


def with_queue_capacity(config: ConfigDict, capacity: int) -> ConfigDict:
    """Set the bounded task queue capacity."""
    if capacity < 1:
        raise ValueError(f"queue_capacity must be >= 1, got {capacity}")
    return {**config, "queue_capacity": capacity}


def enable_compression(
    config: ConfigDict,
    fmt: CompressionFormat | str = CompressionFormat.GZIP,
    level: int = 6,
) -> ConfigDict:
    """
    Compress content before upload.

    Args:
        config: Current configuration dictionary
        fmt: 'zlib', 'gzip' or 'zstd'
        level: Codec level; out-of-range values use the codec default

    Returns:
        New configuration dictionary with compression enabled
    """
    return {
        **config,
        "compression_enabled": True,
        "compression_format": CompressionFormat(fmt),
        "compression_level": level,
    }


def disable_compression(config: ConfigDict) -> ConfigDict:
    """Upload content without compression."""
    return {**config, "compression_enabled": False}


def enable_encryption(config: ConfigDict, password: str) -> ConfigDict:
    """
    Encrypt content before upload.

    Args:
        config: Current configuration dictionary
        password: Secret the per-file keys are derived from

    Returns:
        New configuration dictionary with encryption enabled
    """
    if not password:
        raise ValueError("encryption password must not be empty")
    return {**config, "encryption_enabled": True, "encryption_password": password}


def with_reports(
    config: ConfigDict,
    report_dir: Path | str,
    retention: int | None = None,
) -> ConfigDict:
    """
    Set where reports are written and how many are kept.

    Args:
        config: Current configuration dictionary
        report_dir: Report directory
        retention: Number of report files to keep

    Returns:
        New configuration dictionary
    """
    updated = {**config, "report_dir": Path(report_dir)}
    if retention is not None:
        updated["report_retention"] = retention
    return updated


def with_database(
    config: ConfigDict,
    database_path: Path | str,
    retention_days: int | None = None,
) -> ConfigDict:
    """
    Set the state store location and history retention.

    Args:
        config: Current configuration dictionary
        database_path: SQLite database file
        retention_days: Days of successful history to keep

    Returns:
        New configuration dictionary
    """
    updated = {**config, "database_path": Path(database_path)}
    if retention_days is not None:
        updated["database_retention_days"] = retention_days
    return updated


def restore_raw_bytes(config: ConfigDict) -> ConfigDict:
    """
    Write restored objects exactly as downloaded.

    Transforms are not reversed and checksums are not verified.
    """
    return {**config, "restore_apply_transform": False}


def build_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Validate and build an immutable BackupConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable BackupConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_remote(c, "https://api.example.com", "id", "secret"),
            lambda c: enable_compression(c, "zstd"),
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_remote(c, "https://api.example.com", "id", "secret"),
            lambda c: with_workers(c, 8),
        )

    Args:
        *steps: Builder functions to apply in sequence

    Returns:
        Validated, immutable BackupConfig instance
    """
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    base_url: str = "",
    *,
    client_id: str = "",
    client_secret: str = "",
    directory_id: str = "",
    directories: List[Path | str] | None = None,
    workers: int = 5,
    compression: str | CompressionFormat | None = None,
    compression_level: int = 6,
    encryption_password: str | None = None,
    report_dir: str | Path | None = None,
    database_path: str | Path | None = None,
    **kwargs: Any,
) -> BackupConfig:
    """
    Create a BackupConfig from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        base_url: Remote API base URL
        client_id: Remote client id
        client_secret: Remote client secret
        directory_id: Remote directory for uploads (optional)
        directories: Directories watched by the event producer
        workers: Concurrent workers (default: 5)
        compression: 'zlib', 'gzip' or 'zstd' to enable compression
        compression_level: Codec level (default: 6)
        encryption_password: Enables encryption when given
        report_dir: Report directory (default: ./reports)
        database_path: State store file (default: ./backup.db)
        **kwargs: Any other BackupConfig field

    Returns:
        Validated, immutable BackupConfig instance

    Example:
        config = create_config(
            "https://api.example.com",
            client_id="id",
            client_secret="secret",
            directories=["/srv/data"],
            compression="zstd",
            encryption_password="correct horse",
        )
    """
    config_dict = create_empty_config()

    if base_url or client_id or client_secret:
        config_dict = with_remote(config_dict, base_url, client_id, client_secret, directory_id)

    if directories:
        config_dict = watch_directories(config_dict, directories)

    config_dict = with_workers(config_dict, workers)

    if compression and CompressionFormat(compression) != CompressionFormat.NONE:
        config_dict = enable_compression(config_dict, compression, compression_level)

    if encryption_password:
        config_dict = enable_encryption(config_dict, encryption_password)

    if report_dir:
        config_dict = with_reports(config_dict, report_dir)

    if database_path:
        config_dict = with_database(config_dict, database_path)

    # Apply any additional kwargs that name a config field
    known = {f.name for f in fields(BackupConfig)}
    for key, value in kwargs.items():
        if key in known:
            config_dict[key] = value

    return build_config(config_dict)
