# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and upload profiles.

These helpers are small, convenient wrappers around create_config() and
BackupConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made upload profiles
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from changevault.builder import create_config
from changevault.config import BackupConfig, CompressionFormat
from changevault.errors import (
    explain_invalid_compression_env,
    explain_invalid_int_env,
    explain_missing_encryption_password,
    explain_missing_remote_env,
)
from changevault.exceptions import ConfigurationError


def _parse_int(name: str, value: str | None, default: int, minimum: int = 0) -> int:
    if not value:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_int_env(name, value, minimum)) from exc
    if number < minimum:
        raise ConfigurationError(explain_invalid_int_env(name, value, minimum))
    return number


def _parse_compression(value: str | None) -> CompressionFormat | None:
    if not value:
        return None
    try:
        return CompressionFormat(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_compression_env(value)) from exc


def _parse_list(value: str | None, sep: str = ",") -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(sep) if p.strip()]


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def create_config_from_env(*, require_remote: bool = True) -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required (unless require_remote=False):
        - CHANGEVAULT_BASE_URL: Remote API base URL
        - CHANGEVAULT_CLIENT_ID: Client id
        - CHANGEVAULT_CLIENT_SECRET: Client secret

    Optional environment variables:
        - CHANGEVAULT_DIRECTORY_ID: Remote directory for uploads
        - CHANGEVAULT_DIRECTORIES: os.pathsep-separated watched directories
        - CHANGEVAULT_EXCLUDE: Comma-separated glob patterns
        - CHANGEVAULT_WORKERS: Worker count (default: 5)
        - CHANGEVAULT_QUEUE_CAPACITY: Task queue capacity (default: 1000)
        - CHANGEVAULT_RETRY_COUNT: Extra network attempts (default: 3)
        - CHANGEVAULT_COMPRESSION: 'none' | 'zlib' | 'gzip' | 'zstd'
        - CHANGEVAULT_COMPRESSION_LEVEL: Codec level (default: 6)
        - CHANGEVAULT_ENCRYPT: Enable encryption ('true'/'false')
        - CHANGEVAULT_ENCRYPTION_PASSWORD: Encryption password
        - CHANGEVAULT_REPORT_DIR: Report directory (default: ./reports)
        - CHANGEVAULT_DATABASE: State store file (default: ./backup.db)
    """

    base_url = os.getenv("CHANGEVAULT_BASE_URL", "")
    client_id = os.getenv("CHANGEVAULT_CLIENT_ID", "")
    client_secret = os.getenv("CHANGEVAULT_CLIENT_SECRET", "")
    if require_remote and not (base_url and client_id and client_secret):
        raise ConfigurationError(explain_missing_remote_env())

    password = os.getenv("CHANGEVAULT_ENCRYPTION_PASSWORD") or None
    encrypt = _parse_bool(os.getenv("CHANGEVAULT_ENCRYPT"), default=bool(password))
    if encrypt and not password:
        raise ConfigurationError(explain_missing_encryption_password())

    directories = [Path(d) for d in _parse_list(os.getenv("CHANGEVAULT_DIRECTORIES"), os.pathsep)]
    report_dir = os.getenv("CHANGEVAULT_REPORT_DIR")
    database_path = os.getenv("CHANGEVAULT_DATABASE")

    return create_config(
        base_url,
        client_id=client_id,
        client_secret=client_secret,
        directory_id=os.getenv("CHANGEVAULT_DIRECTORY_ID", ""),
        directories=directories,
        workers=_parse_int("CHANGEVAULT_WORKERS", os.getenv("CHANGEVAULT_WORKERS"), 5, 1),
        compression=_parse_compression(os.getenv("CHANGEVAULT_COMPRESSION")),
        compression_level=_parse_int(
            "CHANGEVAULT_COMPRESSION_LEVEL", os.getenv("CHANGEVAULT_COMPRESSION_LEVEL"), 6
        ),
        encryption_password=password if encrypt else None,
        report_dir=report_dir,
        database_path=database_path,
        exclude_patterns=_parse_list(os.getenv("CHANGEVAULT_EXCLUDE")),
        queue_capacity=_parse_int(
            "CHANGEVAULT_QUEUE_CAPACITY", os.getenv("CHANGEVAULT_QUEUE_CAPACITY"), 1000, 1
        ),
        retry_count=_parse_int(
            "CHANGEVAULT_RETRY_COUNT", os.getenv("CHANGEVAULT_RETRY_COUNT"), 3
        ),
    )


# ============================================================================
# Profiles
# ============================================================================

def compact_uploads(config: BackupConfig) -> BackupConfig:
    """
    Minimize bytes sent to the remote store.

    - zstd compression at level 19
    - Common build and cache directories excluded
    """

    patterns = list(config.exclude_patterns)
    for p in ("*.tmp", "*.swp", "__pycache__/", "node_modules/"):
        if p not in patterns:
            patterns.append(p)

    return config.with_updates(
        compression_enabled=True,
        compression_format=CompressionFormat.ZSTD,
        compression_level=19,
        exclude_patterns=patterns,
    )


def private_uploads(config: BackupConfig, password: str | None = None) -> BackupConfig:
    """
    Encrypt everything that leaves the machine.

    - Encryption enabled (password argument or the one already configured)
    - Restored files are always checksum-verified
    """

    secret = password or config.encryption_password
    if not secret:
        raise ConfigurationError(explain_missing_encryption_password())

    return config.with_updates(
        encryption_enabled=True,
        encryption_password=secret,
        restore_apply_transform=True,
        verify_restored_checksum=True,
    )
