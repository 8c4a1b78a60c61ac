# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault - Change-driven backup and restore for watched directories.

Decides which changed files need re-transmission, compresses and encrypts
their content, uploads it to a remote object store through a retrying
client, and tracks per-file state so restarts never lose or duplicate work
undetectably. Package name: changevault.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from changevault.builder import create_config

# Core service
from changevault.core import (
    BackupService,
    initialize_backup_service,
    shutdown_backup_service,
)

# Environment-based configuration and profiles (additional helpers)
from changevault.env import (
    compact_uploads,
    create_config_from_env,
    private_uploads,
)

from changevault.models import ChangeEvent, Operation

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    "compact_uploads",
    "private_uploads",
    # Core service
    "BackupService",
    "initialize_backup_service",
    "shutdown_backup_service",
    # Events
    "ChangeEvent",
    "Operation",
]
