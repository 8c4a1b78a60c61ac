# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Manifest - Restore manifest file format.

A manifest lists the remote objects to restore:

    {
      "version": "1.0",
      "created_at": "...",
      "backup_id": "...",
      "source_path": "...",
      "files": [
        {"file_path": ..., "file_id": ..., "size": ..., "checksum": ...,
         "backup_time": ..., "permissions": 420, "compressed": false,
         "compression_format": "gzip", "encrypted": false}
      ],
      "metadata": {}
    }

compression_format and encrypted are optional; entries written without
them are read back with the defaults supplied by the restorer.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog

from changevault.exceptions import ManifestError
from changevault.models import TransformFlags

logger = structlog.get_logger()

MANIFEST_VERSION = "1.0"
DEFAULT_PERMISSIONS = 0o644


def _parse_permissions(value: Any) -> int:
    """Accept an int mode or an octal string such as "0644"."""
    if value in (None, "", 0):
        return DEFAULT_PERMISSIONS
    if isinstance(value, str):
        return int(value, 8) & 0o7777
    return int(value) & 0o7777


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class ManifestEntry:
    """One remote object to restore."""

    path: str
    remote_id: str
    size: int = 0
    checksum: str = ""
    backup_time: datetime | None = None
    permissions: int = DEFAULT_PERMISSIONS
    compressed: bool = False
    compression_format: str | None = None
    encrypted: bool | None = None

    def transform_flags(
        self,
        default_format: str = "none",
        default_encrypted: bool = False,
    ) -> TransformFlags:
        """
        Flags describing how the stored object was transformed.

        Args:
            default_format: Codec to assume for compressed entries that do
                not name one
            default_encrypted: Encryption to assume when the entry is silent

        Returns:
            TransformFlags for decode()
        """
        if not self.compressed:
            fmt = "none"
        else:
            fmt = self.compression_format or default_format
        return TransformFlags(
            compressed=self.compressed and fmt != "none",
            compression_format=fmt,
            encrypted=default_encrypted if self.encrypted is None else self.encrypted,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            path=data["file_path"],
            remote_id=data["file_id"],
            size=int(data.get("size") or 0),
            checksum=data.get("checksum") or "",
            backup_time=_parse_time(data.get("backup_time")),
            permissions=_parse_permissions(data.get("permissions")),
            compressed=bool(data.get("compressed", False)),
            compression_format=data.get("compression_format"),
            encrypted=data.get("encrypted"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "file_path": self.path,
            "file_id": self.remote_id,
            "size": self.size,
            "checksum": self.checksum,
            "backup_time": self.backup_time.isoformat() if self.backup_time else None,
            "permissions": self.permissions,
            "compressed": self.compressed,
        }
        if self.compression_format is not None:
            data["compression_format"] = self.compression_format
        if self.encrypted is not None:
            data["encrypted"] = self.encrypted
        return data


@dataclass
class RestoreManifest:
    """A set of entries to restore, usually derived from a backup report."""

    backup_id: str
    files: List[ManifestEntry] = field(default_factory=list)
    source_path: str = ""
    version: str = MANIFEST_VERSION
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RestoreManifest":
        return cls(
            backup_id=data.get("backup_id", ""),
            files=[ManifestEntry.from_dict(entry) for entry in data.get("files") or []],
            source_path=data.get("source_path", ""),
            version=data.get("version", MANIFEST_VERSION),
            created_at=_parse_time(data.get("created_at")) or datetime.now(UTC),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "backup_id": self.backup_id,
            "source_path": self.source_path,
            "files": [entry.to_dict() for entry in self.files],
            "metadata": self.metadata,
        }


async def load_manifest(path: Path) -> RestoreManifest:
    """
    Read and parse a manifest file.

    Args:
        path: Manifest file path

    Returns:
        Parsed manifest

    Raises:
        ManifestError: If the file is missing or not a valid manifest
    """
    try:
        async with aiofiles.open(path, "r") as f:
            data = json.loads(await f.read())
    except FileNotFoundError as e:
        raise ManifestError(f"Manifest not found: {path}", path=str(path)) from e
    except OSError as e:
        raise ManifestError(f"Failed to read manifest: {e}", path=str(path)) from e
    except ValueError as e:
        raise ManifestError(f"Manifest is not valid JSON: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object", path=str(path))

    try:
        return RestoreManifest.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"Invalid manifest entry: {e}", path=str(path)) from e


async def save_manifest(manifest: RestoreManifest, path: Path) -> Path:
    """
    Write a manifest atomically (temp file, then rename).

    Args:
        manifest: Manifest to write
        path: Destination path

    Returns:
        The destination path
    """
    path = Path(path)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(manifest.to_dict(), indent=2, default=str))
        os.replace(temp_path, path)
    except OSError as e:
        raise ManifestError(f"Failed to write manifest: {e}", path=str(path)) from e

    logger.info("restore_manifest_saved", path=str(path), files=len(manifest.files))
    return path
