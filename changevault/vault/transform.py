# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Transform - Compression followed by encryption, and its inverse.

encode() and decode() are exact inverses for every input, including the
empty one. Both are synchronous; the backup and restore workers call them
through the thread executor.
"""

import io
from dataclasses import dataclass, field
from typing import BinaryIO

from changevault.config import BackupConfig, CompressionFormat
from changevault.models import TransformFlags
from changevault.vault import compressor, crypto


@dataclass(frozen=True)
class TransformSettings:
    """Which transforms to apply on upload, derived from BackupConfig."""

    compression_enabled: bool = False
    compression_format: CompressionFormat = CompressionFormat.GZIP
    compression_level: int = 6
    encryption_enabled: bool = False
    password: str = field(default="", repr=False)

    @classmethod
    def from_config(cls, config: BackupConfig) -> "TransformSettings":
        return cls(
            compression_enabled=config.compression_enabled,
            compression_format=config.compression_format,
            compression_level=config.compression_level,
            encryption_enabled=config.encryption_enabled,
            password=config.encryption_password,
        )

    @property
    def flags(self) -> TransformFlags:
        """Flags describing what encode() applies under these settings."""
        compressed = (
            self.compression_enabled
            and CompressionFormat(self.compression_format) != CompressionFormat.NONE
        )
        return TransformFlags(
            compressed=compressed,
            compression_format=(
                CompressionFormat(self.compression_format).value if compressed else "none"
            ),
            encrypted=self.encryption_enabled,
        )


def _is_buffer(raw) -> bool:
    return isinstance(raw, (bytes, bytearray, memoryview))


def _read_all(raw: bytes | BinaryIO) -> bytes:
    if _is_buffer(raw):
        return bytes(raw)
    return raw.read()


def encode(raw: bytes | BinaryIO, settings: TransformSettings) -> tuple[bytes, TransformFlags]:
    """
    Apply the configured transforms to file content.

    Compression runs first on the whole buffer, then the result is sealed
    in the chunked encryption container.

    Args:
        raw: Plaintext bytes or a binary reader
        settings: Transform settings

    Returns:
        Tuple of (transformed bytes, flags describing what was applied)
    """
    flags = settings.flags

    if flags.encrypted and not flags.compressed and not _is_buffer(raw):
        # Stream straight from the reader into the container
        out = io.BytesIO()
        crypto.encrypt_stream(raw, out, settings.password)
        return out.getvalue(), flags

    data = _read_all(raw)

    if flags.compressed:
        data = compressor.compress(
            data, CompressionFormat(flags.compression_format), settings.compression_level
        )

    if flags.encrypted:
        data = crypto.encrypt_bytes(data, settings.password)

    return data, flags


def decode(data: bytes, flags: TransformFlags, settings: TransformSettings) -> bytes:
    """
    Reverse encode() using the flags recorded at upload time.

    Args:
        data: Transformed bytes as stored remotely
        flags: Flags returned by encode() for this content
        settings: Settings providing the password

    Returns:
        Original plaintext

    Raises:
        CryptoError: If the container cannot be authenticated
        CompressionError: If the decompressed stream is corrupt
    """
    if flags.encrypted:
        data = crypto.decrypt_bytes(data, settings.password)

    if flags.compressed:
        data = compressor.decompress(data, CompressionFormat(flags.compression_format))

    return data
