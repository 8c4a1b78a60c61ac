# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Compressor - Whole-buffer compression stage of the transform pipeline.

Supported formats:
- none: identity
- zlib: deflate stream with zlib header
- gzip: deflate stream with gzip header
- zstd: Zstandard frame

These functions are synchronous and CPU-bound; callers run them on the
pipeline's thread executor.
"""

import gzip
import zlib

import zstandard as zstd

from changevault.config import CompressionFormat
from changevault.exceptions import CompressionError

# Default levels used when the configured level is out of range
DEFAULT_DEFLATE_LEVEL = 6
DEFAULT_ZSTD_LEVEL = 19


def normalize_level(fmt: CompressionFormat, level: int) -> int:
    """
    Clamp a compression level to the range accepted by the codec.

    Out-of-range values fall back to the codec default instead of failing.

    Args:
        fmt: Compression format
        level: Requested level

    Returns:
        Level usable by the codec
    """
    fmt = CompressionFormat(fmt)
    if fmt in (CompressionFormat.ZLIB, CompressionFormat.GZIP):
        return level if 0 <= level <= 9 else DEFAULT_DEFLATE_LEVEL
    if fmt == CompressionFormat.ZSTD:
        return level if 1 <= level <= 22 else DEFAULT_ZSTD_LEVEL
    return 0


def compress(data: bytes, fmt: CompressionFormat, level: int) -> bytes:
    """
    Compress a buffer.

    Args:
        data: Raw bytes
        fmt: Compression format
        level: Compression level (normalized per codec)

    Returns:
        Compressed bytes
    """
    fmt = CompressionFormat(fmt)
    level = normalize_level(fmt, level)
    try:
        if fmt == CompressionFormat.NONE:
            return data
        if fmt == CompressionFormat.ZLIB:
            return zlib.compress(data, level)
        if fmt == CompressionFormat.GZIP:
            # mtime=0 keeps output deterministic for identical input
            return gzip.compress(data, compresslevel=level, mtime=0)
        cctx = zstd.ZstdCompressor(level=level)
        return cctx.compress(data)
    except Exception as e:
        raise CompressionError(f"Compression failed: {e}", format=fmt.value) from e


def decompress(data: bytes, fmt: CompressionFormat) -> bytes:
    """
    Decompress a buffer produced by compress().

    Args:
        data: Compressed bytes
        fmt: Compression format used when compressing

    Returns:
        Original bytes
    """
    fmt = CompressionFormat(fmt)
    try:
        if fmt == CompressionFormat.NONE:
            return data
        if fmt == CompressionFormat.ZLIB:
            return zlib.decompress(data)
        if fmt == CompressionFormat.GZIP:
            return gzip.decompress(data)
        # Frames written by ZstdCompressor.compress() carry the content size
        dctx = zstd.ZstdDecompressor()
        return dctx.decompress(data)
    except Exception as e:
        raise CompressionError(f"Decompression failed: {e}", format=fmt.value) from e

