# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Vault - Content transforms and durable backup state.
"""

from changevault.vault.sqlite_vault import SQLiteStateStore

from changevault.vault.compressor import (
    compress,
    decompress,
)

from changevault.vault.crypto import (
    NonceSequence,
    decrypt_bytes,
    decrypt_stream,
    derive_key,
    encrypt_bytes,
    encrypt_stream,
)

from changevault.vault.transform import (
    TransformSettings,
    decode,
    encode,
)

__all__ = [
    # State store
    "SQLiteStateStore",
    # Compressor
    "compress",
    "decompress",
    # Crypto
    "NonceSequence",
    "derive_key",
    "encrypt_stream",
    "decrypt_stream",
    "encrypt_bytes",
    "decrypt_bytes",
    # Transform
    "TransformSettings",
    "encode",
    "decode",
]
