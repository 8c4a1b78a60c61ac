# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Crypto - Chunked AES-256-GCM container for one file's content.

Container layout (all integers big-endian):

    salt (32) | nonce_base (12) | chunk*
    chunk = length (4) | AEAD ciphertext (plaintext window + 16 byte tag)

The key is derived per file with PBKDF2-HMAC-SHA256 (100,000 iterations)
from the configured password and the file's random salt. Plaintext is
sealed in 4096-byte windows; window i uses nonce_base + i as a 96-bit
counter. An empty plaintext produces a bare header with no chunks.

Decryption is all-or-nothing: plaintext is only returned once every chunk
has authenticated and the input ended exactly on a frame boundary.
"""

import io
import os
import struct
from typing import BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from changevault.exceptions import CryptoError

SALT_SIZE = 32
NONCE_SIZE = 12
KEY_SIZE = 32
TAG_SIZE = 16
LENGTH_PREFIX_SIZE = 4
HEADER_SIZE = SALT_SIZE + NONCE_SIZE
PBKDF2_ITERATIONS = 100_000
CHUNK_SIZE = 4096

# Number of distinct 96-bit nonces
NONCE_SPACE = 1 << (NONCE_SIZE * 8)

_LENGTH = struct.Struct(">I")


def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a 256-bit AES key from a password and salt.

    Args:
        password: Configured secret
        salt: Per-file random salt
        iterations: PBKDF2 iteration count

    Returns:
        32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


class NonceSequence:
    """
    Fixed-width 96-bit nonce counter starting at a random base.

    The counter carries across all twelve bytes and wraps modulo 2**96.
    Issuing more than 2**96 nonces under one key raises instead of
    silently repeating a value.
    """

    def __init__(self, base: bytes):
        if len(base) != NONCE_SIZE:
            raise CryptoError(
                f"Nonce base must be {NONCE_SIZE} bytes, got {len(base)}",
                reason=CryptoError.MALFORMED,
            )
        self._base = int.from_bytes(base, "big")
        self._issued = 0

    @property
    def issued(self) -> int:
        return self._issued

    def next(self) -> bytes:
        if self._issued >= NONCE_SPACE:
            raise CryptoError(
                "Nonce space exhausted for this key",
                reason=CryptoError.NONCE_EXHAUSTED,
                chunk_index=self._issued,
            )
        value = (self._base + self._issued) % NONCE_SPACE
        self._issued += 1
        return value.to_bytes(NONCE_SIZE, "big")


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    """Read up to size bytes, looping over short reads until EOF."""
    parts = []
    remaining = size
    while remaining > 0:
        block = reader.read(remaining)
        if not block:
            break
        parts.append(block)
        remaining -= len(block)
    return b"".join(parts)


def encrypt_stream(
    reader: BinaryIO,
    writer: BinaryIO,
    password: str,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Encrypt everything readable from reader into writer.

    Args:
        reader: Binary source of plaintext
        writer: Binary sink for the container
        password: Secret the key is derived from
        chunk_size: Plaintext window size

    Returns:
        Number of container bytes written
    """
    salt = os.urandom(SALT_SIZE)
    nonce_base = os.urandom(NONCE_SIZE)
    aead = AESGCM(derive_key(password, salt))
    nonces = NonceSequence(nonce_base)

    writer.write(salt)
    writer.write(nonce_base)
    written = HEADER_SIZE

    while True:
        window = _read_exact(reader, chunk_size)
        if not window:
            break
        sealed = aead.encrypt(nonces.next(), window, None)
        writer.write(_LENGTH.pack(len(sealed)))
        writer.write(sealed)
        written += LENGTH_PREFIX_SIZE + len(sealed)
        if len(window) < chunk_size:
            break

    return written


def decrypt_stream(
    reader: BinaryIO,
    password: str,
    chunk_size: int = CHUNK_SIZE,
) -> bytes:
    """
    Open a container and return the full plaintext.

    Args:
        reader: Binary source of the container
        password: Secret the key is derived from
        chunk_size: Plaintext window size used when encrypting

    Returns:
        Plaintext bytes

    Raises:
        CryptoError: On wrong password, tampering, truncation or a
            malformed frame. No plaintext is returned in that case.
    """
    header = _read_exact(reader, HEADER_SIZE)
    if len(header) < HEADER_SIZE:
        raise CryptoError(
            f"Container header truncated ({len(header)} of {HEADER_SIZE} bytes)",
            reason=CryptoError.TRUNCATED,
        )

    salt, nonce_base = header[:SALT_SIZE], header[SALT_SIZE:]
    aead = AESGCM(derive_key(password, salt))
    nonces = NonceSequence(nonce_base)
    max_frame = chunk_size + TAG_SIZE

    plaintext = bytearray()
    index = 0
    while True:
        prefix = _read_exact(reader, LENGTH_PREFIX_SIZE)
        if not prefix:
            break
        if len(prefix) < LENGTH_PREFIX_SIZE:
            raise CryptoError(
                "Chunk length prefix truncated",
                reason=CryptoError.TRUNCATED,
                chunk_index=index,
            )

        (length,) = _LENGTH.unpack(prefix)
        if length < TAG_SIZE or length > max_frame:
            raise CryptoError(
                f"Invalid chunk length {length}",
                reason=CryptoError.MALFORMED,
                chunk_index=index,
            )

        sealed = _read_exact(reader, length)
        if len(sealed) < length:
            raise CryptoError(
                f"Chunk truncated ({len(sealed)} of {length} bytes)",
                reason=CryptoError.TRUNCATED,
                chunk_index=index,
            )

        try:
            plaintext += aead.decrypt(nonces.next(), sealed, None)
        except InvalidTag as e:
            raise CryptoError(
                "Authentication failed: wrong password or corrupted data",
                reason=CryptoError.AUTHENTICATION_FAILED,
                chunk_index=index,
            ) from e
        index += 1

    return bytes(plaintext)


def encrypt_bytes(data: bytes, password: str) -> bytes:
    """Encrypt a buffer into a container."""
    out = io.BytesIO()
    encrypt_stream(io.BytesIO(data), out, password)
    return out.getvalue()


def decrypt_bytes(data: bytes, password: str) -> bytes:
    """Open a container held in memory."""
    return decrypt_stream(io.BytesIO(data), password)
