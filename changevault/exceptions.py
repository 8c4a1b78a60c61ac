# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Exceptions - Closed error taxonomy for the changevault package.

Every error raised by the pipeline is one of the subclasses below. Each
carries a stable ``kind`` tag and a structured payload built from its
constructor arguments, so workers can record failures without parsing
message strings.
"""


class ChangeVaultError(Exception):
    """Base exception for all ChangeVault errors."""

    kind = "error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ChangeVaultError):
    """Raised when configuration is invalid."""

    kind = "configuration"


class TransientNetworkError(ChangeVaultError):
    """Raised when a network operation failed on a retryable condition.

    Connection failures, timeouts and server-side (5xx) responses end up
    here once the retry budget is spent.
    """

    kind = "transient_network"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        attempts: int = 1,
        url: str | None = None,
    ):
        self.status_code = status_code
        self.attempts = attempts
        self.url = url
        super().__init__(
            message,
            details={"status_code": status_code, "attempts": attempts, "url": url},
        )


class PermanentClientError(ChangeVaultError):
    """Raised on client/validation errors (4xx) that must not be retried."""

    kind = "permanent_client"

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        url: str | None = None,
        body: str | None = None,
    ):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(
            message,
            details={"status_code": status_code, "url": url},
        )


class LocalIOError(ChangeVaultError):
    """Raised when opening, reading or writing a local file fails."""

    kind = "local_io"

    def __init__(self, message: str, *, path: str, operation: str):
        self.path = path
        self.operation = operation
        super().__init__(message, details={"path": path, "operation": operation})


class CryptoError(ChangeVaultError):
    """Raised when an encrypted container cannot be opened.

    ``reason`` is one of ``authentication_failed`` (wrong password or
    tampered data), ``truncated``, ``malformed`` or ``nonce_exhausted``.
    """

    kind = "crypto"

    AUTHENTICATION_FAILED = "authentication_failed"
    TRUNCATED = "truncated"
    MALFORMED = "malformed"
    NONCE_EXHAUSTED = "nonce_exhausted"

    def __init__(self, message: str, *, reason: str, chunk_index: int | None = None):
        self.reason = reason
        self.chunk_index = chunk_index
        super().__init__(message, details={"reason": reason, "chunk_index": chunk_index})


class ChecksumMismatchError(ChangeVaultError):
    """Raised when restored content does not match the expected digest."""

    kind = "checksum_mismatch"

    def __init__(self, message: str, *, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            message,
            details={"path": path, "expected": expected, "actual": actual},
        )


class StateStoreError(ChangeVaultError):
    """Raised when the state store cannot persist or load data."""

    kind = "state_store"

    def __init__(self, message: str, *, operation: str, path: str | None = None):
        self.operation = operation
        self.path = path
        super().__init__(message, details={"operation": operation, "path": path})


class CompressionError(ChangeVaultError):
    """Raised when compressing or decompressing content fails."""

    kind = "compression"

    def __init__(self, message: str, *, format: str):
        self.format = format
        super().__init__(message, details={"format": format})


class ManifestError(ChangeVaultError):
    """Raised when a restore manifest cannot be read or parsed."""

    kind = "manifest"

    def __init__(self, message: str, *, path: str | None = None):
        self.path = path
        super().__init__(message, details={"path": path})
