# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for ChangeVault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_remote_env() -> str:
    """
    Explain that the remote store environment variables are missing.
    """

    return (
        "Remote object store is not configured. "
        "Set CHANGEVAULT_BASE_URL, CHANGEVAULT_CLIENT_ID and CHANGEVAULT_CLIENT_SECRET "
        "or pass them to create_config()."
    )


def explain_missing_credentials() -> str:
    """
    Explain that the HTTP client was created without credentials.
    """

    return (
        "RemoteStoreClient requires base_url, client_id and client_secret. "
        "Configure them with with_remote() or create_config(), "
        "or pass a custom network adapter instead."
    )


def explain_invalid_int_env(name: str, value: str | None, minimum: int) -> str:
    """
    Explain that an integer environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        f"It must be an integer greater than or equal to {minimum}."
    )


def explain_invalid_compression_env(value: str | None) -> str:
    """
    Explain that CHANGEVAULT_COMPRESSION is invalid.
    """

    return (
        f"Invalid CHANGEVAULT_COMPRESSION value: {value!r}. "
        "Expected one of: 'none', 'zlib', 'gzip', or 'zstd'."
    )


def explain_missing_encryption_password() -> str:
    """
    Explain that encryption was requested without a password.
    """

    return (
        "Encryption is enabled but no password was provided. "
        "Set CHANGEVAULT_ENCRYPTION_PASSWORD or pass encryption_password=... "
        "to create_config()."
    )
