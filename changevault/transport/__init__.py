# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transport - Network adapter to the remote object store.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NetworkAdapter(Protocol):
    """Operations the pipeline needs from a remote object store."""

    async def upload(self, path: str, data: bytes, size: int, checksum: str) -> str:
        """Upload content and return the remote id."""
        ...

    async def download(self, remote_id: str) -> bytes:
        """Download the stored content of a remote id."""
        ...

    async def health_check(self) -> None:
        """Raise if the remote store is not reachable."""
        ...


from changevault.transport.client import RemoteStoreClient, quadratic_backoff  # noqa: E402

__all__ = [
    "NetworkAdapter",
    "RemoteStoreClient",
    "quadratic_backoff",
]
