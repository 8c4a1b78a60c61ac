# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for ChangeVault tests.

Provides an in-memory remote store, state store and reporter fixtures, and
test configuration helpers.
"""

import asyncio
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Set, Tuple

import pytest
import pytest_asyncio

from changevault.config import BackupConfig
from changevault.exceptions import PermanentClientError, TransientNetworkError

# Set test environment variables
os.environ["CHANGEVAULT_ADMIN_API_KEY"] = "test-api-key-12345"


class FakeRemoteStore:
    """
    In-memory network adapter.

    Records every upload and download, and can be told to fail uploads or
    downloads for given paths / ids.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[Tuple[str, int, str]] = []
        self.downloads: List[str] = []
        self.fail_uploads: Set[str] = set()
        self.fail_downloads: Set[str] = set()
        self.healthy = True
        self.health_checks = 0
        self.active: Dict[str, int] = {}
        self.max_active_per_path = 0
        self.max_active = 0
        self._counter = 0

    async def upload(self, path: str, data: bytes, size: int, checksum: str) -> str:
        self.active[path] = self.active.get(path, 0) + 1
        self.max_active_per_path = max(self.max_active_per_path, self.active[path])
        self.max_active = max(self.max_active, sum(self.active.values()))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if path in self.fail_uploads:
                raise TransientNetworkError(
                    f"Upload failed for {path}",
                    status_code=503,
                    attempts=4,
                )
            self._counter += 1
            remote_id = f"obj-{self._counter}"
            self.objects[remote_id] = bytes(data)
            self.uploads.append((path, size, checksum))
            return remote_id
        finally:
            self.active[path] -= 1

    async def download(self, remote_id: str) -> bytes:
        self.downloads.append(remote_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if remote_id in self.fail_downloads or remote_id not in self.objects:
            raise PermanentClientError(
                f"Object not found: {remote_id}",
                status_code=404,
            )
        return self.objects[remote_id]

    async def health_check(self) -> None:
        self.health_checks += 1
        if not self.healthy:
            raise TransientNetworkError("Remote store unreachable", attempts=1)

    def put(self, data: bytes) -> str:
        """Store an object directly, as if uploaded earlier."""
        self._counter += 1
        remote_id = f"obj-{self._counter}"
        self.objects[remote_id] = data
        return remote_id


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def write_file(path: Path, data: bytes | str) -> Path:
    """Create a file with the given content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode()
    path.write_bytes(data)
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> BackupConfig:
    """Create a test configuration with storage under temp_dir."""
    return BackupConfig(
        base_url="https://store.example.com",
        client_id="client-id",
        client_secret="client-secret",
        directory_id="dir-1",
        workers=2,
        queue_capacity=100,
        report_dir=temp_dir / "reports",
        database_path=temp_dir / "state.db",
    )


@pytest.fixture
def fake_remote() -> FakeRemoteStore:
    """In-memory remote store."""
    return FakeRemoteStore()


@pytest_asyncio.fixture
async def state_store(temp_dir: Path):
    """Open state store in a temporary database."""
    from changevault.vault.sqlite_vault import SQLiteStateStore

    store = SQLiteStateStore(temp_dir / "state.db")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def reporter(temp_dir: Path):
    """Reporter writing into temp_dir/reports."""
    from changevault.report import Reporter

    return Reporter(temp_dir / "reports", retention=5)
