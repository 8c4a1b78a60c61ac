# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault FastAPI Integration - Admin endpoints for a running service.

This module provides:
- Lifespan management (startup/shutdown)
- Protected admin endpoints to submit changes, read statistics and restore
- Health checks
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import Any, Dict, List

import structlog
from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from changevault.config import BackupConfig
from changevault.core import (
    BackupService,
    initialize_backup_service,
    shutdown_backup_service,
)
from changevault.exceptions import ChangeVaultError, ManifestError
from changevault.models import ChangeEvent

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the CHANGEVAULT_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("CHANGEVAULT_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="CHANGEVAULT_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_changevault_routes(
    app: FastAPI,
    service: BackupService,
    prefix: str = "/admin/changevault",
) -> None:
    """
    Register ChangeVault admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        service: Started backup service
        prefix: URL prefix for endpoints (default: /admin/changevault)
    """

    @app.post(f"{prefix}/changes", dependencies=[Depends(verify_api_key)])
    async def submit_changes(events: List[Dict[str, Any]] = Body(...)) -> dict:
        """
        Submit change events produced by an external watcher.

        Each event is {"path", "operation", "timestamp"?, "size"?, "is_directory"?}.
        """
        try:
            parsed = [ChangeEvent.from_dict(event) for event in events]
        except (KeyError, TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid change event: {e}") from e

        queued = [event.path for event in parsed if service.submit_change(event)]
        return {
            "received": len(parsed),
            "queued": len(queued),
            "queued_paths": queued,
        }

    @app.get(f"{prefix}/stats", dependencies=[Depends(verify_api_key)])
    async def get_stats() -> dict:
        """
        Get backup statistics.

        Returns state store aggregates merged with queue and worker counters.
        """
        return await service.get_stats()

    @app.post(f"{prefix}/restore", dependencies=[Depends(verify_api_key)])
    async def restore(manifest_path: str, target_dir: str) -> dict:
        """
        Restore every file listed in a manifest.

        Args:
            manifest_path: Manifest file on the server
            target_dir: Directory restored files are written to
        """
        try:
            progress = await service.restore_from_manifest(manifest_path, target_dir)
        except ManifestError as e:
            raise HTTPException(status_code=400, detail=e.message) from e
        return progress.to_dict()

    @app.get(f"{prefix}/restore/progress", dependencies=[Depends(verify_api_key)])
    async def restore_progress() -> dict:
        """
        Get progress of the current or last restore.
        """
        return service.get_progress().to_dict()

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the state store is open and the remote store is reachable.
        """
        store_ok = service.store.is_open

        remote_ok = False
        remote_error = None
        try:
            await service.network.health_check()
            remote_ok = True
        except ChangeVaultError as e:
            remote_error = e.message

        status = "healthy"
        if not store_ok or not remote_ok or not service.running:
            status = "degraded"
        if not store_ok and not remote_ok:
            status = "unhealthy"

        return {
            "status": status,
            "running": service.running,
            "state_store_open": store_ok,
            "remote_reachable": remote_ok,
            "remote_error": remote_error,
            "queued": service.queue.qsize(),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration (sensitive values redacted).
        """
        config = service.config
        return {
            "base_url": config.base_url,
            "directory_id": config.directory_id,
            "directories": [str(d) for d in config.directories],
            "exclude_patterns": config.exclude_patterns,
            "max_file_size": config.max_file_size,
            "workers": config.workers,
            "queue_capacity": config.queue_capacity,
            "compression_enabled": config.compression_enabled,
            "compression_format": config.compression_format.value,
            "encryption_enabled": config.encryption_enabled,
            "report_dir": str(config.report_dir),
            "restore_apply_transform": config.restore_apply_transform,
        }


@asynccontextmanager
async def changevault_lifespan(
    app: FastAPI,
    config: BackupConfig,
    prefix: str = "/admin/changevault",
):
    """
    Lifespan context manager running a backup service alongside the app.

        app = FastAPI(lifespan=lambda app: changevault_lifespan(app, config))

    Args:
        app: FastAPI application
        config: Backup configuration
        prefix: URL prefix for admin endpoints
    """
    logger.info("changevault_lifespan_starting")

    service = await initialize_backup_service(config)
    app.state.changevault_service = service

    register_changevault_routes(app, service, prefix)

    logger.info("changevault_lifespan_started")

    try:
        yield
    finally:
        logger.info("changevault_lifespan_stopping")
        await shutdown_backup_service(service, drain=False)
        app.state.changevault_service = None
        logger.info("changevault_lifespan_stopped")


def get_changevault_service(app: FastAPI) -> BackupService:
    """
    Get the backup service from a FastAPI app.

    Useful for accessing the service in custom endpoints.

    Args:
        app: FastAPI application

    Returns:
        BackupService

    Raises:
        RuntimeError: If ChangeVault is not initialized
    """
    service = getattr(app.state, "changevault_service", None)
    if not service:
        raise RuntimeError("ChangeVault not initialized. Use changevault_lifespan first.")
    return service
