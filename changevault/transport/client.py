# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Remote Store Client - httpx client for the remote object store API.

Endpoints:
- GET  /api/check-health
- POST /api/clients/v1/files?directory_id=...   (multipart field "file")
- GET  /api/clients/v1/files/{id}   (falls back to .../{id}/download on 400)

Every request carries Client-ID and Client-Secret headers.

Retry policy: connection errors, timeouts and 5xx responses are retried up
to retry_count extra times, sleeping backoff(attempt) seconds before each
retry. 4xx responses are never retried.
"""

import asyncio
import os
from typing import Callable

import httpx
import structlog

from changevault.config import BackupConfig
from changevault.errors import explain_missing_credentials
from changevault.exceptions import (
    ConfigurationError,
    PermanentClientError,
    TransientNetworkError,
)

logger = structlog.get_logger()

HEALTH_ENDPOINT = "/api/check-health"
FILES_ENDPOINT = "/api/clients/v1/files"


def quadratic_backoff(attempt: int) -> float:
    """Seconds to wait before retry number `attempt` (1-based)."""
    return float(attempt * attempt)


class RemoteStoreClient:
    """
    Network adapter talking to the remote store over HTTP.

    Usage:
        async with RemoteStoreClient(config) as client:
            await client.health_check()
            remote_id = await client.upload(path, data, len(data), checksum)
            data = await client.download(remote_id)
    """

    def __init__(
        self,
        config: BackupConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff: Callable[[int], float] = quadratic_backoff,
    ):
        """
        Args:
            config: Backup configuration with remote settings
            transport: Optional httpx transport (tests pass a MockTransport)
            backoff: Maps a retry number to a sleep in seconds
        """
        if not config.has_remote_credentials:
            raise ConfigurationError(explain_missing_credentials())

        self.base_url = config.base_url.rstrip("/")
        self.client_id = config.client_id
        self.client_secret = config.client_secret
        self.directory_id = config.directory_id
        self.timeout_seconds = config.timeout_seconds
        self.retry_count = config.retry_count
        self._transport = transport
        self._backoff = backoff
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={
                "Client-ID": self.client_id,
                "Client-Secret": self.client_secret,
            },
            transport=self._transport,
            follow_redirects=False,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteStoreClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.open()
        return self._client

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Send a request with the retry policy applied.

        Returns any response below 500; callers decide what a 4xx means.

        Raises:
            TransientNetworkError: When every attempt failed on a connection
                error, a timeout or a 5xx response
        """
        client = await self._http()
        attempts = self.retry_count + 1
        last_error = ""
        last_status: int | None = None

        for attempt in range(attempts):
            if attempt > 0:
                await asyncio.sleep(self._backoff(attempt))
                logger.info(
                    "retrying_request",
                    url=self._url(endpoint),
                    attempt=attempt + 1,
                )

            try:
                response = await client.request(method, endpoint, **kwargs)
            except httpx.TimeoutException as e:
                last_error = f"Request timed out: {e}"
                last_status = None
                logger.warning("request_timeout", url=self._url(endpoint), attempt=attempt + 1)
                continue
            except httpx.TransportError as e:
                last_error = f"Request failed: {e}"
                last_status = None
                logger.warning(
                    "request_failed",
                    url=self._url(endpoint),
                    attempt=attempt + 1,
                    error=str(e),
                )
                continue

            if response.status_code >= 500:
                last_error = f"Server error: {response.status_code}"
                last_status = response.status_code
                logger.warning(
                    "server_error",
                    url=self._url(endpoint),
                    status=response.status_code,
                    attempt=attempt + 1,
                )
                continue

            return response

        raise TransientNetworkError(
            f"{method} {endpoint} failed after {attempts} attempts: {last_error}",
            status_code=last_status,
            attempts=attempts,
            url=self._url(endpoint),
        )

    def _error_for(self, response: httpx.Response, endpoint: str) -> Exception:
        """Map a non-success response to the matching exception."""
        body = response.text
        message = f"HTTP {response.status_code} from {endpoint}"
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("error"):
                message = f"{message}: {payload['error']}"
        except ValueError:
            pass

        if response.status_code >= 500:
            return TransientNetworkError(
                message,
                status_code=response.status_code,
                url=self._url(endpoint),
            )
        return PermanentClientError(
            message,
            status_code=response.status_code,
            url=self._url(endpoint),
            body=body,
        )

    async def health_check(self) -> None:
        """
        Check that the remote store is reachable. Single attempt.

        Raises:
            TransientNetworkError: Connection failure, timeout or 5xx
            PermanentClientError: Any other non-200 response
        """
        client = await self._http()
        try:
            response = await client.get(HEALTH_ENDPOINT)
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"Health check failed: {e}",
                url=self._url(HEALTH_ENDPOINT),
            ) from e

        if response.status_code != 200:
            raise self._error_for(response, HEALTH_ENDPOINT)

        status = ""
        try:
            status = response.json().get("status", "")
        except (ValueError, AttributeError):
            pass
        logger.info("remote_health_check_ok", status=status)

    async def upload(self, path: str, data: bytes, size: int, checksum: str) -> str:
        """
        Upload content for a local path.

        Args:
            path: Local path; its basename is the uploaded file name
            data: Bytes to upload (already transformed)
            size: Length of data
            checksum: SHA-256 of the original content

        Returns:
            Remote id (data.id, falling back to data.hash)
        """
        params = {"directory_id": self.directory_id} if self.directory_id else None
        files = {"file": (os.path.basename(path), data, "application/octet-stream")}

        logger.debug(
            "upload_request",
            path=path,
            size=size,
            checksum=checksum,
            directory_id=self.directory_id or None,
        )

        response = await self._request("POST", FILES_ENDPOINT, params=params, files=files)

        if response.status_code not in (200, 201):
            logger.error(
                "upload_failed",
                path=path,
                status=response.status_code,
                response=response.text,
            )
            raise self._error_for(response, FILES_ENDPOINT)

        try:
            payload = response.json()
            info = payload.get("data") or {}
            remote_id = str(info.get("id") or info.get("hash") or "")
        except (ValueError, AttributeError) as e:
            raise PermanentClientError(
                f"Invalid upload response: {e}",
                status_code=response.status_code,
                url=self._url(FILES_ENDPOINT),
                body=response.text,
            ) from e

        if not remote_id:
            raise PermanentClientError(
                "Upload response carried neither an id nor a hash",
                status_code=response.status_code,
                url=self._url(FILES_ENDPOINT),
                body=response.text,
            )

        logger.debug("upload_response", path=path, remote_id=remote_id)
        return remote_id

    async def download(self, remote_id: str) -> bytes:
        """
        Download stored content.

        Args:
            remote_id: Id returned by upload()

        Returns:
            Stored bytes
        """
        endpoint = f"{FILES_ENDPOINT}/{remote_id}"
        logger.debug("downloading_file", remote_id=remote_id, endpoint=endpoint)

        response = await self._request("GET", endpoint)
        if response.status_code == 200:
            return response.content

        if response.status_code == 400:
            alternative = f"{endpoint}/download"
            logger.debug("trying_alternative_endpoint", endpoint=alternative)
            fallback = await self._request("GET", alternative)
            if fallback.status_code == 200:
                return fallback.content

        raise self._error_for(response, endpoint)
