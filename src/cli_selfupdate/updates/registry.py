"""
HTTP clients for the update endpoints.

- version index: version -> archive download URL
- latest: the newest published version
- dist-tags: registry tag -> version (used for channel resolution)
- archive download: a streamed tar body

All requests go through ``httpx.AsyncClient``; every failure is reported as
``TransportError``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from cli_selfupdate.config import CLIConfig, UpdatesConfig
from cli_selfupdate.errors import TransportError
from cli_selfupdate.logging import get_logger

logger = get_logger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class ArchiveStream:
    """
    A streamed archive download.

    Attributes:
        url: Where the archive is downloaded from.
        total: Size announced by ``content-length`` (0 for chunked bodies).
    """

    def __init__(self, response: httpx.Response, url: str) -> None:
        self._response = response
        self.url = url
        self.total = int(response.headers.get("content-length", 0) or 0)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the response body in chunks."""
        try:
            async for chunk in self._response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                yield chunk
        except httpx.HTTPError as e:
            raise TransportError(
                f"Archive download interrupted: {e}", details={"url": self.url}
            ) from e


def _index_from_body(body: Any) -> dict[str, str]:
    """
    Normalize a version index response.

    Accepts a JSON object mapping versions to URLs, or a list of release
    objects carrying ``tag_name`` and ``tarball_url``.
    """
    if isinstance(body, dict):
        return {str(k): str(v) for k, v in body.items()}
    if isinstance(body, list):
        index: dict[str, str] = {}
        for release in body:
            tag = str(release.get("tag_name", "")).lstrip("v")
            url = release.get("tarball_url")
            if tag and url:
                index[tag] = str(url)
        return index
    raise ValueError(f"Unexpected version index format: {type(body).__name__}")


class RegistryClient:
    """
    Fetches update metadata and archives.

    Args:
        updates: Endpoint and timeout settings.
        cli: The CLI being updated (for the registry package name).
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        updates: UpdatesConfig,
        cli: CLIConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._updates = updates
        self._cli = cli
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._updates.http_timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        )

    async def _get_json(self, url: str, what: str) -> Any:
        if not url:
            raise TransportError(f"No {what} URL configured")

        logger.debug(f"Fetching {what}", extra={"url": url})
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise TransportError(
                f"Failed to fetch {what}: {e}", details={"url": url}
            ) from e
        except ValueError as e:
            raise TransportError(
                f"Failed to parse {what}: {e}", details={"url": url}
            ) from e

    async def fetch_version_index(self) -> dict[str, str]:
        """Return the version -> download URL index."""
        body = await self._get_json(self._updates.index_url, "version index")
        try:
            return _index_from_body(body)
        except (AttributeError, ValueError) as e:
            raise TransportError(
                f"No version indices exist for {self._cli.name}: {e}",
                details={"url": self._updates.index_url},
            ) from e

    async def fetch_latest_version(self) -> str:
        """Return the newest published version."""
        body = await self._get_json(self._updates.latest_url, "latest version")
        version = body.get("version") if isinstance(body, dict) else None
        if not version:
            raise TransportError(
                "Latest version response has no version",
                details={"url": self._updates.latest_url},
            )
        return str(version)

    async def fetch_dist_tags(self) -> dict[str, str]:
        """Return the registry's tag -> version map for the CLI package."""
        url = f"{self._updates.registry_url}/{self._cli.registry_package}"
        body = await self._get_json(url, "dist-tags")
        tags = body.get("dist-tags") if isinstance(body, dict) else None
        if not isinstance(tags, dict):
            raise TransportError("Registry response has no dist-tags", details={"url": url})
        return {str(k): str(v) for k, v in tags.items()}

    @asynccontextmanager
    async def stream_archive(self, url: str) -> AsyncIterator[ArchiveStream]:
        """
        Open a streamed download of the archive at ``url``.

        Raises:
            TransportError: If the request fails or returns an error status.
        """
        logger.debug("Downloading archive", extra={"url": url})
        async with self._client() as client:
            try:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    yield ArchiveStream(response, url)
            except httpx.HTTPError as e:
                raise TransportError(
                    f"Failed to download {url}: {e}", details={"url": url}
                ) from e
