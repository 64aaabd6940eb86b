"""HTTP metadata provider backed by a descriptor index served over HTTP.

The repository lays out pre-parsed descriptors next to the artifacts:

- ``{base}/{group path}/{artifact}/versions.json``: ``{"versions": [...]}``
- ``{base}/{group path}/{artifact}/{version}/descriptor.json``
- ``{base}/{group path}/{artifact}/{version}/snapshot.json``:
  ``{"timestamp": "20240615.143022", "buildNumber": 5}``
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from kresolve.errors import DescriptorNotFound, MetadataFetchError
from kresolve.models import Coordinate, PackageDescriptor
from kresolve.providers.base import MetadataProvider
from kresolve.versions import MavenVersion

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 503)


class HttpMetadataProvider(MetadataProvider):
    """Fetches descriptors from one HTTP repository.

    Manages a shared aiohttp.ClientSession for connection pooling and bounds
    in-flight requests with a semaphore, so the fetch concurrency is a
    property of the provider rather than of the resolver.

    Attributes:
        base_url: Repository root URL.
        max_concurrency: Maximum simultaneous requests.
        timeout: Total timeout per request, in seconds.
        max_retries: Retries for rate-limited or unavailable responses.
    """

    def __init__(
        self,
        base_url: str,
        name: str = "remote",
        priority: int = 100,
        max_concurrency: int = 8,
        timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: Repository root URL.
            name: Repository identifier recorded in the lockfile.
            priority: Waterfall priority; lower is tried first.
            max_concurrency: Maximum simultaneous requests.
            timeout: Total timeout per request, in seconds.
            max_retries: Retries on HTTP 429/503 before giving up.
        """
        self.base_url = base_url.rstrip("/")
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.max_retries = max_retries
        self._name = name
        self._priority = priority
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json", "User-Agent": "kresolve"},
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    def artifact_url(self, coordinate: Coordinate) -> str:
        group_path = coordinate.group.replace(".", "/")
        return f"{self.base_url}/{group_path}/{coordinate.artifact}"

    async def fetch(self, coordinate: Coordinate, version: str) -> PackageDescriptor:
        url = f"{self.artifact_url(coordinate)}/{version}/descriptor.json"
        data = await self._get_json(url)
        if data is None:
            raise DescriptorNotFound(coordinate, version)
        try:
            return PackageDescriptor.from_dict(data, source=self.name)
        except ValueError as e:
            raise MetadataFetchError(f"Invalid descriptor at {url}: {e}") from e

    async def list_versions(self, coordinate: Coordinate) -> list[str]:
        data = await self._get_json(f"{self.artifact_url(coordinate)}/versions.json")
        if data is None:
            return []
        versions = [str(v) for v in data.get("versions", [])]
        return sorted(versions, key=MavenVersion.parse)

    async def latest_snapshot(self, coordinate: Coordinate, version: str) -> str:
        url = f"{self.artifact_url(coordinate)}/{version}/snapshot.json"
        data = await self._get_json(url)
        if data is None:
            raise DescriptorNotFound(coordinate, version)
        if "timestamp" not in data or "buildNumber" not in data:
            raise MetadataFetchError(f"Snapshot metadata at {url} lacks timestamp or buildNumber")
        base = MavenVersion.parse(version).base_version
        return f"{base}-{data['timestamp']}-{data['buildNumber']}"

    async def _get_json(self, url: str, retry_count: int = 0) -> Optional[dict[str, Any]]:
        """GET a JSON document.

        Args:
            url: Document URL.
            retry_count: Current retry attempt.

        Returns:
            The decoded document, or None on HTTP 404.

        Raises:
            MetadataFetchError: On transport errors, undecodable bodies,
                unexpected statuses, or exhausted retries.
        """
        session = await self._get_session()
        wait_time: Optional[float] = None

        async with self._semaphore:
            try:
                async with session.get(url) as response:
                    if response.status == 404:
                        return None

                    if response.status in RETRYABLE_STATUSES:
                        if retry_count >= self.max_retries:
                            raise MetadataFetchError(
                                f"HTTP {response.status} for {url} after {retry_count} retries"
                            )
                        retry_after = response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            wait_time = int(retry_after)
                        else:
                            # Exponential backoff: 1s, 2s, 4s
                            wait_time = 2**retry_count
                    elif response.status == 200:
                        return await response.json(content_type=None)
                    else:
                        raise MetadataFetchError(f"HTTP {response.status} for {url}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise MetadataFetchError(f"Request to {url} failed: {e}") from e
            except ValueError as e:
                raise MetadataFetchError(f"Invalid JSON from {url}: {e}") from e

        logger.debug("%s rate limited %s, retrying in %ss", self.name, url, wait_time)
        await asyncio.sleep(wait_time)
        return await self._get_json(url, retry_count + 1)
