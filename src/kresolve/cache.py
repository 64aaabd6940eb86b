"""Single-flight descriptor cache shared by every variant of one run.

The cache sits between the resolver and the metadata provider. The first
request for a key starts the fetch; concurrent requests for the same key
await that same task instead of fetching again. Results, including
failures, are kept for the lifetime of the cache so sibling variants reuse
them.

The synchronous ``peek_*`` methods give the graph builder read-only access
to whatever has already been fetched.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, NamedTuple, Optional

from kresolve.models import Coordinate, PackageDescriptor
from kresolve.providers.base import MetadataProvider

logger = logging.getLogger(__name__)

DESCRIPTOR = "descriptor"
VERSIONS = "versions"
SNAPSHOT = "snapshot"


class FetchRequest(NamedTuple):
    """One unit of provider work, usable as a cache key."""

    kind: str
    coordinate: Coordinate
    version: Optional[str] = None

    def __str__(self) -> str:
        target = f"{self.coordinate}:{self.version}" if self.version else str(self.coordinate)
        return f"{self.kind} {target}"


class DescriptorCache:
    """Single-flight cache in front of a MetadataProvider.

    Attributes:
        provider: The wrapped provider.
    """

    def __init__(self, provider: MetadataProvider) -> None:
        self.provider = provider
        self._tasks: dict[FetchRequest, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0

    async def fetch_descriptor(self, coordinate: Coordinate, version: str) -> PackageDescriptor:
        return await self.get(FetchRequest(DESCRIPTOR, coordinate, version))

    async def list_versions(self, coordinate: Coordinate) -> list[str]:
        return await self.get(FetchRequest(VERSIONS, coordinate))

    async def latest_snapshot(self, coordinate: Coordinate, version: str) -> str:
        return await self.get(FetchRequest(SNAPSHOT, coordinate, version))

    async def get(self, request: FetchRequest) -> Any:
        """Return the result for a request, fetching it at most once.

        Raises:
            Exception: Whatever the provider raised for this request; the
                same exception is raised to every waiter.
        """
        task = self._tasks.get(request)
        if task is None:
            self._misses += 1
            logger.debug("Fetching %s", request)
            task = asyncio.ensure_future(self._call(request))
            self._tasks[request] = task
        else:
            self._hits += 1
        # one waiter being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    async def prefetch(self, requests: set[FetchRequest]) -> None:
        """Fetch many requests concurrently.

        Failures are not raised here; they stay cached and surface when
        the builder peeks at the failed key.
        """
        if not requests:
            return
        ordered = sorted(requests, key=lambda r: (r.kind, r.coordinate, r.version or ""))
        results = await asyncio.gather(*(self.get(r) for r in ordered), return_exceptions=True)
        failed = sum(1 for result in results if isinstance(result, Exception))
        logger.debug("Prefetched %d requests (%d failed)", len(ordered), failed)

    def peek(self, request: FetchRequest) -> Any:
        """Return a completed result without awaiting.

        Returns:
            The cached result, or None if the request has not completed.

        Raises:
            Exception: The provider's exception if the fetch failed.
        """
        task = self._tasks.get(request)
        if task is None or not task.done():
            return None
        error = task.exception()
        if error is not None:
            raise error
        return task.result()

    def peek_descriptor(self, coordinate: Coordinate, version: str) -> Optional[PackageDescriptor]:
        return self.peek(FetchRequest(DESCRIPTOR, coordinate, version))

    def peek_versions(self, coordinate: Coordinate) -> Optional[list[str]]:
        return self.peek(FetchRequest(VERSIONS, coordinate))

    def peek_snapshot(self, coordinate: Coordinate, version: str) -> Optional[str]:
        return self.peek(FetchRequest(SNAPSHOT, coordinate, version))

    def info(self) -> dict[str, int]:
        """Return cache statistics.

        Returns:
            Dictionary with entries, pending, failed, hits and misses.
        """
        done = [t for t in self._tasks.values() if t.done()]
        return {
            "entries": len(self._tasks),
            "pending": len(self._tasks) - len(done),
            "failed": sum(1 for t in done if not t.cancelled() and t.exception() is not None),
            "hits": self._hits,
            "misses": self._misses,
        }

    def clear(self) -> None:
        """Forget every completed entry; in-flight fetches are kept."""
        self._tasks = {k: t for k, t in self._tasks.items() if not t.done()}

    def _call(self, request: FetchRequest) -> Awaitable[Any]:
        handlers: dict[str, Callable[[], Awaitable[Any]]] = {
            DESCRIPTOR: lambda: self.provider.fetch(request.coordinate, request.version),
            VERSIONS: lambda: self.provider.list_versions(request.coordinate),
            SNAPSHOT: lambda: self.provider.latest_snapshot(request.coordinate, request.version),
        }
        if request.kind not in handlers:
            raise ValueError(f"Unknown fetch kind '{request.kind}'")
        return handlers[request.kind]()
