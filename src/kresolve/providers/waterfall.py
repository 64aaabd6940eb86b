"""Waterfall provider querying several repositories in priority order."""

import asyncio
import logging
from dataclasses import replace

from kresolve.errors import DescriptorNotFound
from kresolve.models import Coordinate, PackageDescriptor
from kresolve.providers.base import MetadataProvider
from kresolve.versions import MavenVersion

logger = logging.getLogger(__name__)


class WaterfallProvider(MetadataProvider):
    """Chains repositories, first match wins.

    A repository that does not have a descriptor passes the request on to
    the next one. Any other failure propagates immediately: a broken
    repository is never silently skipped.

    Attributes:
        providers: Wrapped providers sorted by priority.
    """

    def __init__(self, providers: list[MetadataProvider]) -> None:
        self.providers = sorted(providers, key=lambda p: p.priority)

    @property
    def name(self) -> str:
        return "waterfall"

    async def fetch(self, coordinate: Coordinate, version: str) -> PackageDescriptor:
        for provider in self.providers:
            try:
                descriptor = await provider.fetch(coordinate, version)
            except DescriptorNotFound:
                logger.debug("%s:%s not in %s", coordinate, version, provider.name)
                continue
            if descriptor.source is None:
                descriptor = replace(descriptor, source=provider.name)
            return descriptor
        raise DescriptorNotFound(coordinate, version)

    async def list_versions(self, coordinate: Coordinate) -> list[str]:
        """Union of the versions every repository publishes."""
        listings = await asyncio.gather(
            *(provider.list_versions(coordinate) for provider in self.providers)
        )
        versions = {v for listing in listings for v in listing}
        return sorted(versions, key=MavenVersion.parse)

    async def latest_snapshot(self, coordinate: Coordinate, version: str) -> str:
        """Newest timestamped build across all repositories."""
        results = await asyncio.gather(
            *(p.latest_snapshot(coordinate, version) for p in self.providers),
            return_exceptions=True,
        )
        builds = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, DescriptorNotFound):
                continue
            if isinstance(result, BaseException):
                raise result
            logger.debug("%s offers %s for %s", provider.name, result, coordinate)
            builds.append(result)
        if not builds:
            raise DescriptorNotFound(coordinate, version)
        return max(builds, key=MavenVersion.parse)

    async def close(self) -> None:
        """Close every wrapped provider."""
        for provider in self.providers:
            await provider.close()
