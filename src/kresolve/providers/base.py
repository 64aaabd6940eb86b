"""Base interface for package metadata providers.

Providers hand the resolver already-parsed package descriptors. They are
the resolver's only source of external data and may be slow or fail;
parsing POMs or module metadata happens behind this interface.
"""

from abc import ABC, abstractmethod

from kresolve.models import Coordinate, PackageDescriptor


class MetadataProvider(ABC):
    """Abstract base class for metadata providers.

    Providers are async so that descriptor fetches for all variants can be
    issued concurrently.
    """

    @abstractmethod
    async def fetch(self, coordinate: Coordinate, version: str) -> PackageDescriptor:
        """Fetch the descriptor for one coordinate and version.

        Args:
            coordinate: Library identity.
            version: Exact version (a ``-SNAPSHOT`` label for snapshots).

        Returns:
            The parsed PackageDescriptor.

        Raises:
            DescriptorNotFound: If the provider has no such descriptor.
            MetadataFetchError: If the provider failed to answer.
        """
        ...

    @abstractmethod
    async def list_versions(self, coordinate: Coordinate) -> list[str]:
        """Return every published version of a coordinate.

        Used to pick the highest version inside a requested range.

        Raises:
            MetadataFetchError: If the provider failed to answer.
        """
        ...

    @abstractmethod
    async def latest_snapshot(self, coordinate: Coordinate, version: str) -> str:
        """Return the newest timestamped build of a ``-SNAPSHOT`` version.

        Args:
            coordinate: Library identity.
            version: The snapshot label, e.g. "1.0-SNAPSHOT".

        Returns:
            A timestamped version such as "1.0-20240615.143022-5".

        Raises:
            DescriptorNotFound: If no build of the snapshot exists.
            MetadataFetchError: If the provider failed to answer.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Repository identifier recorded as the lock entry source."""
        ...

    @property
    def priority(self) -> int:
        """Return provider priority for waterfall ordering.

        Lower numbers are tried first. Default is 100.
        """
        return 100

    async def close(self) -> None:
        """Release any open resources."""

    async def __aenter__(self) -> "MetadataProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
