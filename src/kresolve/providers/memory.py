"""In-memory metadata provider.

Serves descriptors registered up front. Useful for tests, for offline
resolution from a pre-built descriptor index, and as a local overlay in a
waterfall.
"""

import json
from pathlib import Path
from typing import Iterable, Optional

from kresolve.errors import DescriptorNotFound, MetadataFetchError
from kresolve.models import Coordinate, PackageDescriptor
from kresolve.providers.base import MetadataProvider
from kresolve.versions import MavenVersion


class InMemoryProvider(MetadataProvider):
    """Provider backed by a dictionary of descriptors.

    Attributes:
        descriptors: Descriptors keyed by ``(coordinate, version)``.
        snapshots: Timestamped builds keyed by ``(coordinate, snapshot label)``.
    """

    def __init__(
        self,
        descriptors: Iterable[PackageDescriptor] = (),
        snapshots: Optional[dict[tuple[Coordinate, str], str]] = None,
        name: str = "memory",
        priority: int = 100,
    ) -> None:
        self.descriptors: dict[tuple[Coordinate, str], PackageDescriptor] = {}
        self.snapshots: dict[tuple[Coordinate, str], str] = dict(snapshots or {})
        self._name = name
        self._priority = priority
        for descriptor in descriptors:
            self.add(descriptor)

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    def add(self, descriptor: PackageDescriptor) -> None:
        """Register a descriptor, replacing any with the same key."""
        self.descriptors[(descriptor.coordinate, descriptor.version)] = descriptor

    def add_snapshot(self, coordinate: Coordinate, version: str, timestamped: str) -> None:
        """Register the latest timestamped build of a snapshot."""
        self.snapshots[(coordinate, version)] = timestamped

    async def fetch(self, coordinate: Coordinate, version: str) -> PackageDescriptor:
        descriptor = self.descriptors.get((coordinate, version))
        if descriptor is None:
            raise DescriptorNotFound(coordinate, version)
        return descriptor

    async def list_versions(self, coordinate: Coordinate) -> list[str]:
        versions = [v for (c, v) in self.descriptors if c == coordinate]
        return sorted(versions, key=MavenVersion.parse)

    async def latest_snapshot(self, coordinate: Coordinate, version: str) -> str:
        timestamped = self.snapshots.get((coordinate, version))
        if timestamped is None:
            raise DescriptorNotFound(coordinate, version)
        return timestamped

    @classmethod
    def from_json_file(
        cls, path: Path, name: Optional[str] = None, priority: int = 100
    ) -> "InMemoryProvider":
        """Load a descriptor index file.

        The file holds ``{"descriptors": [...], "snapshots": [...]}`` where
        each snapshot is ``{"group", "artifact", "version", "timestamped"}``.

        Raises:
            MetadataFetchError: If the file cannot be read or parsed.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            provider = cls(name=name or path.stem, priority=priority)
            for entry in data.get("descriptors", []):
                provider.add(PackageDescriptor.from_dict(entry, source=provider.name))
            for entry in data.get("snapshots", []):
                provider.add_snapshot(
                    Coordinate(entry["group"], entry["artifact"]),
                    entry["version"],
                    entry["timestamped"],
                )
        except (OSError, ValueError, KeyError) as e:
            raise MetadataFetchError(f"Cannot load descriptor index {path}: {e}") from e
        return provider
