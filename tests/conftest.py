"""Pytest configuration and fixtures."""

from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

from kresolve.cache import DescriptorCache
from kresolve.manifest import Manifest
from kresolve.models import Coordinate, DescriptorDependency, PackageDescriptor
from kresolve.providers import InMemoryProvider
from kresolve.resolver import DependencyResolver

FIXTURES = Path(__file__).parent / "fixtures"


def _dependency(entry: Union[str, DescriptorDependency]) -> DescriptorDependency:
    if isinstance(entry, DescriptorDependency):
        return entry
    group, artifact, *rest = entry.split(":")
    return DescriptorDependency(Coordinate(group, artifact), rest[0] if rest else None)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the directory holding test fixture files."""
    return FIXTURES


@pytest.fixture
def make_descriptor() -> Callable[..., PackageDescriptor]:
    """Return a factory building descriptors from ``group:artifact:version`` text.

    Dependencies are ``group:artifact[:version]`` strings or
    DescriptorDependency instances.
    """

    def factory(
        gav: str,
        *dependencies: Union[str, DescriptorDependency],
        properties: Optional[dict[str, str]] = None,
        managed: Optional[dict[str, str]] = None,
    ) -> PackageDescriptor:
        group, artifact, version = gav.split(":")
        return PackageDescriptor(
            coordinate=Coordinate(group, artifact),
            version=version,
            dependencies=tuple(_dependency(d) for d in dependencies),
            properties=properties or {},
            managed_versions=managed or {},
        )

    return factory


@pytest.fixture
def make_manifest() -> Callable[..., Manifest]:
    """Return a factory building a manifest from a ``[dependencies]`` table.

    Profiles default to a single ``dev`` profile to keep graphs small.
    """

    def factory(dependencies: dict[str, Any], **tables: Any) -> Manifest:
        manifest = Manifest.from_dict({"dependencies": dependencies, **tables})
        if "profile" not in tables:
            manifest.profiles = ["dev"]
        return manifest

    return factory


@pytest.fixture
def resolver_for() -> Callable[..., DependencyResolver]:
    """Return a factory creating a resolver over in-memory descriptors."""

    def factory(*descriptors: PackageDescriptor) -> DependencyResolver:
        provider = InMemoryProvider(descriptors, name="test-repo")
        return DependencyResolver(DescriptorCache(provider))

    return factory
