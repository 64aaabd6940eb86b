"""Metadata providers supplying parsed package descriptors.

This module provides the provider interface and its in-memory, HTTP and
waterfall implementations.
"""

from pathlib import Path
from typing import Optional

from kresolve.providers.base import MetadataProvider
from kresolve.providers.http import HttpMetadataProvider
from kresolve.providers.memory import InMemoryProvider
from kresolve.providers.waterfall import WaterfallProvider

__all__ = [
    "HttpMetadataProvider",
    "InMemoryProvider",
    "MetadataProvider",
    "WaterfallProvider",
    "build_provider",
]


def build_provider(
    repositories: dict[str, str],
    max_concurrency: int = 8,
    base_dir: Optional[Path] = None,
) -> MetadataProvider:
    """Create a provider for a manifest's ``[repositories]`` table.

    URLs starting with ``http://`` or ``https://`` become HTTP providers;
    anything else is read as a local JSON descriptor index. Declaration
    order is the waterfall priority.

    Args:
        repositories: Repository name to URL or path, in priority order.
        max_concurrency: Request bound for each HTTP repository.
        base_dir: Directory relative index paths are resolved against.

    Returns:
        A single provider, or a WaterfallProvider over several.

    Raises:
        ValueError: If no repositories are declared.
    """
    if not repositories:
        raise ValueError("No repositories declared in [repositories]")

    providers: list[MetadataProvider] = []
    for priority, (name, url) in enumerate(repositories.items()):
        if url.startswith(("http://", "https://")):
            providers.append(
                HttpMetadataProvider(
                    url, name=name, priority=priority, max_concurrency=max_concurrency
                )
            )
        else:
            providers.append(
                InMemoryProvider.from_json_file(
                    (base_dir or Path.cwd()) / url, name=name, priority=priority
                )
            )

    if len(providers) == 1:
        return providers[0]
    return WaterfallProvider(providers)
