"""kresolve - Variant-aware dependency resolution for Kotlin builds.

This package resolves a project's declared dependencies into one
deterministic, conflict-free graph per build variant and records the
result in a lockfile.
"""

__version__ = "0.1.0"

from kresolve.models import (
    Coordinate,
    ResolvedGraph,
    ResolvedNode,
    Scope,
    Variant,
)
from kresolve.versions import VersionSpec

__all__ = [
    "__version__",
    "Coordinate",
    "ResolvedGraph",
    "ResolvedNode",
    "Scope",
    "Variant",
    "VersionSpec",
]
