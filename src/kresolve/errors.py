"""Exception hierarchy for kresolve.

User-facing resolution failures derive from ResolutionError and always
carry the dependency path(s) that produced them. Broken internal
invariants raise InternalResolutionError instead, so callers can tell a
bad manifest apart from a defect in the engine.
"""

from typing import Optional, Sequence

from kresolve.models import Coordinate

DependencyPath = tuple[Coordinate, ...]


def format_path(path: Sequence[Coordinate]) -> str:
    """Render a dependency path as ``a:b -> c:d -> ...``."""
    return " -> ".join(str(c) for c in path) if path else "<root>"


class KResolveError(Exception):
    """Base class for all kresolve errors."""


class ManifestError(KResolveError):
    """The manifest is malformed or references undeclared names."""


class ResolutionError(KResolveError):
    """A user-facing failure that aborts resolution of one variant.

    Attributes:
        paths: Dependency paths from the root that led to the failure.
    """

    def __init__(self, message: str, paths: Sequence[DependencyPath] = ()) -> None:
        super().__init__(message)
        self.paths: list[DependencyPath] = [tuple(p) for p in paths]


class CyclicDependency(ResolutionError):
    """A coordinate was revisited while still on the active traversal path."""

    def __init__(self, path: Sequence[Coordinate]) -> None:
        self.cycle: DependencyPath = tuple(path)
        super().__init__(
            f"Cyclic dependency detected: {format_path(self.cycle)}",
            paths=[self.cycle],
        )


class VersionConflictUnresolvable(ResolutionError):
    """Competing version ranges for one coordinate have no common version.

    Attributes:
        coordinate: The coordinate whose candidates conflict.
        candidates: ``(raw spec, path)`` for every contributing declaration.
    """

    def __init__(
        self, coordinate: Coordinate, candidates: Sequence[tuple[str, DependencyPath]]
    ) -> None:
        self.coordinate = coordinate
        self.candidates = [(spec, tuple(path)) for spec, path in candidates]
        details = "; ".join(
            f"{spec} via {format_path(path)}" for spec, path in self.candidates
        )
        super().__init__(
            f"No version of {coordinate} satisfies all requirements: {details}",
            paths=[path for _, path in self.candidates],
        )


class VariantDependencyConflict(ResolutionError):
    """Two flavors from different dimensions disagree on a dependency version.

    Attributes:
        key: Coordinate (or catalog key) both flavors declare.
        first: ``(dimension, flavor, spec)`` of the earlier declaration.
        second: ``(dimension, flavor, spec)`` of the later declaration.
    """

    def __init__(
        self,
        key: str,
        first: tuple[str, str, str],
        second: tuple[str, str, str],
    ) -> None:
        self.key = key
        self.first = first
        self.second = second
        super().__init__(
            f"Flavor '{first[1]}' ({first[0]}) requires {key} {first[2]} but "
            f"flavor '{second[1]}' ({second[0]}) requires {second[2]}"
        )

    @property
    def flavors(self) -> tuple[str, str]:
        """Names of the two conflicting flavors, in merge order."""
        return (self.first[1], self.second[1])


class CatalogRefNotFound(ResolutionError):
    """A ``catalog`` or ``version.ref`` indirection names a missing key."""

    def __init__(self, key: str, alias: str, table: str = "libraries") -> None:
        self.key = key
        self.alias = alias
        self.table = table
        super().__init__(
            f"Dependency '{alias}' references unknown catalog {table} key '{key}'"
        )


class LockOutOfDate(ResolutionError):
    """Declared dependencies changed since the lockfile was written.

    Attributes:
        variant: Name of the stale variant.
        expected: Hash stored in the lockfile, or None if the variant is absent.
        actual: Hash of the current declarations.
    """

    def __init__(self, variant: str, expected: Optional[str], actual: str) -> None:
        self.variant = variant
        self.expected = expected
        self.actual = actual
        if expected is None:
            reason = "variant is missing from the lockfile"
        else:
            reason = "declared dependencies changed"
        super().__init__(
            f"Lockfile is out of date for variant '{variant}' ({reason}); "
            "re-run with --update to regenerate it"
        )


class DescriptorFetchError(ResolutionError):
    """The metadata provider failed for a coordinate the graph requires.

    The provider's exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        coordinate: Coordinate,
        version: str,
        path: Sequence[Coordinate],
        reason: str,
    ) -> None:
        self.coordinate = coordinate
        self.version = version
        super().__init__(
            f"Failed to fetch {coordinate}:{version} "
            f"(required by {format_path(path)}): {reason}",
            paths=[tuple(path)],
        )


class NoMatchingVersion(ResolutionError):
    """No published version falls inside the requested range."""

    def __init__(
        self, coordinate: Coordinate, requested: str, paths: Sequence[DependencyPath]
    ) -> None:
        self.coordinate = coordinate
        self.requested = requested
        super().__init__(
            f"No published version of {coordinate} matches {requested}",
            paths=paths,
        )


class MissingVersion(ResolutionError):
    """A descriptor dependency has no version and no managed version."""

    def __init__(self, coordinate: Coordinate, path: Sequence[Coordinate]) -> None:
        self.coordinate = coordinate
        super().__init__(
            f"No version declared or managed for {coordinate} "
            f"(required by {format_path(path)})",
            paths=[tuple(path)],
        )


class InternalResolutionError(KResolveError):
    """An engine invariant was violated; this is a defect, not a user error."""


class DescriptorNotFound(KResolveError):
    """Raised by a metadata provider when it has no such descriptor."""

    def __init__(self, coordinate: Coordinate, version: Optional[str] = None) -> None:
        self.coordinate = coordinate
        self.version = version
        target = f"{coordinate}:{version}" if version else str(coordinate)
        super().__init__(f"{target} not found")


class MetadataFetchError(KResolveError):
    """Raised by a metadata provider for transport or format failures."""


class LockfileError(KResolveError):
    """The lockfile cannot be read or has an unsupported format."""
