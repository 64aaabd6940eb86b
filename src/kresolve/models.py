"""Core data models for kresolve.

This module defines the value types shared by every stage of resolution:
coordinates, manifest declarations, package descriptors supplied by the
metadata provider, traversal edges, build variants and resolved graphs.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

from kresolve.versions import VersionSpec


@dataclass(frozen=True, order=True)
class Coordinate:
    """Version-independent identity of a library.

    Ordered by group, then artifact, which is the lockfile sort order.

    Attributes:
        group: Maven group id (e.g., "com.squareup.okhttp3").
        artifact: Maven artifact id (e.g., "okhttp").
    """

    group: str
    artifact: str

    @classmethod
    def parse(cls, text: str) -> "Coordinate":
        """Parse ``group:artifact``.

        Raises:
            ValueError: If the text is not exactly two non-empty parts.
        """
        parts = text.strip().split(":")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid coordinate '{text}', expected group:artifact")
        return cls(parts[0], parts[1])

    def __str__(self) -> str:
        return f"{self.group}:{self.artifact}"


class Scope(str, Enum):
    """Visibility class of a dependency edge."""

    COMPILE = "compile"
    RUNTIME = "runtime"
    PROVIDED = "provided"
    TEST = "test"

    @classmethod
    def parse(cls, text: Optional[str]) -> "Scope":
        if not text:
            return cls.COMPILE
        try:
            return cls(text.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown dependency scope '{text}'") from None

    @property
    def rank(self) -> int:
        return list(Scope).index(self)


def sort_scopes(scopes) -> tuple[Scope, ...]:
    """Deduplicate scopes and order them compile, runtime, provided, test."""
    return tuple(sorted(set(scopes), key=lambda s: s.rank))


@dataclass(frozen=True, order=True)
class Exclusion:
    """An exclusion of one artifact, or of a whole group when artifact is None."""

    group: str
    artifact: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Exclusion":
        """Parse ``group:artifact``, ``group:*`` or a bare ``group``."""
        group, _, artifact = text.strip().partition(":")
        if not group:
            raise ValueError(f"Invalid exclusion '{text}'")
        if artifact in ("", "*"):
            return cls(group)
        return cls(group, artifact)

    def matches(self, coordinate: Coordinate) -> bool:
        if self.group != coordinate.group:
            return False
        return self.artifact is None or self.artifact == coordinate.artifact

    def __str__(self) -> str:
        return f"{self.group}:{self.artifact or '*'}"


@dataclass(frozen=True)
class DependencyDeclaration:
    """A direct dependency as declared in the manifest.

    Catalog-backed declarations carry ``catalog`` (and ``bundle``) instead
    of a coordinate until the catalog resolver replaces them.

    Attributes:
        alias: Manifest key the declaration was written under.
        coordinate: Target library, if declared directly.
        spec: Requested version; None for catalog entries without override.
        scope: Declared scope.
        optional: Whether the dependency is optional.
        exclusions: Exclusions applied to this dependency's subtree.
        catalog: Catalog library or bundle key.
        bundle: True when ``catalog`` names a bundle.
    """

    alias: str
    coordinate: Optional[Coordinate] = None
    spec: Optional[VersionSpec] = None
    scope: Scope = Scope.COMPILE
    optional: bool = False
    exclusions: tuple[Exclusion, ...] = ()
    catalog: Optional[str] = None
    bundle: bool = False

    @property
    def merge_key(self) -> str:
        """Identity used when later variant sources override earlier ones."""
        if self.coordinate is not None:
            return str(self.coordinate)
        prefix = "bundle" if self.bundle else "catalog"
        return f"{prefix}:{self.catalog}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "alias": self.alias,
            "coordinate": str(self.coordinate) if self.coordinate else None,
            "version": self.spec.to_data() if self.spec else None,
            "scope": self.scope.value,
            "optional": self.optional,
            "exclusions": sorted(str(e) for e in self.exclusions),
            "catalog": self.catalog,
            "bundle": self.bundle,
        }


@dataclass(frozen=True)
class DescriptorDependency:
    """A dependency entry inside a package descriptor."""

    coordinate: Coordinate
    version: Optional[str] = None
    scope: Scope = Scope.COMPILE
    optional: bool = False
    exclusions: tuple[Exclusion, ...] = ()


_PROPERTY = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class PackageDescriptor:
    """Already-parsed metadata for one ``(coordinate, version)``.

    Supplied by a metadata provider and never mutated by the resolver.

    Attributes:
        coordinate: Library identity.
        version: Version this descriptor describes.
        dependencies: Declared dependency entries, in declaration order.
        properties: Properties after parent-POM inheritance.
        managed_versions: Versions imported via dependencyManagement/BOMs,
            keyed by ``group:artifact``.
        source: Identifier of the repository that served the descriptor.
    """

    coordinate: Coordinate
    version: str
    dependencies: tuple[DescriptorDependency, ...] = ()
    properties: dict[str, str] = field(default_factory=dict)
    managed_versions: dict[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    def interpolate(self, text: str) -> str:
        """Expand ``${property}`` references, leaving unknown ones intact."""
        builtins = {
            "project.groupId": self.coordinate.group,
            "project.artifactId": self.coordinate.artifact,
            "project.version": self.version,
        }

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name in self.properties:
                return self.properties[name]
            return builtins.get(name, match.group(0))

        # properties may reference each other; bound the expansion depth
        for _ in range(10):
            expanded = _PROPERTY.sub(substitute, text)
            if expanded == text:
                break
            text = expanded
        return text

    def effective_version(self, dependency: DescriptorDependency) -> Optional[str]:
        """Return the declared or managed version with properties expanded.

        Returns:
            The version text, or None if neither the dependency nor the
            managed versions provide one that fully interpolates.
        """
        version = dependency.version
        if not version:
            version = self.managed_versions.get(str(dependency.coordinate))
        if not version:
            return None
        version = self.interpolate(version)
        if _PROPERTY.search(version):
            return None
        return version

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Optional[str] = None) -> "PackageDescriptor":
        """Build a descriptor from its JSON form.

        Raises:
            ValueError: If a required field is missing or invalid.
        """
        for key in ("group", "artifact", "version"):
            if key not in data:
                raise ValueError(f"Descriptor missing required field '{key}'")

        dependencies = []
        for entry in data.get("dependencies", []):
            if "group" not in entry or "artifact" not in entry:
                raise ValueError(
                    f"Dependency of {data['group']}:{data['artifact']} "
                    "is missing 'group' or 'artifact'"
                )
            dependencies.append(
                DescriptorDependency(
                    coordinate=Coordinate(entry["group"], entry["artifact"]),
                    version=entry.get("version"),
                    scope=Scope.parse(entry.get("scope")),
                    optional=bool(entry.get("optional", False)),
                    exclusions=tuple(
                        Exclusion.parse(e) for e in entry.get("exclusions", [])
                    ),
                )
            )

        return cls(
            coordinate=Coordinate(data["group"], data["artifact"]),
            version=data["version"],
            dependencies=tuple(dependencies),
            properties=dict(data.get("properties", {})),
            managed_versions=dict(data.get("managedVersions", {})),
            source=source or data.get("source"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.coordinate.group,
            "artifact": self.coordinate.artifact,
            "version": self.version,
            "properties": dict(self.properties),
            "managedVersions": dict(self.managed_versions),
            "dependencies": [
                {
                    "group": d.coordinate.group,
                    "artifact": d.coordinate.artifact,
                    "version": d.version,
                    "scope": d.scope.value,
                    "optional": d.optional,
                    "exclusions": [str(e) for e in d.exclusions],
                }
                for d in self.dependencies
            ],
        }


@dataclass(frozen=True)
class DependencyEdge:
    """One traversed (or recorded) dependency edge.

    Attributes:
        order: Global discovery order within one graph build.
        parent: Declaring coordinate, or None for a root declaration.
        parent_version: Version of the declaring descriptor.
        target: Coordinate the edge points to.
        spec: Requested version of the target.
        scope: Effective scope after propagation.
        optional: Whether the edge was declared optional.
        exclusions: Exclusions declared on this edge.
        inherited: Exclusions accumulated from the edges above this one.
        depth: Distance from the root project (direct dependencies are 1).
        path: Coordinates from the first root dependency down to ``target``.
    """

    order: int
    parent: Optional[Coordinate]
    parent_version: Optional[str]
    target: Coordinate
    spec: VersionSpec
    scope: Scope
    optional: bool = False
    exclusions: frozenset[Exclusion] = frozenset()
    inherited: frozenset[Exclusion] = frozenset()
    depth: int = 1
    path: tuple[Coordinate, ...] = ()

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def accumulated(self) -> frozenset[Exclusion]:
        """Exclusions the target's own dependencies are filtered by."""
        return self.inherited | self.exclusions


@dataclass(frozen=True)
class Variant:
    """One flavor per dimension plus a build profile.

    Attributes:
        flavors: ``(dimension, flavor)`` pairs in dimension declaration order.
        profile: Build profile name (e.g., "dev", "release").
    """

    flavors: tuple[tuple[str, str], ...]
    profile: str

    @property
    def name(self) -> str:
        return "-".join([flavor for _, flavor in self.flavors] + [self.profile])

    @property
    def camel_case_name(self) -> str:
        parts = [flavor for _, flavor in self.flavors] + [self.profile]
        return parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])

    def flavor(self, dimension: str) -> Optional[str]:
        return dict(self.flavors).get(dimension)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flavors": [[dimension, flavor] for dimension, flavor in self.flavors],
            "profile": self.profile,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Variant":
        return cls(
            flavors=tuple((d, f) for d, f in data.get("flavors", [])),
            profile=data["profile"],
        )

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class VariantDependencySet:
    """Merged direct declarations of one variant, before transitive expansion."""

    variant: Variant
    declarations: tuple[DependencyDeclaration, ...] = ()

    def content_hash(self) -> str:
        """SHA-256 over the resolution-relevant content, in declaration order."""
        payload = []
        for declaration in self.declarations:
            entry = declaration.to_dict()
            entry.pop("alias")
            payload.append(entry)
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def __iter__(self) -> Iterator[DependencyDeclaration]:
        return iter(self.declarations)

    def __len__(self) -> int:
        return len(self.declarations)


@dataclass(frozen=True)
class ResolvedNode:
    """The single chosen version of a coordinate within one graph.

    Attributes:
        coordinate: Library identity.
        version: Chosen version (timestamped build for snapshots).
        requested: Version label that won mediation (keeps ``-SNAPSHOT``).
        scopes: Union of effective scopes of the incoming edges.
        depth: Smallest depth at which the coordinate was reached.
        dependencies: ``(coordinate, version)`` of its direct dependencies
            present in the graph, sorted.
        source: Repository that served the descriptor.
        checksum: Placeholder filled in by the artifact fetcher.
    """

    coordinate: Coordinate
    version: str
    requested: str
    scopes: tuple[Scope, ...]
    depth: int
    dependencies: tuple[tuple[Coordinate, str], ...] = ()
    source: Optional[str] = None
    checksum: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """One requested version of a coordinate seen during traversal."""

    spec: str
    depth: int
    order: int
    path: tuple[Coordinate, ...]


@dataclass(frozen=True)
class MediatedConflict:
    """A coordinate whose other candidates were mediated away.

    Attributes:
        coordinate: Library identity.
        chosen: Version that won.
        rejected: Candidates whose request does not match the chosen version.
        reason: Short explanation, e.g. "nearest wins (depth 1 vs 2)".
    """

    coordinate: Coordinate
    chosen: str
    rejected: tuple[Candidate, ...]
    reason: str

    def __str__(self) -> str:
        requested = ", ".join(c.spec for c in self.rejected)
        return f"{self.coordinate}: requested {requested} but resolved {self.chosen} ({self.reason})"


@dataclass(frozen=True)
class SkippedDependency:
    """An optional dependency left out because its metadata failed."""

    coordinate: Coordinate
    version: str
    reason: str
    path: tuple[Coordinate, ...] = ()


@dataclass
class ResolvedGraph:
    """The conflict-free dependency graph of one variant.

    Equality covers the variant, root order and chosen nodes; diagnostics
    (conflicts, traversal edges, skipped dependencies) are not persisted in
    the lockfile and are excluded from comparison.
    """

    variant: Variant
    roots: tuple[Coordinate, ...]
    nodes: dict[Coordinate, ResolvedNode]
    conflicts: list[MediatedConflict] = field(default_factory=list, compare=False)
    edges: list[DependencyEdge] = field(default_factory=list, compare=False)
    skipped: list[SkippedDependency] = field(default_factory=list, compare=False)
    declarations_hash: Optional[str] = field(default=None, compare=False)

    def __contains__(self, coordinate: object) -> bool:
        return coordinate in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, coordinate: Coordinate) -> Optional[ResolvedNode]:
        return self.nodes.get(coordinate)

    def version_of(self, coordinate: Coordinate) -> Optional[str]:
        node = self.nodes.get(coordinate)
        return node.version if node else None

    def sorted_nodes(self) -> list[ResolvedNode]:
        return [self.nodes[c] for c in sorted(self.nodes)]

    def dependents(self, coordinate: Coordinate) -> list[Coordinate]:
        """Coordinates in the graph that directly depend on ``coordinate``."""
        return sorted(
            node.coordinate
            for node in self.nodes.values()
            if any(dep == coordinate for dep, _ in node.dependencies)
        )
