"""Deterministic lockfile codec.

The lockfile is a JSON document with one section per variant. Each section
stores the hash of the variant's post-catalog declarations (for staleness
checks), the root coordinates in declaration order, and one entry per
resolved coordinate sorted by group then artifact. Each entry lists its own
direct dependencies so drift can be spotted without re-resolving.

Output is written with sorted keys and a trailing newline, so resolving the
same inputs twice produces byte-identical files.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from kresolve.errors import LockfileError
from kresolve.models import Coordinate, ResolvedGraph, ResolvedNode, Scope, Variant

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "kresolve.lock"
LOCKFILE_VERSION = 1


@dataclass(frozen=True, order=True)
class LockedReference:
    """A direct dependency of a lock entry."""

    group: str
    artifact: str
    version: str

    def to_dict(self) -> dict[str, str]:
        return {"group": self.group, "artifact": self.artifact, "version": self.version}


@dataclass
class LockEntry:
    """Serialized form of one ResolvedNode.

    Attributes:
        checksum: Always None here; the artifact fetcher fills it in.
    """

    group: str
    artifact: str
    version: str
    requested: str
    scopes: list[str]
    depth: int
    checksum: Optional[str] = None
    source: Optional[str] = None
    dependencies: list[LockedReference] = field(default_factory=list)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.group, self.artifact)

    @classmethod
    def from_node(cls, node: ResolvedNode) -> "LockEntry":
        return cls(
            group=node.coordinate.group,
            artifact=node.coordinate.artifact,
            version=node.version,
            requested=node.requested,
            scopes=[scope.value for scope in node.scopes],
            depth=node.depth,
            checksum=node.checksum,
            source=node.source,
            dependencies=sorted(
                LockedReference(c.group, c.artifact, v) for c, v in node.dependencies
            ),
        )

    def to_node(self) -> ResolvedNode:
        return ResolvedNode(
            coordinate=self.coordinate,
            version=self.version,
            requested=self.requested,
            scopes=tuple(Scope(s) for s in self.scopes),
            depth=self.depth,
            dependencies=tuple(
                (Coordinate(d.group, d.artifact), d.version) for d in self.dependencies
            ),
            source=self.source,
            checksum=self.checksum,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "artifact": self.artifact,
            "version": self.version,
            "requested": self.requested,
            "scopes": list(self.scopes),
            "depth": self.depth,
            "checksum": self.checksum,
            "source": self.source,
            "dependencies": [d.to_dict() for d in self.dependencies],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockEntry":
        return cls(
            group=data["group"],
            artifact=data["artifact"],
            version=data["version"],
            requested=data.get("requested", data["version"]),
            scopes=list(data.get("scopes", [Scope.COMPILE.value])),
            depth=int(data.get("depth", 1)),
            checksum=data.get("checksum"),
            source=data.get("source"),
            dependencies=[
                LockedReference(d["group"], d["artifact"], d["version"])
                for d in data.get("dependencies", [])
            ],
        )


@dataclass
class VariantLock:
    """Locked graph of one variant."""

    variant: Variant
    declarations_hash: str
    roots: list[Coordinate] = field(default_factory=list)
    entries: list[LockEntry] = field(default_factory=list)

    @classmethod
    def from_graph(cls, graph: ResolvedGraph) -> "VariantLock":
        if graph.declarations_hash is None:
            raise ValueError(f"Graph for {graph.variant.name} has no declarations hash")
        return cls(
            variant=graph.variant,
            declarations_hash=graph.declarations_hash,
            roots=list(graph.roots),
            entries=[LockEntry.from_node(node) for node in graph.sorted_nodes()],
        )

    def to_graph(self) -> ResolvedGraph:
        """Rebuild the ResolvedGraph; diagnostics are not stored and come back empty."""
        return ResolvedGraph(
            variant=self.variant,
            roots=tuple(self.roots),
            nodes={entry.coordinate: entry.to_node() for entry in self.entries},
            declarations_hash=self.declarations_hash,
        )

    def entry(self, coordinate: Coordinate) -> Optional[LockEntry]:
        for candidate in self.entries:
            if candidate.coordinate == coordinate:
                return candidate
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant.to_dict(),
            "declarationsHash": self.declarations_hash,
            "roots": [str(c) for c in self.roots],
            "packages": [
                e.to_dict() for e in sorted(self.entries, key=lambda e: e.coordinate)
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariantLock":
        return cls(
            variant=Variant.from_dict(data["variant"]),
            declarations_hash=data["declarationsHash"],
            roots=[Coordinate.parse(c) for c in data.get("roots", [])],
            entries=[LockEntry.from_dict(e) for e in data.get("packages", [])],
        )


@dataclass
class Lockfile:
    """All locked variants of a project, keyed by variant name."""

    variants: dict[str, VariantLock] = field(default_factory=dict)
    version: int = LOCKFILE_VERSION

    @classmethod
    def from_graphs(cls, graphs: Iterable[ResolvedGraph]) -> "Lockfile":
        lockfile = cls()
        for graph in graphs:
            lockfile.add_graph(graph)
        return lockfile

    def add_graph(self, graph: ResolvedGraph) -> None:
        """Add or replace the section of the graph's variant."""
        self.variants[graph.variant.name] = VariantLock.from_graph(graph)

    def to_graph(self, variant: Variant) -> ResolvedGraph:
        """Return the locked graph of a variant.

        Raises:
            KeyError: If the variant is not locked.
        """
        return self.variants[variant.name].to_graph()

    def is_fresh(self, variant_name: str, declarations_hash: str) -> bool:
        locked = self.variants.get(variant_name)
        return locked is not None and locked.declarations_hash == declarations_hash

    def stored_hash(self, variant_name: str) -> Optional[str]:
        locked = self.variants.get(variant_name)
        return locked.declarations_hash if locked else None

    def dumps(self) -> str:
        data = {
            "version": self.version,
            "variants": {name: lock.to_dict() for name, lock in self.variants.items()},
        }
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    @classmethod
    def loads(cls, text: str) -> "Lockfile":
        """Parse lockfile text.

        Raises:
            LockfileError: If the text is not a supported lockfile.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LockfileError(f"Invalid lockfile JSON: {e}") from e

        if not isinstance(data, dict):
            raise LockfileError(f"Lockfile must be a JSON object, got {type(data).__name__}")

        version = data.get("version")
        if version != LOCKFILE_VERSION:
            raise LockfileError(f"Unsupported lockfile version {version!r}")

        try:
            variants = {
                name: VariantLock.from_dict(section)
                for name, section in data.get("variants", {}).items()
            }
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise LockfileError(f"Malformed lockfile: {e}") from e
        return cls(variants=variants, version=version)

    @classmethod
    def read(cls, path: Path) -> "Lockfile":
        """Read a lockfile from disk.

        Raises:
            FileNotFoundError: If the file does not exist.
            LockfileError: If the file is not a supported lockfile.
        """
        if not path.exists():
            raise FileNotFoundError(f"Lockfile not found: {path}")
        return cls.loads(path.read_text(encoding="utf-8"))

    def write(self, path: Path) -> None:
        path.write_text(self.dumps(), encoding="utf-8")
        logger.info("Wrote %d variant(s) to %s", len(self.variants), path)
