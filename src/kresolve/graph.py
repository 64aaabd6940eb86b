"""Level-by-level expansion of declared dependencies into a dependency graph.

The builder is a pure, synchronous transformation over metadata that has
already been fetched. Whenever it needs something the cache does not hold
yet it stops at the current level and reports the missing fetches; the
resolver fetches them and runs the builder again from scratch. Because it
stops at level boundaries, every decision in a partial build is final.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from kresolve.cache import DESCRIPTOR, VERSIONS, FetchRequest
from kresolve.errors import CyclicDependency, DescriptorFetchError, MissingVersion
from kresolve.mediation import ConflictMediator
from kresolve.models import (
    Coordinate,
    DependencyEdge,
    DescriptorDependency,
    PackageDescriptor,
    Scope,
    SkippedDependency,
    VariantDependencySet,
)
from kresolve.versions import VersionSpec

logger = logging.getLogger(__name__)


class MetadataView(Protocol):
    """Read-only access to fetched metadata (see DescriptorCache)."""

    def peek_descriptor(self, coordinate: Coordinate, version: str) -> Optional[PackageDescriptor]:
        ...

    def peek_versions(self, coordinate: Coordinate) -> Optional[list[str]]:
        ...


def propagate_scope(parent: Scope, declared: Scope, depth: int) -> Scope:
    """Effective scope of an edge declared below the root.

    Args:
        parent: Effective scope of the edge that reached the declaring node.
        declared: Scope written on the dependency (compile or runtime).
        depth: Depth of the new edge.

    Returns:
        ``test``/``provided`` parents keep their scope; ``compile`` stays
        ``compile`` one level below a direct dependency and becomes
        ``runtime`` beyond that; everything else is ``runtime``.
    """
    if parent in (Scope.TEST, Scope.PROVIDED):
        return parent
    if parent == Scope.COMPILE and declared == Scope.COMPILE and depth <= 2:
        return Scope.COMPILE
    return Scope.RUNTIME


@dataclass
class BuildResult:
    """Outcome of one builder pass.

    Attributes:
        roots: Root coordinates in declaration order.
        edges: Every recorded edge in discovery order, including optional
            edges that were not traversed.
        candidates: Traversed edges per target coordinate.
        selected: Version label chosen per coordinate.
        descriptors: Descriptor of each selected coordinate.
        links: Traversed child coordinates of each expanded coordinate.
        pending: Fetches needed before the build can continue.
        skipped: Optional dependencies left out after a fetch failure.
        pruned: Number of edges removed by exclusions.
    """

    roots: tuple[Coordinate, ...] = ()
    edges: list[DependencyEdge] = field(default_factory=list)
    candidates: dict[Coordinate, list[DependencyEdge]] = field(default_factory=dict)
    selected: dict[Coordinate, str] = field(default_factory=dict)
    descriptors: dict[Coordinate, PackageDescriptor] = field(default_factory=dict)
    links: dict[Coordinate, list[Coordinate]] = field(default_factory=dict)
    pending: set[FetchRequest] = field(default_factory=set)
    skipped: list[SkippedDependency] = field(default_factory=list)
    pruned: int = 0

    @property
    def complete(self) -> bool:
        return not self.pending

    def winner(self, coordinate: Coordinate) -> DependencyEdge:
        edges = self.candidates[coordinate]
        return min(edges, key=lambda edge: (edge.depth, edge.order))


class GraphBuilder:
    """Expands a VariantDependencySet into traversed dependency edges.

    Attributes:
        metadata: Read-only view of fetched metadata.
        mediator: Chooses the version of each newly discovered coordinate.
    """

    def __init__(self, metadata: MetadataView, mediator: Optional[ConflictMediator] = None) -> None:
        self.metadata = metadata
        self.mediator = mediator or ConflictMediator()

    def build(self, dependency_set: VariantDependencySet) -> BuildResult:
        """Expand the declarations as far as the fetched metadata allows.

        Only the mediated winner of each coordinate is expanded; deeper
        occurrences are recorded as candidates. Each distinct scope and
        exclusion context that reaches a winner at its depth is expanded,
        so exclusions stay per-path.

        Returns:
            The build result; ``pending`` is non-empty when more metadata
            must be fetched first.

        Raises:
            CyclicDependency: If a traversal revisits a coordinate on its path.
            VersionConflictUnresolvable: If ranges cannot be reconciled.
            DescriptorFetchError: If required metadata failed to fetch.
            MissingVersion: If a descriptor dependency has no version.
        """
        order = itertools.count()
        result = BuildResult(roots=tuple(d.coordinate for d in dependency_set))
        declared = set(result.roots)
        skipped: set[Coordinate] = set()

        level: list[DependencyEdge] = []
        for declaration in dependency_set:
            edge = DependencyEdge(
                order=next(order),
                parent=None,
                parent_version=None,
                target=declaration.coordinate,
                spec=declaration.spec,
                scope=declaration.scope,
                optional=declaration.optional,
                exclusions=frozenset(declaration.exclusions),
                depth=1,
                path=(declaration.coordinate,),
            )
            result.edges.append(edge)
            level.append(edge)

        while level:
            groups: dict[Coordinate, list[DependencyEdge]] = {}
            for edge in level:
                groups.setdefault(edge.target, []).append(edge)
                result.candidates.setdefault(edge.target, []).append(edge)

            fresh = {
                coordinate: edges
                for coordinate, edges in groups.items()
                if coordinate not in result.selected
                and not (coordinate in skipped and all(e.optional for e in edges))
            }

            choices = self._select(fresh, result, skipped)
            if result.pending:
                return result
            descriptors = self._describe(choices, fresh, result, skipped)
            if result.pending:
                return result

            next_level: list[DependencyEdge] = []
            for coordinate, descriptor in descriptors.items():
                result.selected[coordinate] = choices[coordinate]
                result.descriptors[coordinate] = descriptor
                result.links.setdefault(coordinate, [])

            for coordinate, descriptor in descriptors.items():
                contexts = set()
                for edge in fresh[coordinate]:
                    context = (edge.scope, edge.accumulated)
                    if context in contexts:
                        continue
                    contexts.add(context)
                    for dependency in descriptor.dependencies:
                        child = self._child(edge, descriptor, dependency, declared, order, result)
                        if child is not None:
                            next_level.append(child)
            level = next_level

        self._check_acyclic(result)
        logger.debug(
            "%s: %d coordinates, %d edges, %d pruned by exclusions",
            dependency_set.variant.name,
            len(result.selected),
            len(result.edges),
            result.pruned,
        )
        return result

    def _select(
        self,
        fresh: dict[Coordinate, list[DependencyEdge]],
        result: BuildResult,
        skipped: set[Coordinate],
    ) -> dict[Coordinate, str]:
        choices: dict[Coordinate, str] = {}
        for coordinate, edges in fresh.items():
            listing = None
            if self.mediator.requires_listing(coordinate, edges):
                try:
                    listing = self.metadata.peek_versions(coordinate)
                except Exception as e:
                    self._fetch_failed(coordinate, "*", edges, e, result, skipped)
                    continue
                if listing is None:
                    result.pending.add(FetchRequest(VERSIONS, coordinate))
                    continue
            choices[coordinate] = self.mediator.select(coordinate, edges, listing)
        return choices

    def _describe(
        self,
        choices: dict[Coordinate, str],
        fresh: dict[Coordinate, list[DependencyEdge]],
        result: BuildResult,
        skipped: set[Coordinate],
    ) -> dict[Coordinate, PackageDescriptor]:
        descriptors: dict[Coordinate, PackageDescriptor] = {}
        for coordinate, version in choices.items():
            try:
                descriptor = self.metadata.peek_descriptor(coordinate, version)
            except Exception as e:
                self._fetch_failed(coordinate, version, fresh[coordinate], e, result, skipped)
                continue
            if descriptor is None:
                result.pending.add(FetchRequest(DESCRIPTOR, coordinate, version))
                continue
            descriptors[coordinate] = descriptor
        return descriptors

    def _fetch_failed(
        self,
        coordinate: Coordinate,
        version: str,
        edges: list[DependencyEdge],
        error: Exception,
        result: BuildResult,
        skipped: set[Coordinate],
    ) -> None:
        """Skip an optional dependency, otherwise raise with its path."""
        winner = min(edges, key=lambda edge: (edge.depth, edge.order))
        if all(edge.optional for edge in edges):
            logger.warning(
                "Skipping optional dependency %s:%s (%s): %s",
                coordinate,
                version,
                " -> ".join(str(c) for c in winner.path),
                error,
            )
            result.skipped.append(SkippedDependency(coordinate, version, str(error), winner.path))
            skipped.add(coordinate)
            return
        raise DescriptorFetchError(coordinate, version, winner.path, str(error)) from error

    def _child(
        self,
        edge: DependencyEdge,
        descriptor: PackageDescriptor,
        dependency: DescriptorDependency,
        declared: set[Coordinate],
        order: Iterator[int],
        result: BuildResult,
    ) -> Optional[DependencyEdge]:
        """Turn one descriptor dependency into a child edge.

        Returns:
            The edge to traverse next, or None if it is not traversed.
        """
        target = dependency.coordinate
        if dependency.scope in (Scope.PROVIDED, Scope.TEST):
            return None

        inherited = edge.accumulated
        if any(exclusion.matches(target) for exclusion in inherited):
            logger.debug("Pruned %s below %s by exclusion", target, edge.target)
            result.pruned += 1
            return None

        path = edge.path + (target,)
        version = descriptor.effective_version(dependency)
        if version is None:
            raise MissingVersion(target, path)
        try:
            spec = VersionSpec.parse(version)
        except ValueError as e:
            raise DescriptorFetchError(target, version, path, f"invalid version: {e}") from e

        depth = edge.depth + 1
        child = DependencyEdge(
            order=next(order),
            parent=edge.target,
            parent_version=descriptor.version,
            target=target,
            spec=spec,
            scope=propagate_scope(edge.scope, dependency.scope, depth),
            optional=dependency.optional,
            exclusions=frozenset(dependency.exclusions),
            inherited=inherited,
            depth=depth,
            path=path,
        )
        result.edges.append(child)

        if dependency.optional and target not in declared:
            return None
        if target in edge.path:
            raise CyclicDependency(path)

        links = result.links.setdefault(edge.target, [])
        if target not in links:
            links.append(target)
        return child

    def _check_acyclic(self, result: BuildResult) -> None:
        """Reject cycles closed through already-expanded coordinates.

        The per-path check misses cycles whose back edge points at a node
        reached earlier through a different branch; a depth-first walk over
        the expanded links finds those.
        """
        finished: set[Coordinate] = set()
        for root in result.roots:
            if root in finished or root not in result.links:
                continue
            stack: list[tuple[Coordinate, int]] = [(root, 0)]
            on_path: list[Coordinate] = [root]
            while stack:
                node, index = stack[-1]
                children = result.links.get(node, [])
                if index >= len(children):
                    stack.pop()
                    on_path.pop()
                    finished.add(node)
                    continue
                stack[-1] = (node, index + 1)
                child = children[index]
                if child in on_path:
                    start = on_path.index(child)
                    raise CyclicDependency(on_path[start:] + [child])
                if child in finished or child not in result.links:
                    continue
                stack.append((child, 0))
                on_path.append(child)
