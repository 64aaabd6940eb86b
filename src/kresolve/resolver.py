"""Resolution orchestration: one state machine per variant, run concurrently.

Each variant moves through::

    Init -> ExpandingVariants -> ResolvingCatalog -> BuildingGraph
         -> MediatingConflicts -> Validating -> Done

and to ``Failed`` from any state on error. The only shared state between
variants is the DescriptorCache; a failure aborts its own variant and the
fetches it completed stay cached for the others.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Union

from kresolve.cache import SNAPSHOT, DescriptorCache, FetchRequest
from kresolve.catalog import CatalogResolver
from kresolve.errors import InternalResolutionError, KResolveError, LockOutOfDate
from kresolve.graph import BuildResult, GraphBuilder
from kresolve.lockfile import Lockfile
from kresolve.manifest import Manifest
from kresolve.mediation import ConflictMediator, MediationResult
from kresolve.models import (
    Coordinate,
    MediatedConflict,
    ResolvedGraph,
    ResolvedNode,
    Variant,
    VariantDependencySet,
    sort_scopes,
)
from kresolve.variants import VariantExpander
from kresolve.versions import MavenVersion

logger = logging.getLogger(__name__)

ResolutionOutcome = Union[ResolvedGraph, KResolveError]


class ResolutionState(str, Enum):
    INIT = "Init"
    EXPANDING_VARIANTS = "ExpandingVariants"
    RESOLVING_CATALOG = "ResolvingCatalog"
    BUILDING_GRAPH = "BuildingGraph"
    MEDIATING_CONFLICTS = "MediatingConflicts"
    VALIDATING = "Validating"
    DONE = "Done"
    FAILED = "Failed"


TRANSITIONS: dict[ResolutionState, tuple[ResolutionState, ...]] = {
    ResolutionState.INIT: (ResolutionState.EXPANDING_VARIANTS,),
    ResolutionState.EXPANDING_VARIANTS: (ResolutionState.RESOLVING_CATALOG,),
    ResolutionState.RESOLVING_CATALOG: (ResolutionState.BUILDING_GRAPH,),
    ResolutionState.BUILDING_GRAPH: (ResolutionState.MEDIATING_CONFLICTS,),
    ResolutionState.MEDIATING_CONFLICTS: (ResolutionState.VALIDATING,),
    ResolutionState.VALIDATING: (ResolutionState.DONE,),
    ResolutionState.DONE: (),
    ResolutionState.FAILED: (),
}


class VariantRun:
    """Resolution of a single variant.

    Attributes:
        variant: The variant being resolved.
        state: Current state.
        history: Every state entered, in order.
    """

    def __init__(
        self,
        variant: Variant,
        expander: VariantExpander,
        catalog: CatalogResolver,
        cache: DescriptorCache,
        mediator: ConflictMediator,
        lock: Optional[Lockfile] = None,
        update: bool = False,
    ) -> None:
        self.variant = variant
        self.expander = expander
        self.catalog = catalog
        self.cache = cache
        self.mediator = mediator
        self.lock = lock
        self.update = update
        self.state = ResolutionState.INIT
        self.history: list[ResolutionState] = [ResolutionState.INIT]

    def _advance(self, state: ResolutionState) -> None:
        if state != ResolutionState.FAILED and state not in TRANSITIONS[self.state]:
            raise InternalResolutionError(
                f"{self.variant.name}: illegal transition {self.state.value} -> {state.value}"
            )
        logger.debug("%s: %s -> %s", self.variant.name, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    async def run(self) -> ResolvedGraph:
        """Resolve the variant.

        Raises:
            KResolveError: Any resolution failure; the run ends in ``Failed``.
        """
        try:
            self._advance(ResolutionState.EXPANDING_VARIANTS)
            merged = self.expander.merge(self.variant)

            self._advance(ResolutionState.RESOLVING_CATALOG)
            dependency_set = self.catalog.resolve(merged)
            declarations_hash = dependency_set.content_hash()
            self._check_lock(declarations_hash)

            self._advance(ResolutionState.BUILDING_GRAPH)
            build = await self._build(dependency_set)

            self._advance(ResolutionState.MEDIATING_CONFLICTS)
            mediation = await self._mediate(build)

            self._advance(ResolutionState.VALIDATING)
            graph = self._assemble(build, mediation, declarations_hash)
            self._validate(build, mediation, graph)

            self._advance(ResolutionState.DONE)
        except Exception:
            self._advance(ResolutionState.FAILED)
            raise
        return graph

    def _check_lock(self, declarations_hash: str) -> None:
        if self.lock is None:
            return
        name = self.variant.name
        if self.lock.is_fresh(name, declarations_hash):
            return
        if self.update:
            logger.info("%s: declarations changed, relocking", name)
            return
        raise LockOutOfDate(name, self.lock.stored_hash(name), declarations_hash)

    async def _build(self, dependency_set: VariantDependencySet) -> BuildResult:
        """Run the builder, fetching what it reports missing, until it completes."""
        builder = GraphBuilder(self.cache, self.mediator)
        fetched: set[FetchRequest] = set()
        passes = 0
        while True:
            passes += 1
            result = builder.build(dependency_set)
            if result.complete:
                logger.debug("%s: graph built in %d pass(es)", self.variant.name, passes)
                return result
            stalled = result.pending & fetched
            if stalled:
                raise InternalResolutionError(
                    f"{self.variant.name}: fetched requests still pending: "
                    + ", ".join(sorted(str(r) for r in stalled))
                )
            logger.debug(
                "%s: pass %d needs %d fetch(es)", self.variant.name, passes, len(result.pending)
            )
            await self.cache.prefetch(result.pending)
            fetched |= result.pending

    async def _mediate(self, build: BuildResult) -> MediationResult:
        snapshots = {
            FetchRequest(SNAPSHOT, coordinate, label)
            for coordinate, label in build.selected.items()
            if MavenVersion.parse(label).is_snapshot
        }
        await self.cache.prefetch(snapshots)
        return self.mediator.mediate(build.selected, build.candidates, self.cache.peek_snapshot)

    def _assemble(
        self, build: BuildResult, mediation: MediationResult, declarations_hash: str
    ) -> ResolvedGraph:
        skipped = {s.coordinate for s in build.skipped}
        nodes: dict[Coordinate, ResolvedNode] = {}
        for coordinate in build.selected:
            edges = build.candidates[coordinate]
            children = [c for c in build.links.get(coordinate, []) if c not in skipped]
            nodes[coordinate] = ResolvedNode(
                coordinate=coordinate,
                version=mediation.versions[coordinate],
                requested=mediation.requested[coordinate],
                scopes=sort_scopes(edge.scope for edge in edges),
                depth=build.winner(coordinate).depth,
                dependencies=tuple(
                    sorted((child, mediation.versions.get(child, "")) for child in children)
                ),
                source=build.descriptors[coordinate].source,
            )

        return ResolvedGraph(
            variant=self.variant,
            roots=tuple(c for c in build.roots if c in nodes),
            nodes=nodes,
            conflicts=mediation.conflicts,
            edges=build.edges,
            skipped=build.skipped,
            declarations_hash=declarations_hash,
        )

    def _validate(
        self, build: BuildResult, mediation: MediationResult, graph: ResolvedGraph
    ) -> None:
        """Re-check the graph invariants.

        Raises:
            InternalResolutionError: On the first violated invariant.
        """
        name = self.variant.name
        if set(graph.nodes) != set(build.selected) or set(graph.nodes) != set(mediation.versions):
            raise InternalResolutionError(f"{name}: node set differs from mediated selection")

        for node in graph.nodes.values():
            if node.coordinate not in build.descriptors:
                raise InternalResolutionError(
                    f"{name}: {node.coordinate}:{node.requested} was never expanded"
                )
            for dependency, version in node.dependencies:
                target = graph.get(dependency)
                if target is None or target.version != version:
                    raise InternalResolutionError(
                        f"{name}: {node.coordinate} has dangling dependency {dependency}"
                    )

        for coordinate, edges in build.candidates.items():
            for edge in edges:
                if any(exclusion.matches(coordinate) for exclusion in edge.inherited):
                    raise InternalResolutionError(
                        f"{name}: {coordinate} entered through an exclusion via "
                        + " -> ".join(str(c) for c in edge.path)
                    )

        missing_roots = [c for c in graph.roots if c not in graph.nodes]
        if missing_roots:
            raise InternalResolutionError(f"{name}: roots {missing_roots} are not in the graph")


class DependencyResolver:
    """Resolves every variant of a manifest against a shared DescriptorCache.

    Example:
        >>> cache = DescriptorCache(InMemoryProvider(descriptors))
        >>> results = await DependencyResolver(cache).resolve_all(manifest)

    Attributes:
        cache: Descriptor cache shared by all variants of a run.
        mediator: Version mediation strategy.
    """

    def __init__(self, cache: DescriptorCache, mediator: Optional[ConflictMediator] = None) -> None:
        self.cache = cache
        self.mediator = mediator or ConflictMediator()

    def _run(
        self,
        manifest: Manifest,
        expander: VariantExpander,
        variant: Variant,
        lock: Optional[Lockfile],
        update: bool,
    ) -> VariantRun:
        return VariantRun(
            variant=variant,
            expander=expander,
            catalog=CatalogResolver(manifest.catalog),
            cache=self.cache,
            mediator=self.mediator,
            lock=lock,
            update=update,
        )

    async def resolve(
        self,
        manifest: Manifest,
        variant: Variant,
        lock: Optional[Lockfile] = None,
        update: bool = False,
    ) -> ResolvedGraph:
        """Resolve a single variant.

        Raises:
            KResolveError: If the variant cannot be resolved.
        """
        expander = VariantExpander(manifest)
        return await self._run(manifest, expander, variant, lock, update).run()

    async def resolve_all(
        self,
        manifest: Manifest,
        lock: Optional[Lockfile] = None,
        update: bool = False,
    ) -> dict[Variant, ResolutionOutcome]:
        """Resolve every variant concurrently.

        Args:
            manifest: Project manifest.
            lock: Existing lockfile to check each variant against.
            update: Re-resolve stale variants instead of failing.

        Returns:
            Each variant, in expansion order, mapped to its graph or to the
            error that aborted it.

        Raises:
            ManifestError: If the variant list itself cannot be computed.
        """
        expander = VariantExpander(manifest)
        variants = expander.variants()
        logger.info("Resolving %d variant(s)", len(variants))

        runs = [self._run(manifest, expander, v, lock, update) for v in variants]
        results = await asyncio.gather(*(run.run() for run in runs), return_exceptions=True)

        outcomes: dict[Variant, ResolutionOutcome] = {}
        for variant, result in zip(variants, results):
            if isinstance(result, KResolveError):
                logger.error("Variant %s failed: %s", variant.name, result)
            elif isinstance(result, BaseException):
                raise result
            outcomes[variant] = result

        successful = sum(1 for r in outcomes.values() if isinstance(r, ResolvedGraph))
        info = self.cache.info()
        logger.info(
            "Resolution complete: %d/%d variants, %d fetches (%d cache hits)",
            successful,
            len(variants),
            info["misses"],
            info["hits"],
        )
        return outcomes


def explain(graph: ResolvedGraph, coordinate: Coordinate) -> list[tuple[Coordinate, ...]]:
    """Return every path from a root to ``coordinate`` in the resolved graph.

    Paths follow the recorded direct dependencies of each node, so they
    describe why the coordinate is in the graph after mediation. Roots are
    visited in declaration order and children in coordinate order.
    """
    if coordinate not in graph:
        return []

    paths: list[tuple[Coordinate, ...]] = []

    def walk(node: Coordinate, path: tuple[Coordinate, ...]) -> None:
        if node == coordinate:
            paths.append(path)
            return
        resolved = graph.get(node)
        if resolved is None:
            return
        for child, _ in resolved.dependencies:
            if child not in path:
                walk(child, path + (child,))

    for root in graph.roots:
        walk(root, (root,))
    return paths


def conflicts(graph: ResolvedGraph) -> list[MediatedConflict]:
    """Return the coordinates whose other candidates were mediated away."""
    return sorted(graph.conflicts, key=lambda c: c.coordinate)


def check_lock_fresh(manifest: Manifest, lock: Lockfile) -> bool:
    """Whether the lockfile matches the manifest's current declarations.

    The lock is fresh when it holds exactly the manifest's variants and each
    stored declarations hash equals the hash of the variant's post-catalog
    declarations. No metadata is fetched.

    Raises:
        KResolveError: If a variant's declarations cannot be merged or
            resolved against the catalog.
    """
    expander = VariantExpander(manifest)
    catalog = CatalogResolver(manifest.catalog)
    variants = expander.variants()

    if set(lock.variants) != {v.name for v in variants}:
        logger.info("Lockfile variants differ from the manifest")
        return False

    for variant in variants:
        declarations_hash = catalog.resolve(expander.merge(variant)).content_hash()
        if not lock.is_fresh(variant.name, declarations_hash):
            logger.info("Variant %s is out of date", variant.name)
            return False
    return True
