"""Unit tests for per-variant resolution and the resolver queries."""

import pytest

from kresolve.cache import DescriptorCache
from kresolve.catalog import CatalogResolver
from kresolve.errors import (
    CyclicDependency,
    DescriptorFetchError,
    LockOutOfDate,
    VariantDependencyConflict,
)
from kresolve.lockfile import Lockfile
from kresolve.mediation import ConflictMediator
from kresolve.models import Coordinate, DescriptorDependency, ResolvedGraph, Scope, Variant
from kresolve.providers import InMemoryProvider
from kresolve.resolver import (
    DependencyResolver,
    ResolutionState,
    VariantRun,
    check_lock_fresh,
    conflicts,
    explain,
)
from kresolve.variants import VariantExpander

A = Coordinate("com.example", "a")
B = Coordinate("com.example", "b")
C = Coordinate("com.example", "c")
D = Coordinate("com.example", "d")
DEV = Variant((), "dev")


class TestMediationProperties:
    """Test version mediation through full resolutions."""

    @pytest.mark.asyncio
    async def test_equal_depth_first_declared_wins(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that C@1.0 wins when A, declared first, asks for it."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:2.0"),
            make_descriptor("com.example:c:1.0"),
            make_descriptor("com.example:c:2.0"),
        )
        manifest = make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.0"})

        graph = await resolver.resolve(manifest, DEV)

        assert graph.version_of(C) == "1.0"
        (conflict,) = conflicts(graph)
        assert conflict.coordinate == C
        assert [c.spec for c in conflict.rejected] == ["2.0"]
        assert conflict.reason == "first declaration wins at depth 2"

    @pytest.mark.asyncio
    async def test_direct_declaration_beats_transitive(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that a direct C@1.5 beats a deeper C@2.0."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:c:2.0"),
            make_descriptor("com.example:c:1.5"),
            make_descriptor("com.example:c:2.0"),
        )
        manifest = make_manifest({"a": "com.example:a:1.0", "c": "com.example:c:1.5"})

        graph = await resolver.resolve(manifest, DEV)

        assert graph.version_of(C) == "1.5"
        assert graph.nodes[C].depth == 1
        assert graph.nodes[A].dependencies == ((C, "1.5"),)
        assert conflicts(graph)[0].reason == "nearest wins (depth 1 vs 2)"

    @pytest.mark.asyncio
    async def test_range_resolved_against_listing(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that a range picks the highest published version inside it."""
        resolver = resolver_for(
            make_descriptor("com.example:c:1.0"),
            make_descriptor("com.example:c:1.5"),
            make_descriptor("com.example:c:2.0"),
        )
        manifest = make_manifest({"c": "com.example:c:[1.0,2.0)"})

        graph = await resolver.resolve(manifest, DEV)

        assert graph.version_of(C) == "1.5"
        assert graph.nodes[C].requested == "1.5"


class TestTraversal:
    """Test exclusions, cycles and failure handling."""

    @pytest.mark.asyncio
    async def test_exclusion_prunes_subtree(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that an excluded coordinate never enters through that path."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:b:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:c:1.0"),
        )
        manifest = make_manifest(
            {
                "a": {
                    "module": "com.example:a",
                    "version": "1.0",
                    "exclusions": ["com.example:c"],
                }
            }
        )

        graph = await resolver.resolve(manifest, DEV)

        assert set(graph.nodes) == {A, B}
        assert graph.nodes[B].dependencies == ()

    @pytest.mark.asyncio
    async def test_exclusion_is_per_path(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that an unexcluded path still brings the coordinate in."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:b:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:d:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:c:1.0"),
        )
        manifest = make_manifest(
            {
                "a": {"module": "com.example:a", "version": "1.0", "exclusions": ["com.example"]},
                "d": "com.example:d:1.0",
            }
        )

        graph = await resolver.resolve(manifest, DEV)

        assert C in graph
        assert explain(graph, C) == [(D, C)]

    @pytest.mark.asyncio
    async def test_cycle_fails_variant(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that A -> B -> A is reported with its full path."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:b:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:a:1.0"),
        )
        manifest = make_manifest({"a": "com.example:a:1.0"})

        outcomes = await resolver.resolve_all(manifest)

        error = outcomes[DEV]
        assert isinstance(error, CyclicDependency)
        assert error.cycle == (A, B, A)
        assert "com.example:a -> com.example:b -> com.example:a" in str(error)

    @pytest.mark.asyncio
    async def test_missing_descriptor_reports_path(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that a required fetch failure names the path to it."""
        resolver = resolver_for(make_descriptor("com.example:a:1.0", "com.example:b:1.0"))
        manifest = make_manifest({"a": "com.example:a:1.0"})

        with pytest.raises(DescriptorFetchError) as exc_info:
            await resolver.resolve(manifest, DEV)

        assert exc_info.value.coordinate == B
        assert exc_info.value.paths == [(A, B)]

    @pytest.mark.asyncio
    async def test_optional_root_failure_is_skipped(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that an unavailable optional dependency is left out."""
        resolver = resolver_for(make_descriptor("com.example:a:1.0"))
        manifest = make_manifest(
            {
                "a": "com.example:a:1.0",
                "b": {"module": "com.example:b", "version": "1.0", "optional": True},
            }
        )

        graph = await resolver.resolve(manifest, DEV)

        assert set(graph.nodes) == {A}
        assert graph.roots == (A,)
        assert [s.coordinate for s in graph.skipped] == [B]

    @pytest.mark.asyncio
    async def test_optional_transitive_not_traversed(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that optional dependencies of a library are recorded but not followed."""
        resolver = resolver_for(
            make_descriptor(
                "com.example:a:1.0",
                DescriptorDependency(B, "1.0", optional=True),
            ),
        )
        manifest = make_manifest({"a": "com.example:a:1.0"})

        graph = await resolver.resolve(manifest, DEV)

        assert set(graph.nodes) == {A}
        assert [e.target for e in graph.edges] == [A, B]

    @pytest.mark.asyncio
    async def test_scopes(self, make_descriptor, make_manifest, resolver_for) -> None:
        """Test scope propagation from compile and test roots."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:b:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:c:1.0"),
            make_descriptor("com.example:d:1.0"),
        )
        manifest = make_manifest(
            {"a": "com.example:a:1.0"},
            **{"dev-dependencies": {"d": "com.example:d:1.0"}},
        )

        graph = await resolver.resolve(manifest, DEV)

        assert graph.nodes[A].scopes == (Scope.COMPILE,)
        assert graph.nodes[B].scopes == (Scope.COMPILE,)
        assert graph.nodes[C].scopes == (Scope.RUNTIME,)
        assert graph.nodes[D].scopes == (Scope.TEST,)


class TestSnapshots:
    """Test snapshot recording."""

    @pytest.mark.asyncio
    async def test_snapshot_records_timestamped_build(
        self, make_descriptor, make_manifest
    ) -> None:
        """Test that a snapshot resolves to its latest timestamped build."""
        provider = InMemoryProvider([make_descriptor("com.example:a:2.0-SNAPSHOT")])
        provider.add_snapshot(A, "2.0-SNAPSHOT", "2.0-20240615.143022-5")
        resolver = DependencyResolver(DescriptorCache(provider))

        graph = await resolver.resolve(make_manifest({"a": "com.example:a:2.0-SNAPSHOT"}), DEV)

        assert graph.nodes[A].version == "2.0-20240615.143022-5"
        assert graph.nodes[A].requested == "2.0-SNAPSHOT"

    @pytest.mark.asyncio
    async def test_missing_snapshot_build(self, make_descriptor, make_manifest) -> None:
        """Test that an unknown snapshot build fails the variant."""
        provider = InMemoryProvider([make_descriptor("com.example:a:2.0-SNAPSHOT")])
        resolver = DependencyResolver(DescriptorCache(provider))

        with pytest.raises(DescriptorFetchError):
            await resolver.resolve(make_manifest({"a": "com.example:a:2.0-SNAPSHOT"}), DEV)


class TestVariants:
    """Test per-variant isolation."""

    @pytest.mark.asyncio
    async def test_flavor_conflict_only_fails_its_variants(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that paid + production fails while other variants resolve."""
        resolver = resolver_for(
            make_descriptor("com.squareup.okhttp3:okhttp:4.12.0"),
            make_descriptor("com.squareup.okhttp3:okhttp:3.14.9"),
        )
        manifest = make_manifest(
            {},
            flavors={
                "dimensions": ["tier", "env"],
                "tier": ["free", "paid"],
                "env": ["staging", "production"],
            },
            flavor={
                "paid": {"dependencies": {"okhttp": "com.squareup.okhttp3:okhttp:4.12.0"}},
                "production": {"dependencies": {"okhttp": "com.squareup.okhttp3:okhttp:3.14.9"}},
            },
        )

        outcomes = await resolver.resolve_all(manifest)

        failed = {v.name for v, r in outcomes.items() if not isinstance(r, ResolvedGraph)}
        assert failed == {"paid-production-dev"}
        error = outcomes[Variant((("tier", "paid"), ("env", "production")), "dev")]
        assert isinstance(error, VariantDependencyConflict)
        assert error.flavors == ("paid", "production")

        okhttp = Coordinate("com.squareup.okhttp3", "okhttp")
        paid = outcomes[Variant((("tier", "paid"), ("env", "staging")), "dev")]
        production = outcomes[Variant((("tier", "free"), ("env", "production")), "dev")]
        assert paid.version_of(okhttp) == "4.12.0"
        assert production.version_of(okhttp) == "3.14.9"

    @pytest.mark.asyncio
    async def test_flavor_conflict_through_catalog_alias(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test that a catalog alias is checked against a direct coordinate."""
        resolver = resolver_for(
            make_descriptor("com.example:c:1.0"),
            make_descriptor("com.example:c:2.0"),
        )
        manifest = make_manifest(
            {},
            flavors={
                "dimensions": ["tier", "env"],
                "tier": ["free", "paid"],
                "env": ["staging", "production"],
            },
            flavor={
                "paid": {"dependencies": {"c": "com.example:c:1.0"}},
                "production": {"dependencies": {"c": {"catalog": "c"}}},
            },
            catalog={"libraries": {"c": "com.example:c:2.0"}},
        )

        outcomes = await resolver.resolve_all(manifest)

        error = outcomes[Variant((("tier", "paid"), ("env", "production")), "dev")]
        assert isinstance(error, VariantDependencyConflict)
        assert error.key == "com.example:c"
        production = outcomes[Variant((("tier", "free"), ("env", "production")), "dev")]
        assert production.version_of(C) == "2.0"

    @pytest.mark.asyncio
    async def test_state_history(self, make_descriptor, make_manifest) -> None:
        """Test the states a successful and a failing run pass through."""
        cache = DescriptorCache(InMemoryProvider([make_descriptor("com.example:a:1.0")]))
        manifest = make_manifest({"a": "com.example:a:1.0"})
        expander = VariantExpander(manifest)

        run = VariantRun(
            DEV, expander, CatalogResolver(manifest.catalog), cache, ConflictMediator()
        )
        await run.run()
        assert run.history == [
            ResolutionState.INIT,
            ResolutionState.EXPANDING_VARIANTS,
            ResolutionState.RESOLVING_CATALOG,
            ResolutionState.BUILDING_GRAPH,
            ResolutionState.MEDIATING_CONFLICTS,
            ResolutionState.VALIDATING,
            ResolutionState.DONE,
        ]

        broken = make_manifest({"b": "com.example:b:1.0"})
        failing = VariantRun(
            DEV,
            VariantExpander(broken),
            CatalogResolver(broken.catalog),
            cache,
            ConflictMediator(),
        )
        with pytest.raises(DescriptorFetchError):
            await failing.run()
        assert failing.history[-2:] == [ResolutionState.BUILDING_GRAPH, ResolutionState.FAILED]
        assert failing.state == ResolutionState.FAILED


class TestLocking:
    """Test determinism and lock staleness."""

    @pytest.fixture
    def descriptors(self, make_descriptor):
        return [
            make_descriptor("com.example:a:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:2.0"),
            make_descriptor("com.example:b:1.1", "com.example:c:2.0"),
            make_descriptor("com.example:c:1.0"),
            make_descriptor("com.example:c:2.0"),
        ]

    @pytest.mark.asyncio
    async def test_resolution_is_deterministic(
        self, descriptors, make_manifest, resolver_for
    ) -> None:
        """Test that two runs produce byte-identical lockfiles."""
        manifest = make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.0"})

        first = await resolver_for(*descriptors).resolve_all(manifest)
        second = await resolver_for(*reversed(descriptors)).resolve_all(manifest)

        assert Lockfile.from_graphs(first.values()).dumps() == (
            Lockfile.from_graphs(second.values()).dumps()
        )

    @pytest.mark.asyncio
    async def test_lock_round_trip(self, descriptors, make_manifest, resolver_for) -> None:
        """Test that a written lock reads back as the resolved graph."""
        manifest = make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.0"})
        graph = await resolver_for(*descriptors).resolve(manifest, DEV)

        restored = Lockfile.loads(Lockfile.from_graphs([graph]).dumps()).to_graph(DEV)

        assert restored == graph

    @pytest.mark.asyncio
    async def test_stale_lock(self, descriptors, make_manifest, resolver_for) -> None:
        """Test that edited declarations make the lock stale until updated."""
        manifest = make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.0"})
        outcomes = await resolver_for(*descriptors).resolve_all(manifest)
        lock = Lockfile.from_graphs(outcomes.values())
        assert check_lock_fresh(manifest, lock)

        edited = make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.1"})
        assert not check_lock_fresh(edited, lock)

        stale = await resolver_for(*descriptors).resolve_all(edited, lock=lock)
        assert isinstance(stale[DEV], LockOutOfDate)
        assert "--update" in str(stale[DEV])

        updated = await resolver_for(*descriptors).resolve_all(edited, lock=lock, update=True)
        assert updated[DEV].version_of(B) == "1.1"

    @pytest.mark.asyncio
    async def test_lock_missing_variant_is_stale(
        self, descriptors, make_manifest, resolver_for
    ) -> None:
        """Test that adding a profile invalidates the lock."""
        manifest = make_manifest({"a": "com.example:a:1.0"})
        outcomes = await resolver_for(*descriptors).resolve_all(manifest)
        lock = Lockfile.from_graphs(outcomes.values())

        extended = make_manifest({"a": "com.example:a:1.0"}, profile={"dev": {}, "release": {}})
        assert not check_lock_fresh(extended, lock)


class TestQueries:
    """Test explain and conflicts."""

    @pytest.mark.asyncio
    async def test_explain_lists_every_path(
        self, make_descriptor, make_manifest, resolver_for
    ) -> None:
        """Test paths from each root that reaches the coordinate."""
        resolver = resolver_for(
            make_descriptor("com.example:a:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:b:1.0", "com.example:c:1.0"),
            make_descriptor("com.example:c:1.0"),
        )
        graph = await resolver.resolve(
            make_manifest({"a": "com.example:a:1.0", "b": "com.example:b:1.0"}), DEV
        )

        assert explain(graph, C) == [(A, C), (B, C)]
        assert explain(graph, A) == [(A,)]
        assert explain(graph, D) == []
        assert conflicts(graph) == []
