"""Unit tests for the lockfile codec."""

import json
from pathlib import Path

import pytest

from kresolve.errors import LockfileError
from kresolve.lockfile import Lockfile, LockEntry
from kresolve.models import Coordinate, ResolvedGraph, ResolvedNode, Scope, Variant

OKHTTP = Coordinate("com.squareup.okhttp3", "okhttp")
OKIO = Coordinate("com.squareup.okio", "okio")
STDLIB = Coordinate("org.jetbrains.kotlin", "kotlin-stdlib")
VARIANT = Variant((("tier", "paid"),), "release")


@pytest.fixture
def graph() -> ResolvedGraph:
    """Return a small resolved graph, with nodes inserted out of order."""
    return ResolvedGraph(
        variant=VARIANT,
        roots=(OKHTTP,),
        nodes={
            STDLIB: ResolvedNode(STDLIB, "1.9.21", "1.9.21", (Scope.RUNTIME,), 3),
            OKHTTP: ResolvedNode(
                OKHTTP,
                "4.12.0",
                "4.12.0",
                (Scope.COMPILE,),
                1,
                ((OKIO, "3.6.0"),),
                source="central",
            ),
            OKIO: ResolvedNode(
                OKIO,
                "3.6.0-20240615.143022-5",
                "3.6.0-SNAPSHOT",
                (Scope.COMPILE,),
                2,
                ((STDLIB, "1.9.21"),),
                source="snapshots",
            ),
        },
        declarations_hash="sha256:abc",
    )


class TestLockfile:
    """Test serialization and staleness checks."""

    def test_round_trip(self, graph: ResolvedGraph) -> None:
        """Test that dumping and loading reproduces an equal graph."""
        text = Lockfile.from_graphs([graph]).dumps()
        restored = Lockfile.loads(text).to_graph(VARIANT)

        assert restored == graph
        assert restored.declarations_hash == "sha256:abc"
        assert restored.nodes[OKIO].requested == "3.6.0-SNAPSHOT"
        assert restored.nodes[OKHTTP].source == "central"

    def test_output_is_deterministic(self, graph: ResolvedGraph) -> None:
        """Test byte-identical output and sorted packages."""
        first = Lockfile.from_graphs([graph]).dumps()
        reordered = ResolvedGraph(
            variant=graph.variant,
            roots=graph.roots,
            nodes=dict(reversed(list(graph.nodes.items()))),
            declarations_hash=graph.declarations_hash,
        )
        second = Lockfile.from_graphs([reordered]).dumps()

        assert first == second
        assert first.endswith("}\n")
        data = json.loads(first)
        packages = data["variants"]["paid-release"]["packages"]
        assert [p["artifact"] for p in packages] == ["okhttp", "okio", "kotlin-stdlib"]
        assert packages[0]["checksum"] is None
        assert data["variants"]["paid-release"]["roots"] == ["com.squareup.okhttp3:okhttp"]

    def test_is_fresh(self, graph: ResolvedGraph) -> None:
        """Test the stored declarations hash comparison."""
        lockfile = Lockfile.from_graphs([graph])
        assert lockfile.is_fresh("paid-release", "sha256:abc")
        assert not lockfile.is_fresh("paid-release", "sha256:def")
        assert not lockfile.is_fresh("free-release", "sha256:abc")
        assert lockfile.stored_hash("free-release") is None

    def test_graph_without_hash_rejected(self, graph: ResolvedGraph) -> None:
        """Test that only resolver-produced graphs can be locked."""
        graph.declarations_hash = None
        with pytest.raises(ValueError, match="no declarations hash"):
            Lockfile.from_graphs([graph])

    def test_write_and_read(self, graph: ResolvedGraph, tmp_path: Path) -> None:
        """Test writing to and reading from disk."""
        path = tmp_path / "kresolve.lock"
        Lockfile.from_graphs([graph]).write(path)

        assert Lockfile.read(path).to_graph(VARIANT) == graph

    def test_read_missing(self, tmp_path: Path) -> None:
        """Test that a missing lockfile raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            Lockfile.read(tmp_path / "kresolve.lock")

    @pytest.mark.parametrize(
        "text,message",
        [
            ("{not json", "Invalid lockfile JSON"),
            ('{"version": 99, "variants": {}}', "Unsupported lockfile version"),
            ('{"version": 1, "variants": {"dev": {"roots": []}}}', "Malformed lockfile"),
            ("[]", "must be a JSON object, got list"),
            ('"kresolve"', "must be a JSON object, got str"),
            ('{"version": 1, "variants": []}', "Malformed lockfile"),
        ],
    )
    def test_invalid_lockfile(self, text: str, message: str) -> None:
        """Test that broken lockfiles raise LockfileError."""
        with pytest.raises(LockfileError, match=message):
            Lockfile.loads(text)


def test_lock_entry_sorts_dependencies() -> None:
    """Test that an entry lists its dependencies in coordinate order."""
    node = ResolvedNode(
        OKHTTP,
        "4.12.0",
        "4.12.0",
        (Scope.COMPILE,),
        1,
        ((STDLIB, "1.9.21"), (OKIO, "3.6.0")),
    )
    entry = LockEntry.from_node(node)
    assert [d.artifact for d in entry.dependencies] == ["okio", "kotlin-stdlib"]
