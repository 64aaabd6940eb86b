"""Nearest-wins version mediation with range intersection.

For every coordinate the candidate at the smallest depth wins; at equal
depth the candidate discovered first wins. When the winner is a range it
is intersected with every other candidate at its depth (exact versions
count as ``[v,v]``); when the winner is exact, it is intersected with the
competing ranges at its depth. An empty intersection is an unresolvable
conflict.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from kresolve.errors import (
    DescriptorFetchError,
    InternalResolutionError,
    NoMatchingVersion,
    VersionConflictUnresolvable,
)
from kresolve.models import Candidate, Coordinate, DependencyEdge, MediatedConflict
from kresolve.versions import MavenVersion, VersionRange, VersionSpec, select_highest

logger = logging.getLogger(__name__)

SnapshotLookup = Callable[[Coordinate, str], Optional[str]]


@dataclass
class MediationResult:
    """Final versions of one graph.

    Attributes:
        versions: Recorded version per coordinate (timestamped for snapshots).
        requested: Version label that won mediation per coordinate.
        conflicts: Coordinates whose other candidates were mediated away.
    """

    versions: dict[Coordinate, str] = field(default_factory=dict)
    requested: dict[Coordinate, str] = field(default_factory=dict)
    conflicts: list[MediatedConflict] = field(default_factory=list)


class ConflictMediator:
    """Chooses one version per coordinate."""

    def winner(self, candidates: Sequence[DependencyEdge]) -> DependencyEdge:
        """Return the nearest candidate, earliest discovered on ties."""
        if not candidates:
            raise InternalResolutionError("Mediation called without candidates")
        return min(candidates, key=lambda edge: (edge.depth, edge.order))

    def narrow(
        self, coordinate: Coordinate, candidates: Sequence[DependencyEdge]
    ) -> Optional[VersionRange]:
        """Intersect the winner with the competing candidates at its depth.

        Returns:
            The admissible range, or None when the winner is an exact
            version that no range at its depth competes with.

        Raises:
            VersionConflictUnresolvable: If the intersection is empty.
        """
        winner = self.winner(candidates)
        rivals = sorted(
            (c for c in candidates if c.depth == winner.depth and c is not winner),
            key=lambda edge: edge.order,
        )
        if not winner.spec.is_range:
            # exact versions at the same depth lose on discovery order alone
            rivals = [c for c in rivals if c.spec.is_range]
            if not rivals:
                return None

        admissible = winner.spec.as_range()
        for rival in rivals:
            admissible = admissible.intersect(rival.spec.as_range())

        if admissible.is_empty:
            contributors = [winner] + rivals
            raise VersionConflictUnresolvable(
                coordinate, [(str(c.spec), c.path) for c in contributors]
            )
        return admissible

    def requires_listing(
        self, coordinate: Coordinate, candidates: Sequence[DependencyEdge]
    ) -> bool:
        """Whether selecting a version needs the published version list."""
        admissible = self.narrow(coordinate, candidates)
        return admissible is not None and admissible.point is None

    def select(
        self,
        coordinate: Coordinate,
        candidates: Sequence[DependencyEdge],
        available: Optional[list[str]] = None,
    ) -> str:
        """Choose the version label for a coordinate.

        Args:
            coordinate: Coordinate being mediated.
            candidates: Every edge requesting it seen so far.
            available: Published versions, required when the outcome is a
                range wider than one version.

        Returns:
            The chosen version label.

        Raises:
            VersionConflictUnresolvable: If ranges at the winning depth
                do not intersect.
            NoMatchingVersion: If no published version fits the range.
        """
        winner = self.winner(candidates)
        admissible = self.narrow(coordinate, candidates)
        if admissible is None:
            return winner.spec.raw

        point = admissible.point
        if point is not None:
            return point.original

        if available is None:
            raise InternalResolutionError(
                f"Version listing for {coordinate} was not fetched before selection"
            )
        chosen = select_highest(admissible, available)
        if chosen is None:
            raise NoMatchingVersion(coordinate, str(admissible), [c.path for c in candidates])
        logger.debug("%s: %s selects %s", coordinate, admissible, chosen)
        return chosen

    def mediate(
        self,
        selected: dict[Coordinate, str],
        candidates: dict[Coordinate, list[DependencyEdge]],
        snapshots: SnapshotLookup,
    ) -> MediationResult:
        """Finalize versions and report the candidates mediated away.

        Args:
            selected: Version label chosen per coordinate during traversal.
            candidates: Every traversed edge per coordinate.
            snapshots: Returns the latest timestamped build of a snapshot,
                raising the provider's error if it could not be fetched.

        Returns:
            The recorded versions, requested labels and conflicts.

        Raises:
            DescriptorFetchError: If a snapshot build could not be resolved.
        """
        result = MediationResult()
        for coordinate in sorted(selected):
            label = selected[coordinate]
            edges = candidates.get(coordinate, [])
            result.requested[coordinate] = label
            result.versions[coordinate] = self._record_version(coordinate, label, edges, snapshots)

            rejected = [e for e in edges if not satisfies(e.spec, label)]
            if rejected:
                result.conflicts.append(self._conflict(coordinate, label, edges, rejected))
        return result

    def _record_version(
        self,
        coordinate: Coordinate,
        label: str,
        edges: list[DependencyEdge],
        snapshots: SnapshotLookup,
    ) -> str:
        if not MavenVersion.parse(label).is_snapshot:
            return label
        path = self.winner(edges).path if edges else (coordinate,)
        try:
            timestamped = snapshots(coordinate, label)
        except Exception as e:
            raise DescriptorFetchError(coordinate, label, path, str(e)) from e
        if timestamped is None:
            raise InternalResolutionError(
                f"Snapshot {coordinate}:{label} was not fetched before mediation"
            )
        logger.debug("%s:%s resolved to build %s", coordinate, label, timestamped)
        return timestamped

    def _conflict(
        self,
        coordinate: Coordinate,
        chosen: str,
        edges: list[DependencyEdge],
        rejected: list[DependencyEdge],
    ) -> MediatedConflict:
        winner = self.winner(edges)
        nearest = self.winner(rejected)
        if nearest.depth > winner.depth:
            reason = f"nearest wins (depth {winner.depth} vs {nearest.depth})"
        else:
            reason = f"first declaration wins at depth {winner.depth}"
        return MediatedConflict(
            coordinate=coordinate,
            chosen=chosen,
            rejected=tuple(
                Candidate(spec=str(e.spec), depth=e.depth, order=e.order, path=e.path)
                for e in sorted(rejected, key=lambda e: (e.depth, e.order))
            ),
            reason=reason,
        )


def satisfies(spec: VersionSpec, version: str) -> bool:
    """Whether a requested spec admits a version."""
    if spec.is_ref:
        return False
    return spec.as_range().contains(MavenVersion.parse(version))
