"""Maven version ordering and version-range algebra.

Versions are split into segments on ``.`` and ``-``. Numeric segments
compare numerically, well-known qualifiers compare by release maturity
(``alpha < beta < milestone < rc < snapshot < release < sp``) and any
other text compares case-insensitively below numbers. Missing trailing
segments compare like ``0``/release, so ``1.0 == 1.0.0``.

Ranges use Maven bracket syntax: ``[1.0,2.0)``, ``(,2.0]``, ``[1.5]`` and
comma-separated unions such as ``[1.0,2.0),[3.0,)``. Everything here is a
pure function over immutable values.
"""

import re
from dataclasses import dataclass, field
from enum import IntEnum
from functools import total_ordering
from typing import Iterable, Optional

SNAPSHOT_SUFFIX = "-SNAPSHOT"

_NUMERIC = 0
_QUALIFIER = 1
_TEXT = 2


class Qualifier(IntEnum):
    """Well-known version qualifiers in ascending maturity."""

    ALPHA = 0
    BETA = 1
    MILESTONE = 2
    RC = 3
    SNAPSHOT = 4
    RELEASE = 5
    SP = 6


_QUALIFIERS = {
    "alpha": Qualifier.ALPHA,
    "a": Qualifier.ALPHA,
    "beta": Qualifier.BETA,
    "b": Qualifier.BETA,
    "milestone": Qualifier.MILESTONE,
    "m": Qualifier.MILESTONE,
    "rc": Qualifier.RC,
    "cr": Qualifier.RC,
    "snapshot": Qualifier.SNAPSHOT,
    "ga": Qualifier.RELEASE,
    "final": Qualifier.RELEASE,
    "release": Qualifier.RELEASE,
    "sp": Qualifier.SP,
}

Segment = tuple[int, object]


def _classify(token: str) -> Segment:
    if token.isascii() and token.isdigit():
        return (_NUMERIC, int(token))
    lowered = token.lower()
    if lowered in _QUALIFIERS:
        return (_QUALIFIER, _QUALIFIERS[lowered])
    return (_TEXT, lowered)


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _compare_to_empty(segment: Segment) -> int:
    kind, value = segment
    if kind == _NUMERIC:
        return 0 if value == 0 else 1
    if kind == _QUALIFIER:
        return _cmp(value, Qualifier.RELEASE)
    return -1


def _compare_segments(a: Segment, b: Segment) -> int:
    (kind_a, value_a), (kind_b, value_b) = a, b
    if kind_a == kind_b:
        return _cmp(value_a, value_b)
    if kind_a == _NUMERIC:
        return 1
    if kind_b == _NUMERIC:
        return -1
    # qualifier vs text: release-or-later qualifiers outrank free text
    if kind_a == _QUALIFIER:
        return 1 if value_a >= Qualifier.RELEASE else -1
    return -1 if value_b >= Qualifier.RELEASE else 1


@total_ordering
class MavenVersion:
    """A parsed Maven version with Maven's comparison semantics.

    Attributes:
        original: The version text exactly as declared.
    """

    __slots__ = ("original", "_segments")

    def __init__(self, original: str) -> None:
        self.original = original
        self._segments: tuple[Segment, ...] = tuple(
            _classify(token) for token in re.split(r"[.\-]", original) if token
        )

    @classmethod
    def parse(cls, text: str) -> "MavenVersion":
        return cls(text.strip())

    @property
    def is_snapshot(self) -> bool:
        return self.original.endswith(SNAPSHOT_SUFFIX)

    @property
    def base_version(self) -> str:
        """The version without its ``-SNAPSHOT`` suffix."""
        if self.is_snapshot:
            return self.original[: -len(SNAPSHOT_SUFFIX)]
        return self.original

    def compare(self, other: "MavenVersion") -> int:
        """Three-way comparison returning -1, 0 or 1."""
        mine, theirs = self._segments, other._segments
        for index in range(max(len(mine), len(theirs))):
            if index >= len(theirs):
                result = _compare_to_empty(mine[index])
            elif index >= len(mine):
                result = -_compare_to_empty(theirs[index])
            else:
                result = _compare_segments(mine[index], theirs[index])
            if result:
                return result
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MavenVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "MavenVersion") -> bool:
        if not isinstance(other, MavenVersion):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        segments = list(self._segments)
        while segments and _compare_to_empty(segments[-1]) == 0:
            segments.pop()
        return hash(tuple(segments))

    def __str__(self) -> str:
        return self.original

    def __repr__(self) -> str:
        return f"MavenVersion({self.original!r})"


@dataclass(frozen=True)
class Bound:
    """One end of an interval."""

    version: MavenVersion
    inclusive: bool


@dataclass(frozen=True)
class Interval:
    """A contiguous set of versions; a missing bound is unbounded."""

    lower: Optional[Bound] = None
    upper: Optional[Bound] = None

    def contains(self, version: MavenVersion) -> bool:
        if self.lower is not None:
            result = version.compare(self.lower.version)
            if result < 0 or (result == 0 and not self.lower.inclusive):
                return False
        if self.upper is not None:
            result = version.compare(self.upper.version)
            if result > 0 or (result == 0 and not self.upper.inclusive):
                return False
        return True

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        result = self.lower.version.compare(self.upper.version)
        if result != 0:
            return result > 0
        return not (self.lower.inclusive and self.upper.inclusive)

    @property
    def point(self) -> Optional[MavenVersion]:
        """The single version this interval admits, if it is ``[v,v]``."""
        if (
            self.lower is not None
            and self.upper is not None
            and self.lower.inclusive
            and self.upper.inclusive
            and self.lower.version == self.upper.version
        ):
            return self.lower.version
        return None

    def intersect(self, other: "Interval") -> "Interval":
        return Interval(
            lower=_tighter(self.lower, other.lower, prefer=1),
            upper=_tighter(self.upper, other.upper, prefer=-1),
        )

    def __str__(self) -> str:
        point = self.point
        if point is not None:
            return f"[{point}]"
        opening = "[" if self.lower is not None and self.lower.inclusive else "("
        closing = "]" if self.upper is not None and self.upper.inclusive else ")"
        lower = str(self.lower.version) if self.lower else ""
        upper = str(self.upper.version) if self.upper else ""
        return f"{opening}{lower},{upper}{closing}"


def _tighter(a: Optional[Bound], b: Optional[Bound], prefer: int) -> Optional[Bound]:
    """Pick the more restrictive of two bounds on the same side.

    ``prefer`` is 1 for lower bounds (higher wins) and -1 for upper bounds.
    """
    if a is None:
        return b
    if b is None:
        return a
    result = a.version.compare(b.version) * prefer
    if result > 0:
        return a
    if result < 0:
        return b
    return Bound(a.version, a.inclusive and b.inclusive)


_RANGE_PART = re.compile(r"\s*([\[(])([^\[\]()]*)([\])])\s*(?:,|$)")


@dataclass(frozen=True)
class VersionRange:
    """A union of intervals, kept in declaration order."""

    intervals: tuple[Interval, ...]

    @classmethod
    def parse(cls, text: str) -> Optional["VersionRange"]:
        """Parse Maven range syntax.

        Args:
            text: Version text such as ``[1.0,2.0)``.

        Returns:
            The parsed range, or None when ``text`` is a plain version.

        Raises:
            ValueError: If the text starts like a range but is malformed.
        """
        stripped = text.strip()
        if not stripped.startswith(("[", "(")):
            return None

        intervals: list[Interval] = []
        position = 0
        while position < len(stripped):
            match = _RANGE_PART.match(stripped, position)
            if match is None:
                raise ValueError(f"Malformed version range: {text!r}")
            intervals.append(_parse_interval(*match.groups(), text=text))
            position = match.end()
        return cls(tuple(intervals))

    @classmethod
    def exact(cls, version: MavenVersion) -> "VersionRange":
        bound = Bound(version, True)
        return cls((Interval(bound, bound),))

    @property
    def is_empty(self) -> bool:
        return all(interval.is_empty for interval in self.intervals)

    @property
    def point(self) -> Optional[MavenVersion]:
        """The single admitted version when the range is pinned."""
        live = [i for i in self.intervals if not i.is_empty]
        if not live or any(i.point is None for i in live):
            return None
        first = live[0].point
        if all(i.point == first for i in live):
            return first
        return None

    def contains(self, version: MavenVersion) -> bool:
        return any(interval.contains(version) for interval in self.intervals)

    def intersect(self, other: "VersionRange") -> "VersionRange":
        merged: list[Interval] = []
        for mine in self.intervals:
            for theirs in other.intervals:
                joined = mine.intersect(theirs)
                if not joined.is_empty:
                    merged.append(joined)
        return VersionRange(tuple(merged))

    def __str__(self) -> str:
        if not self.intervals:
            return "(empty)"
        return ",".join(str(interval) for interval in self.intervals)


def _parse_interval(opening: str, inner: str, closing: str, text: str) -> Interval:
    if "," not in inner:
        version = inner.strip()
        if not version:
            raise ValueError(f"Empty version range: {text!r}")
        bound = Bound(MavenVersion.parse(version), True)
        return Interval(bound, bound)

    lower_text, upper_text = (part.strip() for part in inner.split(",", 1))
    lower = Bound(MavenVersion.parse(lower_text), opening == "[") if lower_text else None
    upper = Bound(MavenVersion.parse(upper_text), closing == "]") if upper_text else None
    return Interval(lower, upper)


@dataclass(frozen=True)
class VersionSpec:
    """A requested version: exact, a range, or a catalog ``version.ref``.

    Attributes:
        raw: The declared text (empty for catalog references).
        ref: Catalog ``versions`` key when the spec is an indirection.
    """

    raw: str
    ref: Optional[str] = None
    range: Optional[VersionRange] = field(default=None, compare=False, repr=False)

    @classmethod
    def parse(cls, text: str) -> "VersionSpec":
        """Parse a declared version.

        Raises:
            ValueError: If the text is empty or a malformed range.
        """
        stripped = text.strip()
        if not stripped:
            raise ValueError("Version must not be empty")
        return cls(raw=stripped, range=VersionRange.parse(stripped))

    @classmethod
    def catalog_ref(cls, key: str) -> "VersionSpec":
        return cls(raw="", ref=key)

    @property
    def is_ref(self) -> bool:
        return self.ref is not None

    @property
    def is_range(self) -> bool:
        return self.range is not None

    @property
    def is_exact(self) -> bool:
        return not self.is_ref and not self.is_range

    @property
    def is_snapshot(self) -> bool:
        return self.is_exact and self.raw.endswith(SNAPSHOT_SUFFIX)

    def as_range(self) -> VersionRange:
        """Return the spec as a range; an exact version becomes ``[v,v]``.

        Raises:
            ValueError: If the spec is an unresolved catalog reference.
        """
        if self.is_ref:
            raise ValueError(f"Unresolved catalog version reference '{self.ref}'")
        if self.range is not None:
            return self.range
        return VersionRange.exact(MavenVersion.parse(self.raw))

    def intersects(self, other: "VersionSpec") -> bool:
        return not self.as_range().intersect(other.as_range()).is_empty

    def to_data(self) -> object:
        """JSON-friendly form: the raw text, or ``{"ref": key}``."""
        if self.is_ref:
            return {"ref": self.ref}
        return self.raw

    def __str__(self) -> str:
        if self.is_ref:
            return f"ref:{self.ref}"
        return self.raw


def select_highest(
    version_range: VersionRange, available: Iterable[str]
) -> Optional[str]:
    """Return the highest available version inside ``version_range``.

    Args:
        version_range: Range to satisfy.
        available: Published version strings.

    Returns:
        The matching version string, or None if nothing matches.
    """
    best: Optional[MavenVersion] = None
    for text in available:
        candidate = MavenVersion.parse(text)
        if version_range.contains(candidate) and (best is None or candidate > best):
            best = candidate
    return best.original if best is not None else None
