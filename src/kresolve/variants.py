"""Build-variant expansion and per-variant declaration merging."""

import itertools
import logging

from kresolve.catalog import CatalogResolver
from kresolve.errors import ManifestError, VariantDependencyConflict
from kresolve.manifest import Manifest
from kresolve.models import Coordinate, DependencyDeclaration, Variant, VariantDependencySet
from kresolve.versions import VersionSpec

logger = logging.getLogger(__name__)


class VariantExpander:
    """Computes the flavor × profile cross product of a manifest.

    Dimension declaration order is authoritative: it fixes variant names,
    the order variants are produced in, and the merge order of flavor
    declarations (which in turn decides mediation tie-breaks).

    Attributes:
        manifest: The manifest whose variants are expanded.
        catalog: Resolver used to compare flavor declarations by coordinate.
    """

    def __init__(self, manifest: Manifest) -> None:
        self.manifest = manifest
        self.catalog = CatalogResolver(manifest.catalog)
        self._flavor_dimension: dict[str, str] = {}
        for dimension in manifest.dimensions:
            for flavor in dimension.flavors:
                if flavor in self._flavor_dimension:
                    raise ManifestError(
                        f"Flavor '{flavor}' is declared in both "
                        f"'{self._flavor_dimension[flavor]}' and '{dimension.name}'"
                    )
                self._flavor_dimension[flavor] = dimension.name
        for flavor in manifest.flavor_dependencies:
            if flavor not in self._flavor_dimension:
                raise ManifestError(f"Dependencies declared for unknown flavor '{flavor}'")

    def variants(self) -> list[Variant]:
        """Return every variant not removed by an ``exclude`` entry.

        With no dimensions declared, there is one variant per profile.

        Raises:
            ManifestError: If an exclude entry names unknown flavors.
        """
        excluded = [self._flavor_tuple(entry, "exclude") for entry in self.manifest.exclude]
        flavor_lists = [
            [(dimension.name, flavor) for flavor in dimension.flavors]
            for dimension in self.manifest.dimensions
        ]

        result = []
        for combination in itertools.product(*flavor_lists):
            if combination in excluded:
                logger.debug("Excluding flavor combination %s", combination)
                continue
            for profile in self.manifest.profiles:
                result.append(Variant(flavors=tuple(combination), profile=profile))
        return result

    def default(self) -> Variant:
        """Return the default variant.

        The declared ``default`` flavor combination with the first profile,
        or the first variant when no default is declared.

        Raises:
            ManifestError: If the default is unknown, excluded, or no
                variant survives the exclude list.
        """
        variants = self.variants()
        if not variants:
            raise ManifestError("Every flavor combination is excluded")
        if self.manifest.default is None:
            return variants[0]

        flavors = self._flavor_tuple(self.manifest.default, "default")
        for variant in variants:
            if variant.flavors == flavors:
                return variant
        raise ManifestError(f"Default flavors {dict(flavors)} are excluded")

    def merge(self, variant: Variant) -> VariantDependencySet:
        """Merge the declarations that apply to one variant.

        Sources are applied in the order common, flavors (in dimension
        order), then profile overrides. A later source may add entries or
        override an existing entry's spec; the entry keeps its first
        position.

        Flavor declarations are compared after catalog resolution, so a
        direct coordinate and a catalog entry for the same library are
        checked against each other.

        Raises:
            VariantDependencyConflict: If flavors of two different dimensions
                declare non-intersecting versions of the same dependency.
            CatalogRefNotFound: If a flavor declaration references a missing
                catalog key.
        """
        merged: dict[str, DependencyDeclaration] = {}
        pinned: dict[Coordinate, tuple[str, str, VersionSpec]] = {}

        for declaration in self.manifest.dependencies:
            merged[declaration.merge_key] = declaration

        for dimension, flavor in variant.flavors:
            for declaration in self.manifest.flavor_dependencies.get(flavor, []):
                for concrete in self.catalog.expand(declaration):
                    incoming = (dimension, flavor, concrete.spec)
                    earlier = pinned.get(concrete.coordinate)
                    if earlier is not None and earlier[0] != dimension:
                        _check_compatible(concrete.coordinate, earlier, incoming)
                    pinned[concrete.coordinate] = incoming
                merged[declaration.merge_key] = declaration

        for declaration in self.manifest.profile_dependencies.get(variant.profile, []):
            merged[declaration.merge_key] = declaration

        logger.debug("Variant %s merged %d declarations", variant.name, len(merged))
        return VariantDependencySet(variant, tuple(merged.values()))

    def expand(self) -> list[tuple[Variant, VariantDependencySet]]:
        """Return every variant paired with its merged declarations.

        Raises:
            VariantDependencyConflict: On the first conflicting variant.
        """
        return [(variant, self.merge(variant)) for variant in self.variants()]

    def _flavor_tuple(self, entry: dict[str, str], what: str) -> tuple[tuple[str, str], ...]:
        known = {d.name: d for d in self.manifest.dimensions}
        for dimension, flavor in entry.items():
            if dimension not in known:
                raise ManifestError(f"{what} names unknown dimension '{dimension}'")
            if flavor not in known[dimension].flavors:
                raise ManifestError(
                    f"{what} names unknown flavor '{flavor}' in dimension '{dimension}'"
                )
        missing = [name for name in known if name not in entry]
        if missing:
            raise ManifestError(f"{what} entry {entry} must name a flavor for {missing}")
        return tuple((d.name, entry[d.name]) for d in self.manifest.dimensions)


def _check_compatible(
    coordinate: Coordinate,
    existing: tuple[str, str, VersionSpec],
    incoming: tuple[str, str, VersionSpec],
) -> None:
    """Raise if two flavor declarations pin disjoint versions."""
    if existing[2].intersects(incoming[2]):
        return
    raise VariantDependencyConflict(
        str(coordinate),
        (existing[0], existing[1], str(existing[2])),
        (incoming[0], incoming[1], str(incoming[2])),
    )
