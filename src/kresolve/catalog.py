"""Version catalog table and the resolver for catalog indirections.

A catalog has four tables: ``versions`` (key to version text),
``libraries`` (key to coordinate plus a version or ``version.ref``),
``bundles`` (key to an ordered list of library keys) and ``plugins``.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

from kresolve.errors import CatalogRefNotFound, ManifestError
from kresolve.models import Coordinate, DependencyDeclaration, VariantDependencySet
from kresolve.versions import VersionSpec

logger = logging.getLogger(__name__)

DIMENSIONS = ("versions", "libraries", "bundles", "plugins")


@dataclass(frozen=True)
class CatalogLibrary:
    """A ``[catalog.libraries]`` entry."""

    key: str
    coordinate: Coordinate
    version: Optional[str] = None
    version_ref: Optional[str] = None


@dataclass(frozen=True)
class CatalogPlugin:
    """A ``[catalog.plugins]`` entry."""

    key: str
    id: str
    version: Optional[str] = None
    version_ref: Optional[str] = None


@dataclass
class CatalogTable:
    """In-memory catalog with the four lookup dimensions."""

    versions: dict[str, str] = field(default_factory=dict)
    libraries: dict[str, CatalogLibrary] = field(default_factory=dict)
    bundles: dict[str, list[str]] = field(default_factory=dict)
    plugins: dict[str, CatalogPlugin] = field(default_factory=dict)

    def lookup(
        self, dimension: str, key: str
    ) -> Union[VersionSpec, CatalogLibrary, list[Coordinate], CatalogPlugin, None]:
        """Look up one key in a catalog dimension.

        Args:
            dimension: One of "versions", "libraries", "bundles", "plugins".
            key: Entry key within that dimension.

        Returns:
            A VersionSpec for versions, a CatalogLibrary for libraries, the
            bundle's coordinates for bundles, a CatalogPlugin for plugins,
            or None if the key is absent.

        Raises:
            ValueError: If the dimension is unknown.
            CatalogRefNotFound: If a bundle names a library key that does
                not exist.
        """
        if dimension not in DIMENSIONS:
            raise ValueError(f"Unknown catalog dimension '{dimension}'")
        if dimension == "versions":
            text = self.versions.get(key)
            return VersionSpec.parse(text) if text is not None else None
        if dimension == "libraries":
            return self.libraries.get(key)
        if dimension == "bundles":
            keys = self.bundles.get(key)
            if keys is None:
                return None
            missing = [k for k in keys if k not in self.libraries]
            if missing:
                raise CatalogRefNotFound(missing[0], key, table="libraries")
            return [self.libraries[k].coordinate for k in keys]
        return self.plugins.get(key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CatalogTable":
        """Build a table from the manifest's ``[catalog]`` section.

        Libraries may name their coordinate with ``group`` and ``artifact``
        or with ``module = "group:artifact"``. ``version.ref`` arrives from
        TOML as a nested ``{"version": {"ref": ...}}`` table.

        Raises:
            ManifestError: If an entry is malformed.
        """
        versions = {str(k): str(v) for k, v in data.get("versions", {}).items()}

        libraries: dict[str, CatalogLibrary] = {}
        for key, entry in data.get("libraries", {}).items():
            if isinstance(entry, str):
                group, artifact, version = _split_gav(entry, f"catalog library '{key}'")
                libraries[key] = CatalogLibrary(key, Coordinate(group, artifact), version)
                continue
            coordinate = _library_coordinate(key, entry)
            version, version_ref = split_version_fields(entry)
            libraries[key] = CatalogLibrary(key, coordinate, version, version_ref)

        bundles: dict[str, list[str]] = {}
        for key, members in data.get("bundles", {}).items():
            if not isinstance(members, list):
                raise ManifestError(f"Catalog bundle '{key}' must be a list of library keys")
            bundles[key] = [str(m) for m in members]

        plugins: dict[str, CatalogPlugin] = {}
        for key, entry in data.get("plugins", {}).items():
            if isinstance(entry, str):
                plugin_id, _, version = entry.partition(":")
                plugins[key] = CatalogPlugin(key, plugin_id, version or None)
                continue
            if "id" not in entry:
                raise ManifestError(f"Catalog plugin '{key}' is missing 'id'")
            version, version_ref = split_version_fields(entry)
            plugins[key] = CatalogPlugin(key, entry["id"], version, version_ref)

        return cls(versions=versions, libraries=libraries, bundles=bundles, plugins=plugins)


def _split_gav(text: str, what: str) -> tuple[str, str, str]:
    parts = text.split(":")
    if len(parts) != 3 or not all(parts):
        raise ManifestError(f"Invalid {what} '{text}', expected group:artifact:version")
    return parts[0], parts[1], parts[2]


def _library_coordinate(key: str, entry: dict[str, Any]) -> Coordinate:
    if "module" in entry:
        try:
            return Coordinate.parse(entry["module"])
        except ValueError as e:
            raise ManifestError(f"Catalog library '{key}': {e}") from e
    if "group" not in entry or "artifact" not in entry:
        raise ManifestError(
            f"Catalog library '{key}' needs 'group' and 'artifact' (or 'module')"
        )
    return Coordinate(entry["group"], entry["artifact"])


def split_version_fields(entry: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Return ``(version, version_ref)`` from a catalog or dependency table."""
    version = entry.get("version")
    if isinstance(version, dict):
        return None, version.get("ref")
    return version, entry.get("version.ref")


class CatalogResolver:
    """Replaces catalog indirections in a VariantDependencySet.

    After resolution every declaration has a concrete coordinate and a
    concrete VersionSpec, and each coordinate appears once.
    """

    def __init__(self, table: Optional[CatalogTable] = None) -> None:
        self.table = table or CatalogTable()

    def resolve(self, dependency_set: VariantDependencySet) -> VariantDependencySet:
        """Resolve ``catalog``, ``bundle`` and ``version.ref`` entries.

        Bundles expand in their defined order and inherit the declaring
        entry's scope, optional flag and exclusions. When two entries end
        up on the same coordinate, the first position is kept and the
        later entry's values win.

        Raises:
            CatalogRefNotFound: If a referenced key does not exist.
            ManifestError: If a declaration cannot be made concrete.
        """
        resolved: dict[Coordinate, DependencyDeclaration] = {}
        for declaration in dependency_set:
            for concrete in self.expand(declaration):
                if concrete.coordinate in resolved:
                    logger.debug(
                        "%s: '%s' overrides earlier declaration of %s",
                        dependency_set.variant.name,
                        concrete.alias,
                        concrete.coordinate,
                    )
                resolved[concrete.coordinate] = concrete

        return VariantDependencySet(dependency_set.variant, tuple(resolved.values()))

    def resolve_plugin(self, key: str, alias: Optional[str] = None) -> tuple[str, Optional[str]]:
        """Return ``(plugin id, version)`` for a catalog plugin key.

        Raises:
            CatalogRefNotFound: If the plugin or its version ref is missing.
        """
        plugin = self.table.plugins.get(key)
        if plugin is None:
            raise CatalogRefNotFound(key, alias or key, table="plugins")
        if plugin.version_ref is not None:
            version = self.table.versions.get(plugin.version_ref)
            if version is None:
                raise CatalogRefNotFound(plugin.version_ref, alias or key, table="versions")
            return plugin.id, version
        return plugin.id, plugin.version

    def expand(self, declaration: DependencyDeclaration) -> list[DependencyDeclaration]:
        """Return the concrete declarations one entry stands for.

        A bundle yields one declaration per member; anything else yields one.

        Raises:
            CatalogRefNotFound: If a referenced key does not exist.
            ManifestError: If the declaration cannot be made concrete.
        """
        if declaration.catalog is None:
            if declaration.coordinate is None or declaration.spec is None:
                raise ManifestError(
                    f"Dependency '{declaration.alias}' needs a coordinate and a version"
                )
            return [replace(declaration, spec=self._concrete(declaration.spec, declaration.alias))]

        if declaration.bundle:
            members = self.table.bundles.get(declaration.catalog)
            if members is None:
                raise CatalogRefNotFound(declaration.catalog, declaration.alias, table="bundles")
            expanded = []
            for key in members:
                library = self._library(key, declaration.alias)
                expanded.append(
                    replace(
                        declaration,
                        alias=f"{declaration.alias}.{key}",
                        coordinate=library.coordinate,
                        spec=self._library_spec(library, declaration.alias),
                        catalog=None,
                        bundle=False,
                    )
                )
            return expanded

        library = self._library(declaration.catalog, declaration.alias)
        if declaration.spec is not None:
            spec = self._concrete(declaration.spec, declaration.alias)
        else:
            spec = self._library_spec(library, declaration.alias)
        return [replace(declaration, coordinate=library.coordinate, spec=spec, catalog=None)]

    def _library(self, key: str, alias: str) -> CatalogLibrary:
        library = self.table.libraries.get(key)
        if library is None:
            raise CatalogRefNotFound(key, alias, table="libraries")
        return library

    def _library_spec(self, library: CatalogLibrary, alias: str) -> VersionSpec:
        if library.version_ref is not None:
            return self._concrete(VersionSpec.catalog_ref(library.version_ref), alias)
        if library.version is None:
            raise ManifestError(f"Catalog library '{library.key}' declares no version")
        return _parse_spec(library.version, library.key)

    def _concrete(self, spec: VersionSpec, alias: str) -> VersionSpec:
        if not spec.is_ref:
            return spec
        text = self.table.versions.get(spec.ref)
        if text is None:
            raise CatalogRefNotFound(spec.ref, alias, table="versions")
        return _parse_spec(text, alias)


def _parse_spec(text: str, owner: str) -> VersionSpec:
    try:
        return VersionSpec.parse(text)
    except ValueError as e:
        raise ManifestError(f"Invalid version for '{owner}': {e}") from e
