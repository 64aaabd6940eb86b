"""Loader for the dependency-related tables of a ``kresolve.toml`` manifest.

Only the tables that drive resolution are read: ``[package]``,
``[dependencies]``, ``[dev-dependencies]``, ``[flavors]``,
``[flavor.<name>.dependencies]``, ``[profile.<name>.dependencies]``,
``[catalog]`` and ``[repositories]``.
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from kresolve.catalog import CatalogTable, split_version_fields
from kresolve.errors import ManifestError
from kresolve.models import Coordinate, DependencyDeclaration, Exclusion, Scope
from kresolve.versions import VersionSpec

DEFAULT_PROFILES = ("dev", "release")
MANIFEST_NAME = "kresolve.toml"


@dataclass(frozen=True)
class Dimension:
    """A flavor dimension and its flavors in declaration order."""

    name: str
    flavors: tuple[str, ...]


@dataclass
class Manifest:
    """Dependency declarations of one project.

    Attributes:
        name: Project name.
        dimensions: Flavor dimensions in declaration order.
        profiles: Build profile names.
        exclude: Flavor combinations to drop, as dimension-to-flavor maps.
        default: Default flavor combination, if declared.
        dependencies: Declarations shared by every variant.
        flavor_dependencies: Extra declarations per flavor name.
        profile_dependencies: Override declarations per profile name.
        catalog: The version catalog.
        repositories: Repository name to base URL, in priority order.
    """

    name: str = "project"
    dimensions: list[Dimension] = field(default_factory=list)
    profiles: list[str] = field(default_factory=lambda: list(DEFAULT_PROFILES))
    exclude: list[dict[str, str]] = field(default_factory=list)
    default: Optional[dict[str, str]] = None
    dependencies: list[DependencyDeclaration] = field(default_factory=list)
    flavor_dependencies: dict[str, list[DependencyDeclaration]] = field(default_factory=dict)
    profile_dependencies: dict[str, list[DependencyDeclaration]] = field(default_factory=dict)
    catalog: CatalogTable = field(default_factory=CatalogTable)
    repositories: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """Build a manifest from parsed TOML data.

        Raises:
            ManifestError: If any table is malformed.
        """
        package = data.get("package", {})
        dependencies = _parse_table(data.get("dependencies", {}), Scope.COMPILE, "dependencies")
        dependencies += _parse_table(
            data.get("dev-dependencies", {}), Scope.TEST, "dev-dependencies"
        )

        dimensions, exclude, default = _parse_flavors(data.get("flavors"))

        flavor_dependencies = {
            name: _parse_table(
                table.get("dependencies", {}), Scope.COMPILE, f"flavor.{name}.dependencies"
            )
            for name, table in data.get("flavor", {}).items()
        }

        profiles = list(DEFAULT_PROFILES)
        profile_dependencies: dict[str, list[DependencyDeclaration]] = {}
        for name, table in data.get("profile", {}).items():
            if name not in profiles:
                profiles.append(name)
            profile_dependencies[name] = _parse_table(
                table.get("dependencies", {}), Scope.COMPILE, f"profile.{name}.dependencies"
            )

        repositories = {}
        for name, entry in data.get("repositories", {}).items():
            url = entry if isinstance(entry, str) else entry.get("url")
            if not url:
                raise ManifestError(f"Repository '{name}' has no url")
            repositories[name] = url

        return cls(
            name=package.get("name", "project"),
            dimensions=dimensions,
            profiles=profiles,
            exclude=exclude,
            default=default,
            dependencies=dependencies,
            flavor_dependencies=flavor_dependencies,
            profile_dependencies=profile_dependencies,
            catalog=CatalogTable.from_dict(data.get("catalog", {})),
            repositories=repositories,
        )


def load_manifest(path: Path) -> Manifest:
    """Read and parse a manifest file.

    Args:
        path: Path to ``kresolve.toml``.

    Returns:
        The parsed Manifest.

    Raises:
        FileNotFoundError: If the file does not exist.
        ManifestError: If the TOML is invalid or a table is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Invalid TOML in {path}: {e}") from e

    return Manifest.from_dict(data)


def _parse_flavors(
    data: Optional[dict[str, Any]],
) -> tuple[list[Dimension], list[dict[str, str]], Optional[dict[str, str]]]:
    if not data:
        return [], [], None

    dimensions = []
    for name in data.get("dimensions", []):
        flavors = data.get(name)
        if flavors is None:
            raise ManifestError(f"Flavor dimension '{name}' declares no flavors")
        names = list(flavors) if isinstance(flavors, (dict, list)) else []
        if not names:
            raise ManifestError(f"Flavor dimension '{name}' declares no flavors")
        dimensions.append(Dimension(name, tuple(str(n) for n in names)))

    exclude = [dict(entry) for entry in data.get("exclude", [])]
    default = data.get("default")
    return dimensions, exclude, dict(default) if default is not None else None


def _parse_table(
    table: dict[str, Any], scope: Scope, section: str
) -> list[DependencyDeclaration]:
    declarations = []
    for alias, value in table.items():
        try:
            declarations.append(parse_dependency(alias, value, scope))
        except ValueError as e:
            raise ManifestError(f"[{section}] {alias}: {e}") from e
    return declarations


def parse_dependency(
    alias: str, value: Any, default_scope: Scope = Scope.COMPILE
) -> DependencyDeclaration:
    """Parse one dependency entry.

    Accepted forms are ``"group:artifact:version"``, a table with
    ``group``/``artifact`` (or ``module``) and ``version``/``version.ref``,
    and a catalog table with ``catalog`` and optionally ``bundle``.

    Raises:
        ValueError: If the entry is malformed.
    """
    if isinstance(value, str):
        parts = value.split(":")
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"expected group:artifact:version, got '{value}'")
        return DependencyDeclaration(
            alias=alias,
            coordinate=Coordinate(parts[0], parts[1]),
            spec=VersionSpec.parse(parts[2]),
            scope=default_scope,
        )

    if not isinstance(value, dict):
        raise ValueError("dependency must be a string or a table")

    version, version_ref = split_version_fields(value)
    if version_ref is not None:
        spec: Optional[VersionSpec] = VersionSpec.catalog_ref(version_ref)
    elif version is not None:
        spec = VersionSpec.parse(str(version))
    else:
        spec = None

    common = {
        "alias": alias,
        "spec": spec,
        "scope": Scope.parse(value["scope"]) if "scope" in value else default_scope,
        "optional": bool(value.get("optional", False)),
        "exclusions": tuple(_parse_exclusion(e) for e in value.get("exclusions", [])),
    }

    if "catalog" in value:
        return DependencyDeclaration(
            catalog=str(value["catalog"]), bundle=bool(value.get("bundle", False)), **common
        )

    if "module" in value:
        coordinate = Coordinate.parse(value["module"])
    elif "group" in value and "artifact" in value:
        coordinate = Coordinate(value["group"], value["artifact"])
    else:
        raise ValueError("needs 'group' and 'artifact', 'module', or 'catalog'")

    if spec is None:
        raise ValueError("needs 'version' or 'version.ref'")
    return DependencyDeclaration(coordinate=coordinate, **common)


def _parse_exclusion(entry: Any) -> Exclusion:
    if isinstance(entry, str):
        return Exclusion.parse(entry)
    if isinstance(entry, dict) and "group" in entry:
        artifact = entry.get("artifact")
        return Exclusion(entry["group"], None if artifact in (None, "*") else artifact)
    raise ValueError(f"invalid exclusion {entry!r}")
