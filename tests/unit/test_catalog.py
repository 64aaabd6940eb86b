"""Unit tests for the version catalog."""

import pytest

from kresolve.catalog import CatalogLibrary, CatalogResolver, CatalogTable
from kresolve.errors import CatalogRefNotFound, ManifestError
from kresolve.models import (
    Coordinate,
    DependencyDeclaration,
    Exclusion,
    Scope,
    Variant,
    VariantDependencySet,
)
from kresolve.versions import VersionSpec

OKHTTP = Coordinate("com.squareup.okhttp3", "okhttp")
LOGGING = Coordinate("com.squareup.okhttp3", "logging-interceptor")
OKIO = Coordinate("com.squareup.okio", "okio")


@pytest.fixture
def table() -> CatalogTable:
    """Return a catalog shaped like a typical [catalog] section."""
    return CatalogTable.from_dict(
        {
            "versions": {"okhttp": "4.12.0", "okio": "[3.0,4.0)"},
            "libraries": {
                "okhttp": {"module": "com.squareup.okhttp3:okhttp", "version": {"ref": "okhttp"}},
                "logging": {
                    "group": "com.squareup.okhttp3",
                    "artifact": "logging-interceptor",
                    "version.ref": "okhttp",
                },
                "okio": "com.squareup.okio:okio:3.6.0",
                "broken": {"module": "com.example:broken", "version": {"ref": "nope"}},
            },
            "bundles": {"network": ["okhttp", "logging"]},
            "plugins": {
                "kotlin": {"id": "org.jetbrains.kotlin.jvm", "version": "1.9.22"},
                "detekt": {"id": "io.gitlab.arturbosch.detekt", "version": {"ref": "okhttp"}},
            },
        }
    )


def _dependency_set(*declarations: DependencyDeclaration) -> VariantDependencySet:
    return VariantDependencySet(Variant((), "dev"), declarations)


class TestCatalogTable:
    """Test table parsing and lookup."""

    def test_library_forms(self, table: CatalogTable) -> None:
        """Test the module, group/artifact and string library forms."""
        assert table.libraries["okhttp"] == CatalogLibrary("okhttp", OKHTTP, None, "okhttp")
        assert table.libraries["logging"].coordinate == LOGGING
        assert table.libraries["logging"].version_ref == "okhttp"
        assert table.libraries["okio"].version == "3.6.0"

    def test_lookup_dimensions(self, table: CatalogTable) -> None:
        """Test each lookup dimension."""
        assert table.lookup("versions", "okio") == VersionSpec.parse("[3.0,4.0)")
        assert table.lookup("libraries", "okio").coordinate == OKIO
        assert table.lookup("bundles", "network") == [OKHTTP, LOGGING]
        assert table.lookup("plugins", "kotlin").id == "org.jetbrains.kotlin.jvm"
        assert table.lookup("libraries", "missing") is None

    def test_lookup_bundle_with_unknown_member(self) -> None:
        """Test that a bundle naming a missing library is reported, not trimmed."""
        table = CatalogTable.from_dict(
            {
                "libraries": {"okio": "com.squareup.okio:okio:3.6.0"},
                "bundles": {"io": ["okio", "okhttp"]},
            }
        )
        with pytest.raises(CatalogRefNotFound) as exc_info:
            table.lookup("bundles", "io")

        assert exc_info.value.key == "okhttp"
        assert exc_info.value.alias == "io"
        assert exc_info.value.table == "libraries"

    def test_lookup_unknown_dimension(self, table: CatalogTable) -> None:
        """Test that unknown dimensions are rejected."""
        with pytest.raises(ValueError, match="Unknown catalog dimension"):
            table.lookup("aliases", "okhttp")

    def test_invalid_library(self) -> None:
        """Test that a library without a coordinate is rejected."""
        with pytest.raises(ManifestError, match="needs 'group' and 'artifact'"):
            CatalogTable.from_dict({"libraries": {"bad": {"version": "1.0"}}})

    def test_invalid_bundle(self) -> None:
        """Test that a bundle must be a list."""
        with pytest.raises(ManifestError, match="must be a list"):
            CatalogTable.from_dict({"bundles": {"bad": "okhttp"}})


class TestCatalogResolver:
    """Test resolution of catalog indirections."""

    def test_resolve_library(self, table: CatalogTable) -> None:
        """Test that a catalog entry gets its coordinate and version."""
        resolved = CatalogResolver(table).resolve(
            _dependency_set(DependencyDeclaration(alias="http", catalog="okhttp"))
        )
        (declaration,) = resolved.declarations
        assert declaration.coordinate == OKHTTP
        assert declaration.spec == VersionSpec.parse("4.12.0")
        assert declaration.catalog is None

    def test_resolve_version_ref(self, table: CatalogTable) -> None:
        """Test a direct declaration using version.ref."""
        resolved = CatalogResolver(table).resolve(
            _dependency_set(
                DependencyDeclaration(
                    alias="okio", coordinate=OKIO, spec=VersionSpec.catalog_ref("okio")
                )
            )
        )
        assert resolved.declarations[0].spec.raw == "[3.0,4.0)"

    def test_override_catalog_version(self, table: CatalogTable) -> None:
        """Test that an explicit version beats the catalog's."""
        resolved = CatalogResolver(table).resolve(
            _dependency_set(
                DependencyDeclaration(
                    alias="http", catalog="okhttp", spec=VersionSpec.parse("4.11.0")
                )
            )
        )
        assert resolved.declarations[0].spec.raw == "4.11.0"

    def test_bundle_expansion(self, table: CatalogTable) -> None:
        """Test that bundles expand in order and inherit entry settings."""
        exclusion = Exclusion("org.jetbrains.kotlin")
        resolved = CatalogResolver(table).resolve(
            _dependency_set(
                DependencyDeclaration(
                    alias="net",
                    catalog="network",
                    bundle=True,
                    scope=Scope.RUNTIME,
                    exclusions=(exclusion,),
                )
            )
        )
        assert [d.coordinate for d in resolved] == [OKHTTP, LOGGING]
        assert [d.alias for d in resolved] == ["net.okhttp", "net.logging"]
        assert all(d.scope == Scope.RUNTIME for d in resolved)
        assert all(d.exclusions == (exclusion,) for d in resolved)

    def test_duplicate_coordinate_keeps_first_position(self, table: CatalogTable) -> None:
        """Test that a later entry for the same coordinate overrides in place."""
        resolved = CatalogResolver(table).resolve(
            _dependency_set(
                DependencyDeclaration(alias="http", catalog="okhttp"),
                DependencyDeclaration(alias="okio", catalog="okio"),
                DependencyDeclaration(
                    alias="pinned", coordinate=OKHTTP, spec=VersionSpec.parse("4.11.0")
                ),
            )
        )
        assert [d.coordinate for d in resolved] == [OKHTTP, OKIO]
        assert resolved.declarations[0].spec.raw == "4.11.0"

    def test_missing_library(self, table: CatalogTable) -> None:
        """Test that an unknown catalog key names the key and alias."""
        with pytest.raises(CatalogRefNotFound) as exc_info:
            CatalogResolver(table).resolve(
                _dependency_set(DependencyDeclaration(alias="retrofit", catalog="retrofit"))
            )
        assert exc_info.value.key == "retrofit"
        assert exc_info.value.alias == "retrofit"
        assert "retrofit" in str(exc_info.value)

    def test_missing_version_ref(self, table: CatalogTable) -> None:
        """Test that a library's dangling version.ref is reported."""
        with pytest.raises(CatalogRefNotFound) as exc_info:
            CatalogResolver(table).resolve(
                _dependency_set(DependencyDeclaration(alias="b", catalog="broken"))
            )
        assert exc_info.value.key == "nope"
        assert exc_info.value.table == "versions"

    def test_missing_bundle(self, table: CatalogTable) -> None:
        """Test that an unknown bundle is reported."""
        with pytest.raises(CatalogRefNotFound, match="bundles key 'ui'"):
            CatalogResolver(table).resolve(
                _dependency_set(DependencyDeclaration(alias="ui", catalog="ui", bundle=True))
            )

    def test_resolve_plugin(self, table: CatalogTable) -> None:
        """Test plugin id and version lookup."""
        resolver = CatalogResolver(table)
        assert resolver.resolve_plugin("kotlin") == ("org.jetbrains.kotlin.jvm", "1.9.22")
        assert resolver.resolve_plugin("detekt") == ("io.gitlab.arturbosch.detekt", "4.12.0")
        with pytest.raises(CatalogRefNotFound):
            resolver.resolve_plugin("ksp")
