import pytest

from pkgserve.errors import MalformedSpecifierError
from pkgserve.specifier import normalize_specifier


def test_normalize_splits_name_version_and_subpath() -> None:
    spec = normalize_specifier("/left-pad@1.3.0")

    assert spec.name == "left-pad"
    assert spec.version_constraint == "1.3.0"
    assert spec.subpath == ""
    assert spec.wants_asset is False
    assert spec.wants_module is False


def test_normalize_handles_scoped_packages_with_ranges() -> None:
    spec = normalize_specifier("@scope/pkg@^2.1.0/dist/a.js")

    assert spec.name == "@scope/pkg"
    assert spec.version_constraint == "^2.1.0"
    assert spec.subpath == "dist/a.js"
    assert spec.specifier == "@scope/pkg@^2.1.0/dist/a.js"
    assert spec.module_id == "@scope/pkg/dist/a.js"


def test_normalize_without_version_leaves_constraint_unset() -> None:
    spec = normalize_specifier("preact/hooks/")

    assert spec.version_constraint is None
    assert spec.subpath == "hooks"
    assert spec.specifier == "preact/hooks"


def test_normalize_marks_assets_and_module_intent() -> None:
    spec = normalize_specifier("some-pkg@2.0.0/theme.css", query={"module"})

    assert spec.wants_asset is True
    assert spec.wants_module is True
    assert spec.is_stylesheet is True


@pytest.mark.parametrize(
    "extension",
    [".css", ".scss", ".sass", ".less", ".wasm", ".txt", ".json", ".png", ".svg", ".woff2"],
)
def test_asset_families_are_detected_by_extension(extension: str) -> None:
    assert normalize_specifier(f"pkg/file{extension}").wants_asset is True


@pytest.mark.parametrize(
    "subpath", ["index.js", "esm/index.mjs", "lib/main.cjs", "dist/vue.runtime.esm-browser"]
)
def test_scripts_and_dotted_module_paths_are_bundled(subpath: str) -> None:
    assert normalize_specifier(f"pkg/{subpath}").wants_asset is False


def test_asset_flag_serves_any_file_raw() -> None:
    assert normalize_specifier("pkg/data.bin3", query={"asset"}).wants_asset is True


@pytest.mark.parametrize(
    "path",
    ["", "/", "left-pad@", "left-pad/../etc/passwd", "pkg/a//b", "pkg\\x", "@scope", "pkg/./a"],
)
def test_malformed_specifiers_are_rejected(path: str) -> None:
    with pytest.raises(MalformedSpecifierError) as excinfo:
        normalize_specifier(path)

    assert excinfo.value.status_code == 400
    assert excinfo.value.code == "E_MALFORMED_SPECIFIER"
