import json

import pytest

from pkgserve.builder.stages import (
    AliasStage,
    AssetUrlStage,
    BuiltinsStage,
    CommonJsStage,
    JsonStage,
    NeverDiskStage,
    PackageSourceStage,
    ProcessEnvStage,
)
from pkgserve.builder.stages.commonjs import HELPERS_ID, detect_exports
from pkgserve.compiler.graph import BuildContext
from pkgserve.compiler.model import ResolvedId, Stage
from pkgserve.compiler.scan import mask_source
from pkgserve.errors import DisallowedAccessError
from pkgserve.observability import StructuredLogger
from pkgserve.registry.base import PackageFiles


def _files(name: str, files: dict[str, str], version: str = "1.0.0") -> PackageFiles:
    return PackageFiles(
        name=name,
        version=version,
        files={path: content.encode("utf-8") for path, content in files.items()},
    )


def _source(files: PackageFiles) -> PackageSourceStage:
    return PackageSourceStage(files, public_path="/@npm", style_loader_url="/_runtime.js")


def _ctx(*stages: Stage) -> BuildContext:
    return BuildContext(stages, package="pkg@1.0.0", logger=StructuredLogger())


def test_detect_exports_finds_static_commonjs_exports() -> None:
    code = (
        "exports.alpha = 1;\n"
        "module.exports.beta = 2;\n"
        'exports["gamma"] = 3;\n'
        "Object.defineProperty(exports, 'delta', { get: () => 4 });\n"
        "exports.__esModule = true;\n"
        "exports.default = 5;\n"
        "if (exports.alpha == 1) {}\n"
    )

    assert detect_exports(code, mask_source(code)) == ("alpha", "beta", "gamma", "delta")


@pytest.mark.asyncio
async def test_commonjs_transform_wraps_module_and_hoists_requires() -> None:
    stage = CommonJsStage()
    code = "var dep = require('./dep');\nexports.run = function () { return dep(); };\n"

    result = await stage.transform(code, "npm:pkg@1.0.0/index.js", _ctx(stage))

    assert result is not None
    assert result.meta == {"commonjs": True}
    assert f"from {json.dumps(HELPERS_ID)};" in result.code
    assert 'import * as __require0 from "./dep";' in result.code
    assert "var dep = __requireInterop(__require0);" in result.code
    assert "(function (module, exports, require) {" in result.code
    assert "export { __moduleExports };" in result.code
    assert "export { __export0 as run };" in result.code


@pytest.mark.asyncio
async def test_commonjs_transform_leaves_plain_esm_alone() -> None:
    stage = CommonJsStage()

    result = await stage.transform("export const a = 1;\n", "npm:pkg@1.0.0/a.js", _ctx(stage))

    assert result is None


@pytest.mark.asyncio
async def test_commonjs_transform_hoists_requires_inside_esm_without_wrapping() -> None:
    stage = CommonJsStage()
    code = "const legacy = require('legacy');\nexport default legacy;\n"

    result = await stage.transform(code, "npm:pkg@1.0.0/a.js", _ctx(stage))

    assert result is not None
    assert result.meta == {}
    assert 'import * as __require0 from "legacy";' in result.code
    assert "__module" not in result.code


@pytest.mark.asyncio
async def test_commonjs_helpers_resolve_and_load() -> None:
    stage = CommonJsStage()
    ctx = _ctx(stage)

    assert await stage.resolve_id(HELPERS_ID, None, ctx) == ResolvedId(HELPERS_ID)
    loaded = await stage.load(HELPERS_ID, ctx)
    assert loaded is not None
    assert "export function requireInterop" in loaded.code


@pytest.mark.asyncio
async def test_process_env_substitutes_node_env_and_adds_shims() -> None:
    stage = ProcessEnvStage("production")
    code = (
        "if (process.env.NODE_ENV !== 'production') warn();\n"
        "process.nextTick(run);\n"
        "global.thing = 1;\n"
    )

    result = await stage.transform(code, "npm:pkg@1.0.0/index.js", _ctx(stage))

    assert result is not None
    assert 'if ("production" !== ' in result.code
    assert result.code.startswith("const process = {")
    assert "const global = globalThis;" in result.code


@pytest.mark.asyncio
async def test_process_env_skips_declared_names_and_strings() -> None:
    stage = ProcessEnvStage("development")
    code = "const process = makeProcess();\nconst label = 'process.env.NODE_ENV';\n"

    result = await stage.transform(code, "npm:pkg@1.0.0/index.js", _ctx(stage))

    assert result is None


@pytest.mark.asyncio
async def test_process_env_treats_imported_names_as_declared() -> None:
    stage = ProcessEnvStage("production")
    code = (
        'import process from "process";\n'
        'import { global } from "./globals.js";\n'
        "export const mode = () => process.env.FOO ?? global.name;\n"
    )

    result = await stage.transform(code, "npm:pkg@1.0.0/index.js", _ctx(stage))

    assert result is None


@pytest.mark.asyncio
async def test_builtins_stub_node_modules_except_own_package() -> None:
    stage = BuiltinsStage("events")
    ctx = _ctx(stage)

    assert await stage.resolve_id("fs", None, ctx) == ResolvedId("\0builtin:fs")
    assert await stage.resolve_id("node:path", None, ctx) == ResolvedId("\0builtin:path")
    assert await stage.resolve_id("events", None, ctx) is None
    assert await stage.resolve_id("left-pad", None, ctx) is None
    loaded = await stage.load("\0builtin:fs", ctx)
    assert loaded is not None
    assert loaded.code == "export default {};\n"


@pytest.mark.asyncio
async def test_alias_rewrites_then_resolves_through_other_stages() -> None:
    alias = AliasStage({"react": "preact/compat", "react/jsx-runtime": "preact/jsx-runtime"})
    source = _source(_files("app", {"index.js": ""}))
    ctx = _ctx(alias, source)

    assert alias.rewrite("react-dom") is None
    assert await ctx.resolve("react", None) == ResolvedId("/@npm/preact/compat", external=True)
    assert await ctx.resolve("react/jsx-runtime", None) == ResolvedId(
        "/@npm/preact/jsx-runtime", external=True
    )


@pytest.mark.asyncio
async def test_package_source_prefers_module_field_and_relative_files() -> None:
    files = _files(
        "some-pkg",
        {
            "package.json": json.dumps({"name": "some-pkg", "main": "cjs/index.js", "module": "esm"}),
            "esm/index.js": 'import "./helper";\n',
            "esm/helper.js": "",
            "cjs/index.js": "",
        },
    )
    stage = _source(files)
    ctx = _ctx(stage)

    entry = await stage.resolve_id("some-pkg", None, ctx)
    assert entry == ResolvedId("npm:some-pkg@1.0.0/esm/index.js")
    helper = await stage.resolve_id("./helper", entry.id, ctx)
    assert helper == ResolvedId("npm:some-pkg@1.0.0/esm/helper.js")
    loaded = await stage.load(helper.id, ctx)
    assert loaded is not None
    assert loaded.code == ""


@pytest.mark.asyncio
async def test_package_source_honours_exports_map_conditions_and_patterns() -> None:
    manifest = {
        "name": "modern",
        "exports": {
            ".": {"require": "./index.cjs", "import": "./index.mjs"},
            "./features/*": {"browser": "./dist/features/*.browser.js", "default": "./x.js"},
        },
    }
    files = _files(
        "modern",
        {
            "package.json": json.dumps(manifest),
            "index.mjs": "",
            "index.cjs": "",
            "dist/features/chart.browser.js": "",
        },
    )
    stage = _source(files)
    ctx = _ctx(stage)

    assert await stage.resolve_id("modern", None, ctx) == ResolvedId("npm:modern@1.0.0/index.mjs")
    assert await stage.resolve_id("modern/features/chart", None, ctx) == ResolvedId(
        "npm:modern@1.0.0/dist/features/chart.browser.js"
    )


@pytest.mark.asyncio
async def test_package_source_applies_browser_field_replacements() -> None:
    manifest = {
        "name": "iso",
        "main": "node.js",
        "browser": {"./node.js": "./browser.js", "fs": False, "./server-only.js": False},
    }
    files = _files(
        "iso",
        {"package.json": json.dumps(manifest), "node.js": "", "browser.js": "", "server-only.js": ""},
    )
    stage = _source(files)
    ctx = _ctx(stage)

    assert await stage.resolve_id("iso", None, ctx) == ResolvedId("npm:iso@1.0.0/browser.js")
    empty = await stage.resolve_id("fs", "npm:iso@1.0.0/browser.js", ctx)
    assert empty == ResolvedId("\0empty:fs")
    assert await stage.resolve_id("./server-only", "npm:iso@1.0.0/browser.js", ctx) == ResolvedId(
        "\0empty:server-only.js"
    )
    loaded = await stage.load("\0empty:fs", ctx)
    assert loaded is not None
    assert loaded.code == "export default {};\n"


@pytest.mark.asyncio
async def test_package_source_externalizes_other_packages_and_urls() -> None:
    stage = _source(_files("app", {"index.js": ""}))
    ctx = _ctx(stage)

    assert await stage.resolve_id("preact/hooks", None, ctx) == ResolvedId(
        "/@npm/preact/hooks", external=True
    )
    assert await stage.resolve_id("@scope/ui@2", None, ctx) == ResolvedId(
        "/@npm/@scope/ui@2", external=True
    )
    assert await stage.resolve_id("https://cdn.example/x.js", None, ctx) == ResolvedId(
        "https://cdn.example/x.js", external=True
    )
    assert await stage.resolve_id("/_runtime.js", None, ctx) == ResolvedId(
        "/_runtime.js", external=True
    )


@pytest.mark.parametrize("source", ["/etc/passwd", "file:///etc/passwd", "../../outside.js"])
@pytest.mark.asyncio
async def test_package_source_refuses_paths_outside_the_package(source: str) -> None:
    stage = _source(_files("app", {"index.js": ""}))

    with pytest.raises(DisallowedAccessError):
        await stage.resolve_id(source, "npm:app@1.0.0/index.js", _ctx(stage))


@pytest.mark.asyncio
async def test_package_source_refuses_unpublished_files() -> None:
    stage = _source(_files("app", {"index.js": ""}))

    with pytest.raises(DisallowedAccessError):
        await stage.load("npm:app@1.0.0/secret.js", _ctx(stage))


@pytest.mark.asyncio
async def test_json_stage_exports_default_and_identifier_keys() -> None:
    stage = JsonStage()
    code = json.dumps({"name": "pkg", "not-valid": 1, "default": 2})

    result = await stage.transform(code, "npm:pkg@1.0.0/package.json", _ctx(stage))

    assert result is not None
    assert "export default __json;" in result.code
    assert "export { __json as __moduleExports };" in result.code
    assert "export { __json0 as name };" in result.code
    assert await stage.transform("{}", "npm:pkg@1.0.0/index.js", _ctx(stage)) is None


@pytest.mark.asyncio
async def test_asset_urls_replace_stylesheets_and_binary_files() -> None:
    source = _source(_files("ui", {"theme.css": "body {}", "logo.wasm": ""}, version="3.1.0"))
    stage = AssetUrlStage(source, style_loader_url="/_runtime.js")
    ctx = _ctx(source, stage)

    css = await stage.transform("body {}", "npm:ui@3.1.0/theme.css", ctx)
    wasm = await stage.transform("", "npm:ui@3.1.0/logo.wasm", ctx)

    assert css is not None
    assert css.code == (
        'import { style } from "/_runtime.js";\n'
        'style("/@npm/ui@3.1.0/theme.css");\n'
        'export default "/@npm/ui@3.1.0/theme.css";\n'
    )
    assert wasm is not None
    assert wasm.code == 'export default "/@npm/ui@3.1.0/logo.wasm";\n'
    assert await stage.transform("", "npm:ui@3.1.0/index.js", ctx) is None


@pytest.mark.asyncio
async def test_never_disk_refuses_every_load() -> None:
    stage = NeverDiskStage()

    with pytest.raises(DisallowedAccessError):
        await stage.load("/home/user/.ssh/id_rsa", _ctx(stage))


@pytest.mark.asyncio
async def test_asset_urls_flag_files_without_a_known_type() -> None:
    source = _source(_files("ui", {"icons.png": "", "shapes.geom3": ""}))
    stage = AssetUrlStage(source, style_loader_url="/_runtime.js")
    ctx = _ctx(source, stage)

    image = await stage.transform("", "npm:ui@1.0.0/icons.png", ctx)
    other = await stage.transform("", "npm:ui@1.0.0/shapes.geom3", ctx)

    assert image is not None
    assert image.code == 'export default "/@npm/ui@1.0.0/icons.png";\n'
    assert other is not None
    assert other.code == 'export default "/@npm/ui@1.0.0/shapes.geom3?asset";\n'
