import posixpath
from collections.abc import Callable
from typing import Any

import pytest

from pkgserve.compiler.graph import BuildContext, GraphCompiler
from pkgserve.compiler.model import (
    BaseStage,
    CachedModule,
    LoadResult,
    ResolvedId,
    StageContext,
    TransformResult,
)
from pkgserve.errors import BuildError, DisallowedAccessError
from pkgserve.observability import StructuredLogger


class DictStage(BaseStage):
    """Serves modules from a mapping; bare imports stay external."""

    name = "dict"

    def __init__(self, modules: dict[str, str]) -> None:
        self.modules = modules
        self.loads: list[str] = []

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        if source.startswith("./"):
            base = posixpath.dirname(importer) if importer else ""
            path = posixpath.normpath(posixpath.join(base, source))
            return ResolvedId(path) if path in self.modules else None
        if source in self.modules:
            return ResolvedId(source)
        if source.startswith("ext:"):
            return ResolvedId("/@npm/" + source[4:], external=True)
        return None

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        self.loads.append(module_id)
        if module_id in self.modules:
            return LoadResult(self.modules[module_id])
        return None


class UpperStage(BaseStage):
    name = "upper"

    def __init__(self) -> None:
        self.calls = 0

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        self.calls += 1
        return TransformResult(code.replace("hello", "HELLO"), meta={"seen": module_id})


class ExplodingStage(BaseStage):
    name = "exploding"

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        if "boom" in code:
            raise ValueError("cannot handle boom")
        return None


@pytest.mark.asyncio
async def test_compile_links_modules_in_discovery_order() -> None:
    stage = DictStage(
        {
            "main.js": (
                'import { a } from "./a.js";\n'
                'import { b } from "./b.js";\n'
                "export const total = a + b;\n"
                "export default total;\n"
            ),
            "a.js": 'import { c } from "./c.js";\nexport const a = c;\n',
            "b.js": "export const b = 2;\n",
            "c.js": "export const c = 1;\n",
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert result.modules == ("main.js", "a.js", "c.js", "b.js")
    assert result.exports == ("default", "total")
    assert result.externals == ()
    assert 'export default __entry["default"];' in result.code
    assert "export { __export0 as total };" in result.code
    assert 'const __entry = __require("main.js");' in result.code
    assert "import " not in result.code.split("const __modules")[1]


@pytest.mark.asyncio
async def test_compile_keeps_other_packages_external() -> None:
    stage = DictStage(
        {
            "main.js": (
                'import { h } from "ext:preact";\n'
                'export * from "ext:preact/hooks";\n'
                "export const view = () => h('div');\n"
            )
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert result.externals == ("/@npm/preact", "/@npm/preact/hooks")
    assert 'import * as __external0 from "/@npm/preact";' in result.code
    assert '__cache["/@npm/preact"] = __external0;' in result.code
    assert 'export * from "/@npm/preact/hooks";' in result.code
    assert result.exports == ("view",)


@pytest.mark.asyncio
async def test_missing_named_import_is_shimmed_with_a_warning() -> None:
    logger = StructuredLogger()
    stage = DictStage(
        {
            "main.js": 'import { missing } from "./a.js";\nexport default missing;\n',
            "a.js": "export const present = 1;\n",
        }
    )

    result = await GraphCompiler(logger).compile("main.js", stages=[stage], package="demo@1.0.0")

    assert result.warnings == ("'missing' is not exported by a.js, imported by main.js",)
    assert '"missing": () => undefined' in result.code
    assert logger.records_for("compile")[0]["level"] == "warning"


@pytest.mark.asyncio
async def test_star_reexports_expose_inner_names_but_not_default() -> None:
    stage = DictStage(
        {
            "main.js": 'export * from "./inner.js";\n',
            "inner.js": "export const one = 1;\nexport default 2;\n",
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert result.exports == ("one",)
    assert '__reexport(__exports, __dep0);' in result.code


@pytest.mark.asyncio
async def test_dynamic_imports_are_rewritten() -> None:
    stage = DictStage(
        {
            "main.js": (
                'export const load = () => import("./lazy.js");\n'
                'export const remote = () => import("ext:chart");\n'
            ),
            "lazy.js": "export default 1;\n",
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert 'Promise.resolve().then(() => __require("lazy.js"))' in result.code
    assert 'import("/@npm/chart")' in result.code
    assert result.externals == ()
    assert result.modules == ("main.js", "lazy.js")


@pytest.mark.asyncio
async def test_stage_failures_are_wrapped_with_stage_and_module() -> None:
    stage = DictStage({"main.js": "export const boom = 1;\n"})

    with pytest.raises(BuildError) as excinfo:
        await GraphCompiler().compile(
            "main.js", stages=[stage, ExplodingStage()], package="demo@1.0.0"
        )

    error = excinfo.value
    assert error.stage == "exploding"
    assert error.context["module"] == "main.js"
    assert error.context["package"] == "demo@1.0.0"
    assert isinstance(error.__cause__, ValueError)


@pytest.mark.asyncio
async def test_disallowed_access_is_not_rewrapped() -> None:
    class Guard(BaseStage):
        name = "guard"

        async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
            raise DisallowedAccessError("no disk")

    with pytest.raises(DisallowedAccessError):
        await GraphCompiler().compile(
            "main.js", stages=[Guard(), DictStage({"main.js": ""})], package="demo@1.0.0"
        )


@pytest.mark.asyncio
async def test_unresolvable_import_fails_in_resolve_stage() -> None:
    stage = DictStage({"main.js": 'import x from "./nowhere.js";\nexport default x;\n'})

    with pytest.raises(BuildError) as excinfo:
        await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert excinfo.value.stage == "resolve"
    assert excinfo.value.context["import"] == "./nowhere.js"


@pytest.mark.asyncio
async def test_unresolvable_or_external_entry_fails() -> None:
    compiler = GraphCompiler()

    with pytest.raises(BuildError):
        await compiler.compile("nothing.js", stages=[DictStage({})], package="demo@1.0.0")
    with pytest.raises(BuildError):
        await compiler.compile("ext:other", stages=[DictStage({})], package="demo@1.0.0")


@pytest.mark.asyncio
async def test_warm_cache_skips_transform_for_unchanged_sources() -> None:
    stage = DictStage({"main.js": 'export const greeting = "hello";\n'})
    upper = UpperStage()
    compiler = GraphCompiler()

    first = await compiler.compile("main.js", stages=[stage, upper], package="demo@1.0.0")
    second = await compiler.compile(
        "main.js", stages=[stage, upper], package="demo@1.0.0", cache=first.cache
    )

    assert upper.calls == 1
    assert second.code == first.code
    assert second.cache["main.js"].meta == {"seen": "main.js"}


@pytest.mark.asyncio
async def test_stale_warm_cache_entries_are_retransformed() -> None:
    stage = DictStage({"main.js": 'export const greeting = "hello";\n'})
    upper = UpperStage()
    stale = {"main.js": CachedModule(id="main.js", source="old", code="export const x = 0;\n")}

    result = await GraphCompiler().compile(
        "main.js", stages=[stage, upper], package="demo@1.0.0", cache=stale
    )

    assert upper.calls == 1
    assert '"HELLO"' in result.code
    assert result.exports == ("greeting",)


@pytest.mark.asyncio
async def test_build_context_resolve_can_skip_a_stage() -> None:
    first = DictStage({"a.js": ""})
    second = DictStage({"a.js": ""})
    ctx = BuildContext([first, second], package="demo@1.0.0", logger=StructuredLogger())

    resolved = await ctx.resolve("a.js", None, skip=first)

    assert resolved == ResolvedId("a.js")
    assert await ctx.resolve("b.js", None) is None


COUNTER_MODULES = {
    "main.js": (
        'import { count, inc } from "./counter.js";\n'
        "export function bump() {\n"
        "  inc();\n"
        "  return count;\n"
        "}\n"
    ),
    "counter.js": "export let count = 0;\nexport function inc() {\n  count++;\n}\n",
}


@pytest.mark.asyncio
async def test_imported_bindings_are_read_at_use_time() -> None:
    result = await GraphCompiler().compile(
        "main.js", stages=[DictStage(COUNTER_MODULES)], package="demo@1.0.0"
    )

    assert "const count" not in result.code
    assert '  __dep0["inc"]();' in result.code
    assert '  return __dep0["count"];' in result.code


@pytest.mark.asyncio
async def test_live_let_export_is_seen_by_importers(
    run_bundle: Callable[[str, str], Any],
) -> None:
    result = await GraphCompiler().compile(
        "main.js", stages=[DictStage(COUNTER_MODULES)], package="demo@1.0.0"
    )

    assert run_bundle(result.code, "return [m.bump(), m.bump()];") == [1, 2]


@pytest.mark.asyncio
async def test_cyclic_imports_evaluate(run_bundle: Callable[[str, str], Any]) -> None:
    stage = DictStage(
        {
            "main.js": (
                'import { b } from "./b.js";\n'
                'export const a = "a";\n'
                "export const both = () => a + b();\n"
            ),
            "b.js": 'import { a } from "./main.js";\nexport const b = () => a.toUpperCase();\n',
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert result.modules == ("main.js", "b.js")
    assert run_bundle(result.code, "return m.both();") == "aA"


@pytest.mark.asyncio
async def test_shadowed_imports_keys_and_templates_stay_valid(
    run_bundle: Callable[[str, str], Any],
) -> None:
    stage = DictStage(
        {
            "main.js": (
                'import { h, label } from "./dep.js";\n'
                "export const view = () => ({\n"
                "  h,\n"
                "  text: `${label}!`,\n"
                "  items: [1, 2].map((h) => h * 2),\n"
                "  nested: { label: label },\n"
                "  called: { label() { return label; } }.label(),\n"
                "});\n"
            ),
            "dep.js": 'export const h = "H";\nexport const label = "L";\n',
        }
    )

    result = await GraphCompiler().compile("main.js", stages=[stage], package="demo@1.0.0")

    assert 'const h = __dep0["h"];' in result.code
    assert "`${" + '__dep0["label"]}!`' in result.code
    assert run_bundle(result.code, "return m.view();") == {
        "h": "H",
        "text": "L!",
        "items": [2, 4],
        "nested": {"label": "L"},
        "called": "L",
    }
