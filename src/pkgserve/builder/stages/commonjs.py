"""CommonJS to ECMAScript module conversion.

A CommonJS module is wrapped in a function receiving ``module``, ``exports``
and ``require``. Static ``require("x")`` calls are hoisted to namespace
imports, so the dependency graph sees them, and unwrapped at the call site.
``module.exports`` becomes the default export; assignments to ``exports.name``
(and keys of a ``module.exports = {...}`` literal) become named exports.
"""

from __future__ import annotations

import json
import re

from pkgserve.builder.stages.package_source import is_script
from pkgserve.compiler.model import (
    BaseStage,
    LoadResult,
    ResolvedId,
    StageContext,
    TransformResult,
)
from pkgserve.compiler.scan import (
    ModuleSyntax,
    mask_source,
    object_literal_keys,
    scan_module,
    string_literal_at,
)

HELPERS_ID = "\0commonjs-helpers"
HELPERS_SOURCE = """\
export function requireInterop(ns) {
  if (ns == null) return ns;
  if ("__moduleExports" in ns) return ns.__moduleExports;
  const keys = Object.keys(ns);
  if (keys.length === 1 && keys[0] === "default") return ns["default"];
  return ns;
}
export function missingRequire(id) {
  throw new Error("Cannot require " + JSON.stringify(id) + ": only static require() calls are bundled");
}
"""

COMMONJS_MARKER = re.compile(
    r"(?<![\w$.])(?:module\s*\.\s*exports\b|exports\s*(?:\.|\[)|exports\s*=(?!=))"
)
EXPORTS_PROPERTY = re.compile(
    r"(?<![\w$.])(?:module\s*\.\s*)?exports\s*\.\s*(?P<name>[A-Za-z_$][\w$]*)\s*=(?!=)"
)
EXPORTS_BRACKET = re.compile(r"(?<![\w$.])(?:module\s*\.\s*)?exports\s*\[\s*(?P<q>['\"])")
DEFINE_PROPERTY = re.compile(
    r"Object\s*\.\s*defineProperty\s*\(\s*(?:module\s*\.\s*)?exports\s*,\s*(?P<q>['\"])"
)
MODULE_EXPORTS_OBJECT = re.compile(r"(?<![\w$.])module\s*\.\s*exports\s*=\s*(?=\{)")
VALID_NAME = re.compile(r"[A-Za-z_$][\w$]*")

# Never exposed as named exports.
RESERVED_NAMES = frozenset(
    {
        "default",
        "__esModule",
        "__moduleExports",
        "arguments",
        "await",
        "break",
        "case",
        "catch",
        "class",
        "const",
        "continue",
        "debugger",
        "delete",
        "do",
        "else",
        "enum",
        "eval",
        "export",
        "extends",
        "false",
        "finally",
        "for",
        "function",
        "if",
        "implements",
        "import",
        "in",
        "instanceof",
        "interface",
        "let",
        "new",
        "null",
        "package",
        "private",
        "protected",
        "public",
        "return",
        "static",
        "super",
        "switch",
        "this",
        "throw",
        "true",
        "try",
        "typeof",
        "var",
        "void",
        "while",
        "with",
        "yield",
    }
)


def detect_exports(code: str, masked: str) -> tuple[str, ...]:
    """Statically visible named exports of a CommonJS module."""
    found: dict[str, None] = {}
    for match in EXPORTS_PROPERTY.finditer(masked):
        found.setdefault(match.group("name"))
    for pattern in (EXPORTS_BRACKET, DEFINE_PROPERTY):
        for match in pattern.finditer(masked):
            name, _ = string_literal_at(code, masked, match.start("q"))
            found.setdefault(name)
    for match in MODULE_EXPORTS_OBJECT.finditer(masked):
        for name in object_literal_keys(masked, match.end()):
            found.setdefault(name)
    return tuple(
        name for name in found if VALID_NAME.fullmatch(name) and name not in RESERVED_NAMES
    )


def is_commonjs(module_id: str, masked: str, syntax: ModuleSyntax) -> bool:
    if syntax.has_module_syntax:
        return False
    return (
        module_id.endswith(".cjs")
        or bool(syntax.requires)
        or COMMONJS_MARKER.search(masked) is not None
    )


class CommonJsStage(BaseStage):
    name = "commonjs"

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        if source == HELPERS_ID:
            return ResolvedId(HELPERS_ID)
        return None

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        if module_id == HELPERS_ID:
            return LoadResult(HELPERS_SOURCE)
        return None

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        if not is_script(module_id):
            return None
        masked = mask_source(code)
        syntax = scan_module(code, masked)
        commonjs = is_commonjs(module_id, masked, syntax)
        if not commonjs and not syntax.requires:
            return None

        hoisted: dict[str, str] = {}
        body = code
        for index, source in enumerate(dict.fromkeys(call.source for call in syntax.requires)):
            hoisted[source] = f"__require{index}"
        for call in reversed(syntax.requires):
            unwrapped = f"__requireInterop({hoisted[call.source]})"
            body = body[: call.start] + unwrapped + body[call.end :]

        helpers = ["requireInterop as __requireInterop"]
        if commonjs:
            helpers.append("missingRequire as __missingRequire")
        lines = [f"import {{ {', '.join(helpers)} }} from {json.dumps(HELPERS_ID)};"]
        lines.extend(
            f"import * as {local} from {json.dumps(source)};" for source, local in hoisted.items()
        )
        if not commonjs:
            return TransformResult("\n".join([*lines, body]))

        lines.extend(
            [
                "var __module = { exports: {} };",
                "(function (module, exports, require) {",
                body.rstrip(),
                "}).call(__module.exports, __module, __module.exports, __missingRequire);",
                "var __moduleExports = __module.exports;",
                "export { __moduleExports };",
                "export default __moduleExports != null && __moduleExports.__esModule"
                ' ? __moduleExports["default"] : __moduleExports;',
            ]
        )
        names = detect_exports(code, masked)
        for index, name in enumerate(names):
            lines.append(
                f"var __export{index} = "
                f"__moduleExports == null ? undefined : __moduleExports.{name};"
            )
        if names:
            specs = ", ".join(f"__export{index} as {name}" for index, name in enumerate(names))
            lines.append(f"export {{ {specs} }};")
        return TransformResult("\n".join(lines) + "\n", meta={"commonjs": True})
