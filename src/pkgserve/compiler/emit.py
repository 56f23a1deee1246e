"""Registry-form output: every module becomes a factory inside one ES module."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from pkgserve.compiler.model import ResolvedId
from pkgserve.compiler.scan import ModuleSyntax, declared_names, mask_source, opens_block

REFERENCE_TOKEN = re.compile(r"(?<![\w$])[A-Za-z_$][\w$]*|[()\[\]{}]")
OPENING = frozenset("([{")
CLOSING = frozenset(")]}")

RUNTIME = """\
const __modules = Object.create(null);
const __cache = Object.create(null);
function __require(id) {
  if (id in __cache) return __cache[id];
  const exports = (__cache[id] = Object.create(null));
  __modules[id](exports);
  return exports;
}
function __export(target, getters) {
  for (const name in getters) {
    Object.defineProperty(target, name, { enumerable: true, configurable: true, get: getters[name] });
  }
}
function __reexport(target, source) {
  for (const name in source) {
    if (name !== "default" && !Object.prototype.hasOwnProperty.call(target, name)) {
      Object.defineProperty(target, name, { enumerable: true, configurable: true, get: () => source[name] });
    }
  }
}"""


@dataclass(slots=True)
class LinkedModule:
    id: str
    code: str
    syntax: ModuleSyntax
    resolutions: dict[str, ResolvedId] = field(default_factory=dict)
    commonjs: bool = False
    shims: list[str] = field(default_factory=list)


def render_module(module: LinkedModule) -> str:
    deps: dict[str, str] = {}
    requires: list[str] = []
    getters: list[str] = []
    stars: list[str] = []
    bindings: list[str] = []
    imported: dict[str, str] = {}
    edits: list[tuple[int, int, str]] = []

    def dep(source: str) -> str:
        target = module.resolutions[source].id
        if target not in deps:
            deps[target] = f"__dep{len(deps)}"
            requires.append(f"const {deps[target]} = __require({_js(target)});")
        return deps[target]

    statements = sorted((*module.syntax.imports, *module.syntax.exports), key=lambda s: s.start)
    for statement in statements:
        if statement.source is not None:
            dep(statement.source)

    # Imports stay live: every read goes through the dependency's export getter.
    for statement in module.syntax.imports:
        local_dep = dep(statement.source)
        for binding in statement.bindings:
            if binding.imported == "*":
                bindings.append(f"const {binding.local} = {local_dep};")
            else:
                imported[binding.local] = f"{local_dep}[{_js(binding.imported)}]"
        edits.append((statement.start, statement.end, ""))

    masked = mask_source(module.code, substitutions=True) if imported else ""
    # A name re-declared in a nested scope cannot be rewritten; bind it once instead.
    for local in sorted(declared_names(masked) & imported.keys()):
        bindings.append(f"const {local} = {imported.pop(local)};")

    for statement in module.syntax.exports:
        kind = statement.kind
        if kind == "default-expression":
            getters.append(_getter("default", "$$default"))
            edits.append((statement.start, statement.end, "const $$default = "))
        elif kind in ("default-declaration", "declaration", "local"):
            getters.extend(
                _getter(exported, imported.get(local, local))
                for local, exported in statement.names
            )
            edits.append((statement.start, statement.end, ""))
        elif kind == "reexport":
            local_dep = dep(statement.source or "")
            getters.extend(
                _getter(exported, f"{local_dep}[{_js(name)}]")
                for name, exported in statement.names
            )
            edits.append((statement.start, statement.end, ""))
        elif kind == "star-as":
            local_dep = dep(statement.source or "")
            getters.extend(_getter(exported, local_dep) for _, exported in statement.names)
            edits.append((statement.start, statement.end, ""))
        else:
            stars.append(f"__reexport(__exports, {dep(statement.source or '')});")
            edits.append((statement.start, statement.end, ""))

    for name in module.shims:
        if module.commonjs:
            # Undetected CommonJS exports are read from module.exports at access time.
            value = f"__exports.__moduleExports[{_js(name)}]"
            getters.append(
                _getter(name, f"(__exports.__moduleExports == null ? undefined : {value})")
            )
        else:
            getters.append(_getter(name, "undefined"))

    for call in module.syntax.dynamic_imports:
        target = module.resolutions[call.source]
        if target.external:
            replacement = f"import({_js(target.id)})"
        else:
            replacement = f"Promise.resolve().then(() => __require({_js(target.id)}))"
        edits.append((call.start, call.end, replacement))

    if imported:
        removed = [(start, end) for start, end, _ in edits]
        edits.extend(binding_references(masked, imported, skip=removed))

    body = module.code
    for start, end, replacement in sorted(edits, reverse=True):
        body = body[:start] + replacement + body[end:]

    lines = [f"__modules[{_js(module.id)}] = function (__exports) {{"]
    if getters:
        lines.append("__export(__exports, {\n" + ",\n".join(f"  {g}" for g in getters) + "\n});")
    lines.extend(requires)
    lines.extend(stars)
    lines.extend(bindings)
    lines.append(body.rstrip())
    lines.append("};")
    return "\n".join(lines)


def binding_references(
    masked: str,
    bindings: Mapping[str, str],
    *,
    skip: Sequence[tuple[int, int]] = (),
) -> list[tuple[int, int, str]]:
    """Edits replacing each read of a name in *bindings* with its expression.

    *masked* is the module source masked with template substitutions kept.
    Property names, object keys and member accesses are left alone; a
    shorthand property ``{ name }`` becomes ``{ name: <expression> }``.
    """
    edits: list[tuple[int, int, str]] = []
    brackets: list[str] = []
    for match in REFERENCE_TOKEN.finditer(masked):
        token = match.group()
        if token in OPENING:
            brackets.append(token)
            continue
        if token in CLOSING:
            if brackets:
                brackets.pop()
            continue
        expression = bindings.get(token)
        start, end = match.span()
        if expression is None or any(low <= start < high for low, high in skip):
            continue

        before = _previous_chars(masked, start)
        after = _skip_space(masked, end)
        following = masked[after : after + 1]
        if before.endswith(".") and not before.endswith("..."):
            continue
        previous = before[-1:]
        if previous in ("{", ",") and following == ":":
            continue
        if following == "(" and opens_block(masked, after):
            # method definition
            continue
        if previous in ("{", ",") and following in ("}", ",") and brackets[-1:] == ["{"]:
            edits.append((start, end, f"{token}: {expression}"))
            continue
        edits.append((start, end, expression))
    return edits


def _previous_chars(text: str, index: int) -> str:
    index -= 1
    while index >= 0 and text[index].isspace():
        index -= 1
    return text[max(0, index - 2) : index + 1]


def _skip_space(text: str, index: int) -> int:
    while index < len(text) and text[index].isspace():
        index += 1
    return index


def render_bundle(
    *,
    modules: Iterable[LinkedModule],
    entry: str,
    externals: Sequence[str],
    exports: Sequence[str],
    external_stars: Sequence[str] = (),
) -> str:
    lines = [
        f"import * as __external{index} from {_js(url)};" for index, url in enumerate(externals)
    ]
    lines.append(RUNTIME)
    lines.extend(
        f"__cache[{_js(url)}] = __external{index};" for index, url in enumerate(externals)
    )
    lines.extend(render_module(module) for module in modules)

    lines.append(f"const __entry = __require({_js(entry)});")
    if "default" in exports:
        lines.append('export default __entry["default"];')
    named = [name for name in exports if name != "default"]
    for index, name in enumerate(named):
        lines.append(f"const __export{index} = __entry[{_js(name)}];")
    if named:
        specs = ", ".join(f"__export{index} as {name}" for index, name in enumerate(named))
        lines.append(f"export {{ {specs} }};")
    lines.extend(f"export * from {_js(url)};" for url in external_stars)
    return "\n".join(lines) + "\n"


def _getter(name: str, expression: str) -> str:
    return f"{_js(name)}: () => {expression}"


def _js(value: str) -> str:
    return json.dumps(value)
