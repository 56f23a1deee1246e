"""Lexical scanning of ECMAScript and CommonJS module syntax.

This is not a parser. Comments, string, template and regular-expression
literals are first masked with spaces (keeping offsets and newlines), then
statement patterns are matched against the masked text. Offsets found in
the masked text are valid in the original source.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

KEYWORDS_BEFORE_REGEX = frozenset(
    {
        "return",
        "typeof",
        "instanceof",
        "in",
        "of",
        "new",
        "delete",
        "void",
        "throw",
        "case",
        "do",
        "else",
        "yield",
        "await",
    }
)
REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%<>~^")
IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")

IMPORT_FROM = re.compile(r"(?<![\w$.])import\s*(?P<clause>[\w$*{}\s,]+?)\s*from\s*(?P<q>['\"])")
IMPORT_BARE = re.compile(r"(?<![\w$.])import\s*(?P<q>['\"])")
IMPORT_DYNAMIC = re.compile(r"(?<![\w$.])import\s*\(\s*(?P<q>['\"])")
EXPORT_DEFAULT = re.compile(r"(?<![\w$.])export\s+default\b\s*")
EXPORT_DECL = re.compile(
    r"(?<![\w$.])export\s+(?=(?:async\s+function|function|class|const|let|var)\b)"
)
EXPORT_BRACES = re.compile(r"(?<![\w$.])export\s*\{(?P<specs>[^}]*)\}")
EXPORT_STAR = re.compile(
    r"(?<![\w$.])export\s*\*\s*(?:as\s+(?P<alias>[\w$]+)\s*)?from\s*(?P<q>['\"])"
)
FROM_CLAUSE = re.compile(r"\s*from\s*(?P<q>['\"])")
REQUIRE_CALL = re.compile(r"(?<![\w$.])require\s*\(\s*(?P<q>['\"])")
CLOSE_CALL = re.compile(r"\s*\)")
STATEMENT_END = re.compile(r"[ \t]*;?")
DEFAULT_FUNCTION = re.compile(r"(?:async\s+)?function\b\s*\*?\s*(?P<name>[A-Za-z_$][\w$]*)?")
DEFAULT_CLASS = re.compile(r"class\b\s*(?P<name>[A-Za-z_$][\w$]*)?")
DECL_FUNCTION = re.compile(
    r"(?:async\s+)?function\s*\*?\s*(?P<name>[A-Za-z_$][\w$]*)|class\s+(?P<cls>[A-Za-z_$][\w$]*)"
)
DECL_VARIABLE = re.compile(r"(?:const|let|var)\s+")
DECLARATION_KEYWORD = re.compile(r"(?<![\w$.])(?:var|let|const)\s+(?=[\w$\[{])")
NAMED_FUNCTION = re.compile(
    r"(?<![\w$.])(?:function\b\s*\*?|class\b)\s*(?P<name>[A-Za-z_$][\w$]*)"
)
ARROW_PARAMETER = re.compile(r"(?<![\w$.])(?P<name>[A-Za-z_$][\w$]*)\s*=>")
BRACKET = re.compile(r"[()\[\]{}]")
ARROW_AFTER = re.compile(r"\s*=>")
BLOCK_AFTER = re.compile(r"\s*\{")
PARAMETER_OWNER = re.compile(
    r"(?:(?<![\w$.])(?P<function>function\b\s*\*?\s*(?:[A-Za-z_$][\w$]*)?|catch)"
    r"|(?<![\w$])(?P<method>[A-Za-z_$][\w$]*))\s*$"
)
NON_METHOD_WORDS = frozenset(
    {"if", "for", "while", "switch", "with", "return", "typeof", "void", "await", "yield", "in"}
)
SPECIFIER = re.compile(r"(?P<name>[\w$]+)(?:\s+as\s+(?P<alias>[\w$]+))?")
NAMESPACE_CLAUSE = re.compile(r"\*\s*as\s+(?P<local>[\w$]+)")
ESCAPE = re.compile(
    r"\\(?:u(?P<u>[0-9a-fA-F]{4})|u\{(?P<ub>[0-9a-fA-F]+)\}|x(?P<x>[0-9a-fA-F]{2})|(?P<c>.))",
    re.DOTALL,
)
SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}

ExportKind = Literal[
    "default-expression",
    "default-declaration",
    "declaration",
    "local",
    "reexport",
    "star",
    "star-as",
]


@dataclass(frozen=True, slots=True)
class ImportBinding:
    imported: str
    local: str


@dataclass(frozen=True, slots=True)
class ImportStatement:
    start: int
    end: int
    source: str
    bindings: tuple[ImportBinding, ...] = ()


@dataclass(frozen=True, slots=True)
class ExportStatement:
    """An export; for prefix kinds ``start:end`` covers only the ``export`` keywords."""

    start: int
    end: int
    kind: ExportKind
    names: tuple[tuple[str, str], ...] = ()
    source: str | None = None
    local: str | None = None


@dataclass(frozen=True, slots=True)
class CallSite:
    start: int
    end: int
    source: str


@dataclass(frozen=True, slots=True)
class ModuleSyntax:
    imports: tuple[ImportStatement, ...] = ()
    exports: tuple[ExportStatement, ...] = ()
    dynamic_imports: tuple[CallSite, ...] = ()
    requires: tuple[CallSite, ...] = field(default=())

    @property
    def has_module_syntax(self) -> bool:
        return bool(self.imports or self.exports)

    def sources(self) -> tuple[str, ...]:
        """Every statically imported source, in first-appearance order."""
        found: dict[str, int] = {}
        for item in self.imports:
            found.setdefault(item.source, item.start)
        for item in self.exports:
            if item.source is not None:
                found.setdefault(item.source, item.start)
        for call in self.dynamic_imports:
            found.setdefault(call.source, call.start)
        return tuple(sorted(found, key=found.__getitem__))

    def export_names(self) -> tuple[str, ...]:
        names: list[str] = []
        for item in self.exports:
            names.extend(exported for _, exported in item.names)
        return tuple(names)


def mask_source(code: str, *, substitutions: bool = False) -> str:
    """Blank out comments and literal contents, preserving length and newlines.

    With *substitutions*, the expressions inside template ``${...}`` are kept
    (themselves masked) instead of blanked along with the template text.
    """
    chars = list(code)
    n = len(code)
    i = 0
    last = ""
    word = ""

    def blank(start: int, end: int) -> None:
        for k in range(start, min(end, n)):
            if chars[k] != "\n":
                chars[k] = " "

    while i < n:
        ch = code[i]
        nxt = code[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = code.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
            continue
        if ch == "/" and nxt == "*":
            end = code.find("*/", i + 2)
            end = n if end == -1 else end + 2
            blank(i, end)
            i = end
            continue
        if ch in "'\"":
            end = _string_end(code, i)
            blank(i + 1, end - 1)
            i, last, word = end, ch, ""
            continue
        if ch == "`":
            end = _template_end(code, i)
            blank(i + 1, end - 1)
            if substitutions:
                for inner_start, inner_end in _template_substitutions(code, i, end):
                    inner = code[inner_start:inner_end]
                    chars[inner_start:inner_end] = mask_source(inner, substitutions=True)
            i, last, word = end, ch, ""
            continue
        if ch == "/" and (last == "" or last in REGEX_PRECEDERS or word in KEYWORDS_BEFORE_REGEX):
            end = _regex_end(code, i)
            if end != -1:
                blank(i + 1, end)
                i, last, word = end, "a", ""
                continue
        if ch.isspace():
            i += 1
            continue
        if ch.isalnum() or ch in "_$":
            start = i
            while i < n and (code[i].isalnum() or code[i] in "_$"):
                i += 1
            word = code[start:i]
            last = code[i - 1]
            continue
        last, word = ch, ""
        i += 1
    return "".join(chars)


def scan_module(code: str, masked: str | None = None) -> ModuleSyntax:
    """Find import, export, dynamic import and ``require()`` sites in *code*."""
    masked = mask_source(code) if masked is None else masked
    imports: list[ImportStatement] = []
    exports: list[ExportStatement] = []
    dynamic: list[CallSite] = []
    requires: list[CallSite] = []
    claimed: list[tuple[int, int]] = []

    for match in IMPORT_FROM.finditer(masked):
        source, end = string_literal_at(code, masked, match.start("q"))
        end = _statement_end(masked, end)
        imports.append(
            ImportStatement(
                start=match.start(),
                end=end,
                source=source,
                bindings=_import_bindings(match.group("clause")),
            )
        )
        claimed.append((match.start(), end))
    for match in IMPORT_BARE.finditer(masked):
        source, end = string_literal_at(code, masked, match.start("q"))
        end = _statement_end(masked, end)
        imports.append(ImportStatement(start=match.start(), end=end, source=source))
        claimed.append((match.start(), end))
    for match in IMPORT_DYNAMIC.finditer(masked):
        source, end = string_literal_at(code, masked, match.start("q"))
        close = CLOSE_CALL.match(masked, end)
        if close is not None:
            dynamic.append(CallSite(start=match.start(), end=close.end(), source=source))

    for match in EXPORT_STAR.finditer(masked):
        source, end = string_literal_at(code, masked, match.start("q"))
        end = _statement_end(masked, end)
        alias = match.group("alias")
        exports.append(
            ExportStatement(
                start=match.start(),
                end=end,
                kind="star-as" if alias else "star",
                names=(("*", alias),) if alias else (),
                source=source,
            )
        )
    for match in EXPORT_BRACES.finditer(masked):
        names = tuple(_specifiers(match.group("specs")))
        from_clause = FROM_CLAUSE.match(masked, match.end())
        if from_clause is not None:
            source, end = string_literal_at(code, masked, from_clause.start("q"))
            end = _statement_end(masked, end)
            exports.append(
                ExportStatement(
                    start=match.start(), end=end, kind="reexport", names=names, source=source
                )
            )
        else:
            end = _statement_end(masked, match.end())
            exports.append(ExportStatement(start=match.start(), end=end, kind="local", names=names))
    for match in EXPORT_DEFAULT.finditer(masked):
        exports.append(_default_export(masked, match))
    for match in EXPORT_DECL.finditer(masked):
        names = _declaration_names(masked, match.end())
        exports.append(
            ExportStatement(
                start=match.start(),
                end=match.end(),
                kind="declaration",
                names=tuple((name, name) for name in names),
            )
        )

    for match in REQUIRE_CALL.finditer(masked):
        source, end = string_literal_at(code, masked, match.start("q"))
        close = CLOSE_CALL.match(masked, end)
        if close is not None:
            requires.append(CallSite(start=match.start(), end=close.end(), source=source))

    return ModuleSyntax(
        imports=tuple(sorted(imports, key=lambda item: item.start)),
        exports=tuple(sorted(exports, key=lambda item: item.start)),
        dynamic_imports=tuple(sorted(dynamic, key=lambda item: item.start)),
        requires=tuple(
            call for call in sorted(requires, key=lambda item: item.start)
            if not any(start <= call.start < end for start, end in claimed)
        ),
    )


def declared_names(masked: str) -> set[str]:
    """Names bound anywhere in *masked*: declarations, parameters, catch clauses.

    Parameter lists are recognised by what surrounds them (``function``,
    ``catch``, a method name before a block, or a following ``=>``), so
    default-value expressions may add spurious names.
    """
    names: set[str] = set()
    for match in NAMED_FUNCTION.finditer(masked):
        names.add(match.group("name"))
    for match in ARROW_PARAMETER.finditer(masked):
        names.add(match.group("name"))
    for match in DECLARATION_KEYWORD.finditer(masked):
        names.update(_declaration_names(masked, match.start()))
    for start, close in _paren_groups(masked):
        if ARROW_AFTER.match(masked, close) is None and not _owns_parameters(masked, start, close):
            continue
        names.update(_pattern_names(masked[start + 1 : close - 1]))
    return names


def _paren_groups(masked: str) -> list[tuple[int, int]]:
    """``(open, close + 1)`` offsets of every parenthesised group, in one pass."""
    groups: list[tuple[int, int]] = []
    stack: list[tuple[str, int]] = []
    for match in BRACKET.finditer(masked):
        ch = match.group()
        if ch in "([{":
            stack.append((ch, match.start()))
        elif stack:
            opener, start = stack.pop()
            if opener == "(":
                groups.append((start, match.end()))
    return groups


def _owns_parameters(masked: str, paren: int, close: int) -> bool:
    owner = PARAMETER_OWNER.search(masked, max(0, paren - 80), paren)
    if owner is None:
        return False
    if owner.group("function") is not None:
        return True
    method = owner.group("method")
    return method not in NON_METHOD_WORDS and BLOCK_AFTER.match(masked, close) is not None


def opens_block(masked: str, paren: int) -> bool:
    """Whether the parenthesised group at *paren* is followed by a ``{`` block."""
    return BLOCK_AFTER.match(masked, _matching_bracket(masked, paren)) is not None


def object_literal_keys(masked: str, brace: int) -> tuple[str, ...]:
    """Top-level property names of the object literal opening at *brace*."""
    close = _matching_bracket(masked, brace)
    keys: list[str] = []
    for part in _split_top_level(masked[brace + 1 : close - 1]):
        part = part.strip()
        if not part or part.startswith("..."):
            continue
        part = re.sub(r"^(?:async\s+|get\s+|set\s+)?\*?\s*", "", part)
        match = IDENTIFIER.match(part)
        if match is not None:
            keys.append(match.group())
    return tuple(keys)


def _default_export(masked: str, match: re.Match[str]) -> ExportStatement:
    rest = match.end()
    function = DEFAULT_FUNCTION.match(masked, rest)
    declared = function if function is not None else DEFAULT_CLASS.match(masked, rest)
    name = declared.group("name") if declared is not None else None
    if declared is not None and name is not None and name != "extends":
        return ExportStatement(
            start=match.start(),
            end=match.end(),
            kind="default-declaration",
            names=((name, "default"),),
            local=name,
        )
    return ExportStatement(
        start=match.start(),
        end=match.end(),
        kind="default-expression",
        names=(("default", "default"),),
    )


def _declaration_names(masked: str, pos: int) -> list[str]:
    function = DECL_FUNCTION.match(masked, pos)
    if function is not None:
        return [function.group("name") or function.group("cls")]
    variable = DECL_VARIABLE.match(masked, pos)
    if variable is None:
        return []

    names: list[str] = []
    n = len(masked)
    i = variable.end()
    depth = 0
    expect_name = True
    while i < n:
        ch = masked[i]
        if expect_name:
            if ch.isspace():
                i += 1
                continue
            if ch in "{[":
                close = _matching_bracket(masked, i)
                names.extend(_pattern_names(masked[i + 1 : close - 1]))
                i, expect_name = close, False
                continue
            ident = IDENTIFIER.match(masked, i)
            if ident is None:
                break
            names.append(ident.group())
            i, expect_name = ident.end(), False
            continue
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth < 0:
                break
        elif depth == 0 and ch == ",":
            expect_name = True
        elif depth == 0 and ch == ";":
            break
        elif depth == 0 and ch == "\n" and _ends_statement(masked, i):
            break
        i += 1
    return names


def _pattern_names(inner: str) -> list[str]:
    names: list[str] = []
    for part in _split_top_level(inner):
        part = part.strip()
        if not part:
            continue
        if part.startswith("..."):
            part = part[3:].strip()
        target = _split_top_level(part, separator=":")
        value = target[-1].strip()
        value = _split_top_level(value, separator="=")[0].strip()
        if value[:1] in "{[":
            names.extend(_pattern_names(value[1:-1]))
            continue
        ident = IDENTIFIER.match(value)
        if ident is not None:
            names.append(ident.group())
    return names


def _split_top_level(text: str, separator: str = ",") -> list[str]:
    parts: list[str] = []
    depth = 0
    start = 0
    for index, ch in enumerate(text):
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == separator and depth == 0:
            if separator == "=" and text[index + 1 : index + 2] in ("=", ">"):
                continue
            parts.append(text[start:index])
            start = index + 1
    parts.append(text[start:])
    return parts


def _ends_statement(masked: str, newline: int) -> bool:
    before = masked[:newline].rstrip()
    after = masked[newline + 1 :].lstrip()
    if before and before[-1] in ",=+-*/%&|^!?:<>(":
        return False
    if after and after[0] in ",.=+-*/%&|^?:([":
        return False
    return True


def _import_bindings(clause: str) -> tuple[ImportBinding, ...]:
    bindings: list[ImportBinding] = []
    rest = clause
    brace = re.search(r"\{(?P<named>[^}]*)\}", clause)
    if brace is not None:
        rest = clause[: brace.start()] + clause[brace.end() :]
    namespace = NAMESPACE_CLAUSE.search(rest)
    if namespace is not None:
        rest = rest[: namespace.start()] + rest[namespace.end() :]
    default = IDENTIFIER.search(rest)
    if default is not None:
        bindings.append(ImportBinding(imported="default", local=default.group()))
    if namespace is not None:
        bindings.append(ImportBinding(imported="*", local=namespace.group("local")))
    if brace is not None:
        for imported, local in _specifiers(brace.group("named")):
            bindings.append(ImportBinding(imported=imported, local=local))
    return tuple(bindings)


def _specifiers(specs: str) -> list[tuple[str, str]]:
    found: list[tuple[str, str]] = []
    for spec in specs.split(","):
        match = SPECIFIER.fullmatch(spec.strip())
        if match is not None:
            found.append((match.group("name"), match.group("alias") or match.group("name")))
    return found


def string_literal_at(code: str, masked: str, quote_index: int) -> tuple[str, int]:
    """Decode the string literal opening at *quote_index*; return it and the end offset."""
    quote = masked[quote_index]
    close = masked.find(quote, quote_index + 1)
    if close == -1:
        close = len(masked) - 1
    raw = code[quote_index + 1 : close]
    return ESCAPE.sub(_unescape, raw), close + 1


def _unescape(match: re.Match[str]) -> str:
    hex_digits = match.group("u") or match.group("ub") or match.group("x")
    if hex_digits:
        return chr(int(hex_digits, 16))
    char = match.group("c")
    return SIMPLE_ESCAPES.get(char, char)


def _statement_end(masked: str, pos: int) -> int:
    match = STATEMENT_END.match(masked, pos)
    return match.end() if match is not None else pos


def _matching_bracket(text: str, start: int) -> int:
    depth = 0
    for index in range(start, len(text)):
        ch = text[index]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth == 0:
                return index + 1
    return len(text)


def _string_end(code: str, start: int) -> int:
    quote = code[start]
    n = len(code)
    i = start + 1
    while i < n:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n":
            return i
        i += 1
    return n


def _template_end(code: str, start: int) -> int:
    n = len(code)
    i = start + 1
    while i < n:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            return i + 1
        if ch == "$" and code[i + 1 : i + 2] == "{":
            i = _skip_braces(code, i + 2)
            continue
        i += 1
    return n


def _template_substitutions(code: str, start: int, end: int) -> list[tuple[int, int]]:
    """Spans of the expressions inside ``${...}`` of the template opening at *start*."""
    spans: list[tuple[int, int]] = []
    i = start + 1
    while i < end:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "$" and code[i + 1 : i + 2] == "{":
            close = _skip_braces(code, i + 2)
            spans.append((i + 2, max(i + 2, close - 1)))
            i = close
            continue
        i += 1
    return spans


def _skip_braces(code: str, start: int) -> int:
    n = len(code)
    depth = 1
    i = start
    while i < n:
        ch = code[i]
        if ch in "'\"":
            i = _string_end(code, i)
            continue
        if ch == "`":
            i = _template_end(code, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return n


def _regex_end(code: str, start: int) -> int:
    n = len(code)
    i = start + 1
    in_class = False
    while i < n:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n":
            return -1
        if in_class:
            if ch == "]":
                in_class = False
        elif ch == "[":
            in_class = True
        elif ch == "/":
            i += 1
            while i < n and (code[i].isalnum() or code[i] in "_$"):
                i += 1
            return i
        i += 1
    return -1
