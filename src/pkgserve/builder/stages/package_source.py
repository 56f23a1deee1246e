"""Resolution and loading of files inside the package being bundled.

Module ids have the form ``npm:<name>@<version>/<path>``. Imports of other
packages are left external as ``<public_path>/<specifier>`` URLs, and no
import may reach outside the package's published files.
"""

from __future__ import annotations

import posixpath
from typing import Any

from pkgserve.compiler.model import BaseStage, LoadResult, ResolvedId, StageContext
from pkgserve.errors import DisallowedAccessError
from pkgserve.registry.base import PackageFiles, contained_path
from pkgserve.specifier import SCRIPT_EXTENSIONS

MODULE_PREFIX = "npm:"
EMPTY_PREFIX = "\0empty:"
RESOLVE_EXTENSIONS = (".js", ".mjs", ".cjs", ".json")
INDEX_FILES = ("index.js", "index.mjs", "index.cjs", "index.json")
EXPORT_CONDITIONS = ("browser", "import", "module", "default", "require")
_MISSING = object()


def module_id_for(files: PackageFiles, path: str) -> str:
    return f"{MODULE_PREFIX}{files.package_id}/{path}"


def is_script(module_id: str) -> bool:
    """Whether *module_id* names JavaScript source (by extension)."""
    if module_id.startswith("\0"):
        return False
    tail = module_id.rsplit("/", 1)[-1]
    return posixpath.splitext(tail)[1].lower() in SCRIPT_EXTENSIONS


def split_bare(source: str) -> tuple[str, str]:
    """Split a bare import into package name and subpath."""
    if source.startswith("@"):
        parts = source.split("/", 2)
        return "/".join(parts[:2]), parts[2] if len(parts) > 2 else ""
    name, _, subpath = source.partition("/")
    return name, subpath


class PackageSourceStage(BaseStage):
    name = "package-source"

    def __init__(
        self,
        files: PackageFiles,
        *,
        public_path: str,
        style_loader_url: str,
    ) -> None:
        self.files = files
        self.public_path = public_path.rstrip("/")
        self.style_loader_url = style_loader_url
        self.manifest = files.manifest()
        self.browser_map = self._browser_map(self.manifest.get("browser"))

    def path_of(self, module_id: str | None) -> str | None:
        """Package-relative path of a module id owned by this stage."""
        prefix = module_id_for(self.files, "")
        if module_id is None or not module_id.startswith(prefix):
            return None
        return module_id[len(prefix) :]

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        if source.startswith("\0"):
            return None
        if source.startswith(("http://", "https://")):
            return ResolvedId(source, external=True)
        if source == self.style_loader_url or source.startswith(self.public_path + "/"):
            return ResolvedId(source, external=True)
        if source.startswith(("/", "file:")):
            raise DisallowedAccessError(
                "Package code may not import from the local filesystem.",
                hint="Only files published in the package are readable.",
                context={"operation": "resolve", "package": ctx.package, "import": source},
            )

        if source in (".", "..") or source.startswith(("./", "../")):
            importer_path = self.path_of(importer)
            base = posixpath.dirname(importer_path) if importer_path else ""
            path = contained_path(posixpath.join(base, source), package=self.files.package_id)
            return self._resolve_path(path)

        replaced = self.browser_map.get(source, _MISSING)
        if replaced is False:
            return ResolvedId(EMPTY_PREFIX + source)
        if isinstance(replaced, str):
            if replaced.startswith("."):
                return self._resolve_path(contained_path(replaced, package=self.files.package_id))
            source = replaced

        name, subpath = split_bare(source)
        if name == self.files.name:
            return self._resolve_entry(subpath)
        return ResolvedId(f"{self.public_path}/{source}", external=True)

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        if module_id.startswith(EMPTY_PREFIX):
            return LoadResult("export default {};\n")
        path = self.path_of(module_id)
        if path is None:
            return None
        return LoadResult(self.files.read(path).decode("utf-8", errors="replace"))

    def _resolve_entry(self, subpath: str) -> ResolvedId | None:
        target = self._exports_target("./" + subpath if subpath else ".")
        if target is not None:
            return self._resolve_path(contained_path(target, package=self.files.package_id))
        if subpath:
            return self._resolve_path(subpath)

        browser = self.manifest.get("browser")
        candidates = (
            browser if isinstance(browser, str) else None,
            self.manifest.get("module"),
            self.manifest.get("main"),
        )
        for candidate in candidates:
            if isinstance(candidate, str) and candidate:
                resolved = self._resolve_path(
                    contained_path(candidate, package=self.files.package_id)
                )
                if resolved is not None:
                    return resolved
        return self._resolve_path("")

    def _resolve_path(self, path: str) -> ResolvedId | None:
        found = self._find(path)
        if found is None:
            return None
        stem = posixpath.splitext(found)[0]
        replaced = self.browser_map.get(found, self.browser_map.get(stem, _MISSING))
        if replaced is False:
            return ResolvedId(EMPTY_PREFIX + found)
        if isinstance(replaced, str):
            alternate = self._find(contained_path(replaced, package=self.files.package_id))
            if alternate is not None:
                found = alternate
        return ResolvedId(module_id_for(self.files, found))

    def _find(self, path: str) -> str | None:
        if path:
            if self.files.has(path):
                return path
            for extension in RESOLVE_EXTENSIONS:
                if self.files.has(path + extension):
                    return path + extension

        nested = posixpath.join(path, "package.json") if path else None
        if nested is not None and self.files.has(nested):
            manifest = self.files.manifest(nested)
            for field_name in ("module", "main"):
                value = manifest.get(field_name)
                if not isinstance(value, str) or not value:
                    continue
                target = contained_path(posixpath.join(path, value), package=self.files.package_id)
                if target != path:
                    found = self._find(target)
                    if found is not None:
                        return found

        for index in INDEX_FILES:
            candidate = posixpath.join(path, index) if path else index
            if self.files.has(candidate):
                return candidate
        return None

    def _exports_target(self, key: str) -> str | None:
        exports = self.manifest.get("exports")
        if exports is None:
            return None
        if not isinstance(exports, dict) or not any(str(k).startswith(".") for k in exports):
            exports = {".": exports}

        if key in exports:
            return _pick_condition(exports[key])
        for pattern, value in exports.items():
            if "*" not in pattern:
                continue
            head, _, tail = pattern.partition("*")
            if key.startswith(head) and key.endswith(tail) and len(key) >= len(head) + len(tail):
                target = _pick_condition(value)
                if target is not None:
                    return target.replace("*", key[len(head) : len(key) - len(tail)])
        return None

    def _browser_map(self, browser: Any) -> dict[str, Any]:
        if not isinstance(browser, dict):
            return {}
        mapping: dict[str, Any] = {}
        for key, value in browser.items():
            if not isinstance(key, str) or not isinstance(value, (str, bool)):
                continue
            if value is True:
                continue
            if key.startswith("."):
                try:
                    key = contained_path(key, package=self.files.package_id)
                except DisallowedAccessError:
                    continue
            mapping[key] = value
        return mapping


def _pick_condition(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        for item in value:
            picked = _pick_condition(item)
            if picked is not None:
                return picked
        return None
    if isinstance(value, dict):
        for condition in EXPORT_CONDITIONS:
            if condition in value:
                picked = _pick_condition(value[condition])
                if picked is not None:
                    return picked
    return None
