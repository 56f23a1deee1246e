"""Protocol for package registries and the published-file model they share."""

from __future__ import annotations

import json
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from pkgserve.errors import DisallowedAccessError


@dataclass(frozen=True, slots=True)
class PackageFiles:
    """The published file set of one package version, keyed by package-relative path."""

    name: str
    version: str
    files: Mapping[str, bytes] = field(default_factory=dict)

    @property
    def package_id(self) -> str:
        return f"{self.name}@{self.version}"

    def has(self, path: str) -> bool:
        return path in self.files

    def read(self, path: str) -> bytes:
        """Return file bytes, refusing paths outside the published file set."""
        normalized = contained_path(path, package=self.package_id)
        try:
            return self.files[normalized]
        except KeyError:
            raise DisallowedAccessError(
                "File is not part of the published package.",
                hint="Only files shipped in the package tarball can be read.",
                context={"operation": "read", "package": self.package_id, "path": path},
            ) from None

    def manifest(self, path: str = "package.json") -> dict[str, Any]:
        return parse_manifest(self.files.get(path))


class Registry(Protocol):
    name: str

    async def resolve_version(self, name: str, constraint: str | None) -> str:
        """Return the immutable published version selected by *constraint*."""

    async def package_files(self, name: str, version: str) -> PackageFiles:
        """Return the published file set for *name* at *version*."""


def contained_path(path: str, *, package: str) -> str:
    """Normalize a package-relative path, rejecting escapes from the package root."""
    if path.startswith("/") or "\\" in path or "\x00" in path:
        raise DisallowedAccessError(
            "Absolute or malformed paths are not readable.",
            context={"operation": "read", "package": package, "path": path},
        )
    normalized = posixpath.normpath(path)
    if normalized == ".." or normalized.startswith("../"):
        raise DisallowedAccessError(
            "Path escapes the package root.",
            hint="Package code may only read files it publishes.",
            context={"operation": "read", "package": package, "path": path},
        )
    return "" if normalized == "." else normalized


def parse_manifest(raw: bytes | None) -> dict[str, Any]:
    """Parse ``package.json`` bytes; unreadable manifests count as empty."""
    if raw is None:
        return {}
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}
