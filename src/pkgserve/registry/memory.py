"""In-memory registry for testing and development.

Serves packages published from plain Python mappings without any network
access. It follows the same resolution rules as the npm registry client,
making it suitable for:
- Unit tests that exercise the resolver, builder and delivery pipeline
- Development environments without registry access
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field

from pkgserve.errors import VersionResolutionError
from pkgserve.registry.base import PackageFiles
from pkgserve.registry.versions import LATEST_TAG, select_version


@dataclass(slots=True)
class InMemoryRegistry:
    """Registry backed by ``{name: {version: {path: content}}}``."""

    name: str = "memory"
    packages: dict[str, dict[str, dict[str, bytes]]] = field(default_factory=dict)
    dist_tags: dict[str, dict[str, str]] = field(default_factory=dict)
    resolve_calls: int = 0
    files_calls: int = 0

    def publish(
        self,
        name: str,
        version: str,
        files: Mapping[str, str | bytes],
        *,
        tag: str | None = LATEST_TAG,
    ) -> InMemoryRegistry:
        """Add a package version; a ``package.json`` is synthesized if absent."""
        encoded = {
            path: content.encode("utf-8") if isinstance(content, str) else bytes(content)
            for path, content in files.items()
        }
        if "package.json" not in encoded:
            encoded["package.json"] = json.dumps({"name": name, "version": version}).encode("utf-8")
        self.packages.setdefault(name, {})[version] = encoded
        if tag is not None:
            self.dist_tags.setdefault(name, {})[tag] = version
        return self

    async def resolve_version(self, name: str, constraint: str | None) -> str:
        self.resolve_calls += 1
        versions = self.packages.get(name)
        if not versions:
            raise VersionResolutionError(
                "Package does not exist in the registry.",
                context={"operation": "resolve", "package": name, "registry": self.name},
            )
        return select_version(
            name,
            constraint,
            versions=versions.keys(),
            dist_tags=self.dist_tags.get(name, {}),
        )

    async def package_files(self, name: str, version: str) -> PackageFiles:
        self.files_calls += 1
        try:
            files = self.packages[name][version]
        except KeyError:
            raise VersionResolutionError(
                "Package version does not exist in the registry.",
                context={
                    "operation": "fetch",
                    "package": f"{name}@{version}",
                    "registry": self.name,
                },
            ) from None
        return PackageFiles(name=name, version=version, files=dict(files))
