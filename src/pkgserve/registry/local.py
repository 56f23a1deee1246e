"""Locally installed packages under ``<cwd>/node_modules``."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path

from pkgserve.errors import DisallowedAccessError, VersionResolutionError
from pkgserve.registry.base import PackageFiles

# Never part of a published package's file set.
SKIPPED_DIRS = frozenset({"node_modules", ".git"})


@dataclass(slots=True)
class LocalPackages:
    """Reads installed copies, confined to each package's own directory."""

    cwd: Path
    name: str = "local"
    _files: dict[str, PackageFiles] = field(default_factory=dict)

    @property
    def root(self) -> Path:
        return Path(self.cwd) / "node_modules"

    async def installed_version(self, name: str) -> str | None:
        return await asyncio.to_thread(self._read_version, name)

    def _read_version(self, name: str) -> str | None:
        package_dir = self._package_dir(name)
        manifest_path = package_dir / "package.json"
        if not manifest_path.is_file():
            return None
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        version = manifest.get("version") if isinstance(manifest, dict) else None
        return version if isinstance(version, str) and version else None

    async def package_files(self, name: str, version: str) -> PackageFiles:
        package_id = f"{name}@{version}"
        cached = self._files.get(package_id)
        if cached is not None:
            return cached
        installed = await self.installed_version(name)
        if installed != version:
            raise VersionResolutionError(
                "Locally installed package does not match the resolved version.",
                context={
                    "operation": "fetch",
                    "package": package_id,
                    "installed": installed or "",
                },
            )
        files = await asyncio.to_thread(self._read_tree, name)
        result = PackageFiles(name=name, version=version, files=files)
        self._files[package_id] = result
        return result

    def _package_dir(self, name: str) -> Path:
        package_dir = self.root / name
        root = self.root.resolve()
        if not package_dir.resolve().is_relative_to(root) and not package_dir.is_symlink():
            raise DisallowedAccessError(
                "Package directory escapes node_modules.",
                context={"operation": "read", "package": name},
            )
        return package_dir

    def _read_tree(self, name: str) -> dict[str, bytes]:
        package_dir = self._package_dir(name)
        package_root = package_dir.resolve()
        files: dict[str, bytes] = {}
        for path in sorted(package_dir.rglob("*")):
            relative = path.relative_to(package_dir)
            if relative.parts and relative.parts[0] in SKIPPED_DIRS:
                continue
            if not path.is_file():
                continue
            if not path.resolve().is_relative_to(package_root):
                raise DisallowedAccessError(
                    "Package file resolves outside the package root.",
                    hint="Symlinks inside packages may not point elsewhere on disk.",
                    context={"operation": "read", "package": name, "path": relative.as_posix()},
                )
            files[relative.as_posix()] = path.read_bytes()
        return files
