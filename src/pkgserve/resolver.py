"""Version resolution with a process-lifetime mapping cache."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Literal

from pkgserve.observability import StructuredLogger
from pkgserve.registry.base import PackageFiles, Registry
from pkgserve.registry.local import LocalPackages
from pkgserve.registry.versions import satisfies
from pkgserve.specifier import PackageSpecifier

VersionSource = Literal["registry", "local"]


@dataclass(frozen=True, slots=True)
class ResolvedVersion:
    name: str
    constraint: str | None
    version: str
    source: VersionSource = "registry"

    @property
    def package_id(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def pinned(self) -> bool:
        """Whether the request named this exact version."""
        return self.constraint == self.version


@dataclass(slots=True)
class VersionResolver:
    """Maps name+constraint to an immutable version, caching for the process lifetime.

    Failed resolutions are not cached; the registry collaborator owns retry policy.
    """

    registry: Registry
    local: LocalPackages | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _resolved: dict[tuple[str, str | None], ResolvedVersion] = field(default_factory=dict)
    _inflight: dict[tuple[str, str | None], asyncio.Task[ResolvedVersion]] = field(
        default_factory=dict
    )

    async def resolve(self, specifier: PackageSpecifier) -> ResolvedVersion:
        cache_key = (specifier.name, specifier.version_constraint)
        cached = self._resolved.get(cache_key)
        if cached is not None:
            return cached

        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._resolve_uncached(*cache_key))
            self._inflight[cache_key] = task
            task.add_done_callback(lambda _: self._inflight.pop(cache_key, None))
        resolved = await asyncio.shield(task)
        self._resolved[cache_key] = resolved
        return resolved

    async def package_files(self, resolved: ResolvedVersion) -> PackageFiles:
        if resolved.source == "local" and self.local is not None:
            return await self.local.package_files(resolved.name, resolved.version)
        return await self.registry.package_files(resolved.name, resolved.version)

    def cached(self) -> dict[tuple[str, str | None], ResolvedVersion]:
        return dict(self._resolved)

    async def _resolve_uncached(self, name: str, constraint: str | None) -> ResolvedVersion:
        if self.local is not None:
            installed = await self.local.installed_version(name)
            if installed is not None and satisfies(installed, constraint):
                self.logger.log(
                    operation="resolve",
                    package=f"{name}@{installed}",
                    message="using locally installed copy",
                    level="debug",
                )
                return ResolvedVersion(
                    name=name, constraint=constraint, version=installed, source="local"
                )

        version = await self.registry.resolve_version(name, constraint)
        self.logger.log(
            operation="resolve",
            package=f"{name}@{version}",
            message=f"resolved {constraint or 'latest'!r} via {self.registry.name}",
            level="debug",
        )
        return ResolvedVersion(name=name, constraint=constraint, version=version)
