"""Hook protocol and result types shared by the module compiler and its stages."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class ResolvedId:
    id: str
    external: bool = False


@dataclass(frozen=True, slots=True)
class LoadResult:
    code: str


@dataclass(frozen=True, slots=True)
class TransformResult:
    code: str
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CachedModule:
    """A transformed module, reusable while its loaded source is unchanged."""

    id: str
    source: str
    code: str
    meta: Mapping[str, Any] = field(default_factory=dict)


WarmCache = Mapping[str, CachedModule]


@dataclass(frozen=True, slots=True)
class CompileResult:
    code: str
    modules: tuple[str, ...]
    externals: tuple[str, ...]
    exports: tuple[str, ...]
    warnings: tuple[str, ...] = ()
    cache: WarmCache = field(default_factory=dict)


class StageContext(Protocol):
    package: str

    async def resolve(
        self, source: str, importer: str | None, *, skip: Stage | None = None
    ) -> ResolvedId | None:
        """Resolve *source* through every stage except *skip*."""

    def warn(self, message: str, *, module: str | None = None) -> None:
        """Record a non-fatal build warning."""


class Stage(Protocol):
    name: str

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None: ...

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None: ...

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None: ...


class BaseStage:
    """No-op hooks; stages override the ones they take part in."""

    name = "stage"

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        return None

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        return None

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        return None


class ModuleCompiler(Protocol):
    async def compile(
        self,
        entry: str,
        *,
        stages: Sequence[Stage],
        package: str,
        cache: WarmCache | None = None,
    ) -> CompileResult:
        """Link the graph reachable from *entry* into one module."""
