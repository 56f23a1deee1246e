"""Module graph traversal and linking."""

from __future__ import annotations

from collections.abc import Awaitable, Sequence
from typing import Any, TypeVar

from pkgserve.compiler.emit import LinkedModule, render_bundle
from pkgserve.compiler.model import (
    CachedModule,
    CompileResult,
    LoadResult,
    ResolvedId,
    Stage,
    WarmCache,
)
from pkgserve.compiler.scan import ImportStatement, scan_module
from pkgserve.errors import BuildError, DisallowedAccessError
from pkgserve.observability import StructuredLogger

T = TypeVar("T")


class BuildContext:
    """Per-build view of the stage list handed to every hook."""

    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        package: str,
        logger: StructuredLogger,
    ) -> None:
        self.stages = tuple(stages)
        self.package = package
        self.logger = logger
        self.warnings: list[str] = []

    async def resolve(
        self, source: str, importer: str | None, *, skip: Stage | None = None
    ) -> ResolvedId | None:
        for stage in self.stages:
            if stage is skip:
                continue
            resolved = await self.run(
                stage, importer or source, stage.resolve_id(source, importer, self)
            )
            if resolved is not None:
                return resolved
        return None

    async def load(self, module_id: str) -> LoadResult:
        for stage in self.stages:
            loaded = await self.run(stage, module_id, stage.load(module_id, self))
            if loaded is not None:
                return loaded
        raise BuildError(
            "No stage could load module.",
            stage="load",
            package=self.package,
            module=module_id,
        )

    async def transform(self, module_id: str, code: str) -> tuple[str, dict[str, Any]]:
        meta: dict[str, Any] = {}
        for stage in self.stages:
            result = await self.run(stage, module_id, stage.transform(code, module_id, self))
            if result is not None:
                code = result.code
                meta.update(result.meta)
        return code, meta

    def warn(self, message: str, *, module: str | None = None) -> None:
        self.warnings.append(message)
        self.logger.log(
            operation="compile",
            package=self.package,
            module=module,
            message=message,
            level="warning",
        )

    async def run(self, stage: Stage, module_id: str, hook: Awaitable[T]) -> T:
        try:
            return await hook
        except (BuildError, DisallowedAccessError):
            raise
        except Exception as exc:
            raise BuildError(
                f"{type(exc).__name__}: {exc}",
                stage=stage.name,
                package=self.package,
                module=module_id,
            ) from exc


class GraphCompiler:
    """Walks the import graph from an entry and links it into one ES module.

    Modules are emitted in depth-first discovery order. Transformed modules
    from a previous build are reused when their loaded source is unchanged.
    """

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self.logger = logger or StructuredLogger()

    async def compile(
        self,
        entry: str,
        *,
        stages: Sequence[Stage],
        package: str,
        cache: WarmCache | None = None,
    ) -> CompileResult:
        ctx = BuildContext(stages, package=package, logger=self.logger)
        previous = dict(cache or {})
        next_cache: dict[str, CachedModule] = {}

        resolved = await ctx.resolve(entry, None)
        if resolved is None:
            raise BuildError(
                "Could not resolve the package entry.",
                stage="resolve",
                package=package,
                module=entry,
            )
        if resolved.external:
            raise BuildError(
                "Package entry resolved to an external module.",
                stage="resolve",
                package=package,
                module=entry,
                context={"resolved": resolved.id},
            )

        modules: dict[str, LinkedModule] = {}
        externals: list[str] = []
        pending = [resolved.id]
        reused = 0
        while pending:
            module_id = pending.pop()
            if module_id in modules:
                continue
            loaded = await ctx.load(module_id)
            cached = previous.get(module_id)
            if cached is not None and cached.source == loaded.code:
                code, meta = cached.code, dict(cached.meta)
                reused += 1
            else:
                code, meta = await ctx.transform(module_id, loaded.code)
            next_cache[module_id] = CachedModule(
                id=module_id, source=loaded.code, code=code, meta=meta
            )

            module = LinkedModule(
                id=module_id,
                code=code,
                syntax=scan_module(code),
                commonjs=bool(meta.get("commonjs")),
            )
            modules[module_id] = module

            children: list[str] = []
            lazy = {call.source for call in module.syntax.dynamic_imports} - {
                statement.source
                for statement in (*module.syntax.imports, *module.syntax.exports)
                if statement.source is not None
            }
            for source in module.syntax.sources():
                target = await ctx.resolve(source, module_id)
                if target is None:
                    raise BuildError(
                        "Could not resolve import.",
                        stage="resolve",
                        package=package,
                        module=module_id,
                        context={"import": source},
                    )
                module.resolutions[source] = target
                if target.external:
                    if source not in lazy and target.id not in externals:
                        externals.append(target.id)
                else:
                    children.append(target.id)
            pending.extend(reversed(children))

        self._link(ctx, modules)
        names, external_stars = self._surface(modules, resolved.id, set())
        exports = tuple(sorted(names))
        code = render_bundle(
            modules=modules.values(),
            entry=resolved.id,
            externals=externals,
            exports=exports,
            external_stars=tuple(dict.fromkeys(external_stars)),
        )
        self.logger.log(
            operation="compile",
            package=package,
            message=f"linked {len(modules)} modules ({reused} reused), {len(externals)} externals",
        )
        return CompileResult(
            code=code,
            modules=tuple(modules),
            externals=tuple(externals),
            exports=exports,
            warnings=tuple(ctx.warnings),
            cache=next_cache,
        )

    def _link(self, ctx: BuildContext, modules: dict[str, LinkedModule]) -> None:
        """Shim named imports the target module does not export."""
        for module in list(modules.values()):
            wanted: list[tuple[str, str]] = []
            for statement in (*module.syntax.imports, *module.syntax.exports):
                if statement.source is None:
                    continue
                target = module.resolutions[statement.source]
                if target.external:
                    continue
                if isinstance(statement, ImportStatement):
                    wanted.extend(
                        (target.id, binding.imported)
                        for binding in statement.bindings
                        if binding.imported != "*"
                    )
                elif statement.kind == "reexport":
                    wanted.extend((target.id, imported) for imported, _ in statement.names)

            for target_id, name in wanted:
                names, stars = self._surface(modules, target_id, set())
                if name in names or (stars and name != "default"):
                    continue
                modules[target_id].shims.append(name)
                ctx.warn(
                    f"{name!r} is not exported by {target_id}, imported by {module.id}",
                    module=module.id,
                )

    def _surface(
        self, modules: dict[str, LinkedModule], module_id: str, seen: set[str]
    ) -> tuple[set[str], list[str]]:
        """Export names of a module, plus external URLs it star-exports."""
        seen.add(module_id)
        module = modules[module_id]
        names = set(module.syntax.export_names()) | set(module.shims)
        external_stars: list[str] = []
        for statement in module.syntax.exports:
            if statement.kind != "star" or statement.source is None:
                continue
            target = module.resolutions[statement.source]
            if target.external:
                external_stars.append(target.id)
            elif target.id not in seen:
                inner, inner_stars = self._surface(modules, target.id, seen)
                names.update(name for name in inner if name != "default")
                external_stars.extend(inner_stars)
        return names, external_stars
