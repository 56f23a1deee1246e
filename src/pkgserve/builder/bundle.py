"""Produces the artifact for one specifier at one resolved version."""

from __future__ import annotations

from pkgserve.builder.assets import build_asset
from pkgserve.builder.pipeline import PipelineBuilder
from pkgserve.compiler.graph import GraphCompiler
from pkgserve.compiler.model import ModuleCompiler, WarmCache
from pkgserve.config import ServerOptions
from pkgserve.models import JS_CONTENT_TYPE, BuildOutput
from pkgserve.observability import StructuredLogger
from pkgserve.resolver import ResolvedVersion, VersionResolver
from pkgserve.specifier import PackageSpecifier


class BundleBuilder:
    def __init__(
        self,
        options: ServerOptions,
        resolver: VersionResolver,
        *,
        compiler: ModuleCompiler | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.options = options
        self.resolver = resolver
        self.logger = logger or StructuredLogger()
        self.compiler = compiler or GraphCompiler(logger=self.logger)
        self.pipelines = PipelineBuilder(options)

    async def build(
        self,
        specifier: PackageSpecifier,
        resolved: ResolvedVersion,
        *,
        warm_cache: WarmCache | None = None,
    ) -> BuildOutput:
        """Build *specifier*; raises rather than returning partial output."""
        if specifier.wants_asset:
            files = None if specifier.wants_module else await self.resolver.package_files(resolved)
            output = build_asset(
                specifier,
                files,
                public_path=self.options.public_path,
                style_loader_url=self.options.style_loader_url,
            )
            self.logger.log(
                operation="build",
                package=resolved.package_id,
                module=specifier.subpath,
                message=f"asset ({output.content_type})",
            )
            return output

        self.logger.log(
            operation="build",
            package=resolved.package_id,
            module=specifier.module_id,
            message=f"bundling {specifier.specifier!r}",
            level="info" if self.options.debug else "debug",
        )
        files = await self.resolver.package_files(resolved)
        pipeline = self.pipelines.build(files)
        result = await self.compiler.compile(
            specifier.module_id,
            stages=pipeline.stages,
            package=resolved.package_id,
            cache=warm_cache,
        )
        return BuildOutput(
            code=result.code.encode("utf-8"),
            content_type=JS_CONTENT_TYPE,
            warm_cache=result.cache,
        )
