"""Explicit construction of the per-build stage list."""

from __future__ import annotations

from dataclasses import dataclass

from pkgserve.builder.stages import (
    AliasStage,
    AssetUrlStage,
    BuiltinsStage,
    CommonJsStage,
    JsonStage,
    NeverDiskStage,
    PackageSourceStage,
    ProcessEnvStage,
)
from pkgserve.compiler.model import Stage
from pkgserve.config import ServerOptions
from pkgserve.registry.base import PackageFiles


@dataclass(frozen=True, slots=True)
class BuildPipeline:
    stages: tuple[Stage, ...]

    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)


class PipelineBuilder:
    """Builds a fresh stage list for one package build.

    Order: builtins, alias, package-source, process-env, commonjs, json,
    asset-urls, no-disk. The alias stage is present only when aliases are
    configured.
    """

    def __init__(self, options: ServerOptions) -> None:
        self.options = options

    def build(self, files: PackageFiles) -> BuildPipeline:
        options = self.options
        source = PackageSourceStage(
            files,
            public_path=options.public_path,
            style_loader_url=options.style_loader_url,
        )
        stages: list[Stage] = [BuiltinsStage(files.name)]
        if options.alias:
            stages.append(AliasStage(options.alias))
        stages.extend(
            [
                source,
                ProcessEnvStage(options.node_env),
                CommonJsStage(),
                JsonStage(),
                AssetUrlStage(source, style_loader_url=options.style_loader_url),
                NeverDiskStage(),
            ]
        )
        return BuildPipeline(stages=tuple(stages))
