"""Stage-driven module graph compiler."""

from .graph import BuildContext, GraphCompiler
from .model import (
    BaseStage,
    CachedModule,
    CompileResult,
    LoadResult,
    ModuleCompiler,
    ResolvedId,
    Stage,
    StageContext,
    TransformResult,
    WarmCache,
)
from .scan import ModuleSyntax, mask_source, scan_module

__all__ = [
    "BaseStage",
    "BuildContext",
    "CachedModule",
    "CompileResult",
    "GraphCompiler",
    "LoadResult",
    "ModuleCompiler",
    "ModuleSyntax",
    "ResolvedId",
    "Stage",
    "StageContext",
    "TransformResult",
    "WarmCache",
    "mask_source",
    "scan_module",
]
