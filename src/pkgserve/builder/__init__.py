"""Bundle Builder: package bundles and raw or proxied assets."""

from .assets import build_asset, content_type_for
from .bundle import BundleBuilder
from .pipeline import BuildPipeline, PipelineBuilder

__all__ = [
    "BuildPipeline",
    "BundleBuilder",
    "PipelineBuilder",
    "build_asset",
    "content_type_for",
]
