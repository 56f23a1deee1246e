"""Transform stages, listed in pipeline order."""

from .alias import AliasStage
from .asset_urls import AssetUrlStage
from .builtins import BuiltinsStage
from .commonjs import CommonJsStage
from .guard import NeverDiskStage
from .json_data import JsonStage
from .package_source import PackageSourceStage
from .process_env import ProcessEnvStage

__all__ = [
    "AliasStage",
    "AssetUrlStage",
    "BuiltinsStage",
    "CommonJsStage",
    "JsonStage",
    "NeverDiskStage",
    "PackageSourceStage",
    "ProcessEnvStage",
]
