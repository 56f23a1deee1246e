"""Package registry collaborators."""

from .base import PackageFiles, Registry, contained_path, parse_manifest
from .local import LocalPackages
from .memory import InMemoryRegistry
from .npm import NpmRegistry
from .versions import satisfies, select_version

__all__ = [
    "InMemoryRegistry",
    "LocalPackages",
    "NpmRegistry",
    "PackageFiles",
    "Registry",
    "contained_path",
    "parse_manifest",
    "satisfies",
    "select_version",
]
