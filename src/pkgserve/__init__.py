"""On-demand npm package bundling and caching for development servers."""

from .config import ServerOptions
from .delivery.handler import DeliveryResponse, PackageService
from .errors import (
    BuildError,
    CacheConflictError,
    DisallowedAccessError,
    ErrorCode,
    IntegrityError,
    MalformedSpecifierError,
    PkgServeError,
    UnsupportedSourceError,
    VersionResolutionError,
)
from .resolver import ResolvedVersion, VersionResolver
from .specifier import PackageSpecifier, normalize_specifier
from .version import __version__

__all__ = [
    "BuildError",
    "CacheConflictError",
    "DeliveryResponse",
    "DisallowedAccessError",
    "ErrorCode",
    "IntegrityError",
    "MalformedSpecifierError",
    "PackageService",
    "PackageSpecifier",
    "PkgServeError",
    "ResolvedVersion",
    "ServerOptions",
    "UnsupportedSourceError",
    "VersionResolutionError",
    "VersionResolver",
    "__version__",
    "normalize_specifier",
]
