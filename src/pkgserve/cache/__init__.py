"""Content-addressed artifact cache APIs."""

from .compress import compress_variants, negotiate_encoding
from .keys import CacheKeyInput, cache_key, key_input, strip_validator
from .manager import CacheManager
from .store import DiskStore, StoredArtifact

__all__ = [
    "CacheKeyInput",
    "CacheManager",
    "DiskStore",
    "StoredArtifact",
    "cache_key",
    "compress_variants",
    "key_input",
    "negotiate_encoding",
    "strip_validator",
]
