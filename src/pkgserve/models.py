"""Shared data models for cache entries and build results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from pkgserve.compiler.model import WarmCache

JS_CONTENT_TYPE = "application/javascript;charset=utf-8"


@dataclass(frozen=True, slots=True)
class BuildOutput:
    code: bytes
    content_type: str = JS_CONTENT_TYPE
    warm_cache: WarmCache | None = None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored artifact; ``code`` never changes once created."""

    key: str
    code: bytes
    content_type: str
    compressed: Mapping[str, bytes] = field(default_factory=dict)
    on_disk: bool = False
    meta: Mapping[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.code)
