"""Construction-time configuration and enforcement helpers."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pkgserve.errors import UnsupportedSourceError

PackageSource = Literal["npm", "unpkg"]

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
DISABLE_LOCAL_ENV = "DISABLE_LOCAL_NPM"
DEBUG_ENV = "PKGSERVE_DEBUG"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class ServerOptions:
    source: PackageSource = "npm"
    alias: Mapping[str, str] = field(default_factory=dict)
    optimize: bool = True
    cwd: Path = field(default_factory=Path.cwd)
    cache_dir: Path | None = None
    disk_cache: bool = True
    registry_url: str = DEFAULT_REGISTRY_URL
    disable_local_resolution: bool = False
    public_path: str = "/@npm"
    style_loader_url: str = "/_runtime.js"
    node_env: str = "development"
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> ServerOptions:
        """Build options, reading environment switches unless overridden."""
        values: dict[str, Any] = {
            "disable_local_resolution": _env_flag(DISABLE_LOCAL_ENV),
            "debug": _env_flag(DEBUG_ENV),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def disk_cache_dir(self) -> Path | None:
        if not self.disk_cache:
            return None
        if self.cache_dir is not None:
            return Path(self.cache_dir)
        return Path(self.cwd) / ".cache" / "pkgserve"


def ensure_supported_source(options: ServerOptions) -> None:
    if options.source == "unpkg":
        raise UnsupportedSourceError(
            "The unpkg package source is disabled.",
            hint="Use source='npm'.",
            context={"operation": "configure", "source": options.source},
        )
    if options.source != "npm":
        raise UnsupportedSourceError(
            f"Unknown package source: {options.source}",
            hint="Use source='npm'.",
            context={"operation": "configure", "source": str(options.source)},
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY
