"""Cache key derivation."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Literal

import cbor2

from pkgserve.resolver import ResolvedVersion
from pkgserve.specifier import PackageSpecifier

Intent = Literal["module", "asset", "asset-module"]

KEY_SCHEMA = 1
COMPRESSION_SUFFIX = re.compile(r"-(gz|br)$")


@dataclass(frozen=True, slots=True)
class CacheKeyInput:
    name: str
    subpath: str
    version: str
    intent: Intent = "module"


def key_input(specifier: PackageSpecifier, resolved: ResolvedVersion) -> CacheKeyInput:
    if not specifier.wants_asset:
        intent: Intent = "module"
    elif specifier.wants_module:
        intent = "asset-module"
    else:
        intent = "asset"
    return CacheKeyInput(
        name=specifier.name,
        subpath=specifier.subpath,
        version=resolved.version,
        intent=intent,
    )


def cache_key(inputs: CacheKeyInput) -> str:
    canonical = cbor2.dumps(_to_payload(inputs), canonical=True)
    return hashlib.sha256(canonical).hexdigest()


def strip_validator(header: str | None) -> str | None:
    """Reduce an ``if-none-match`` value to a bare key for comparison."""
    if header is None:
        return None
    value = header.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    return COMPRESSION_SUFFIX.sub("", value)


def _to_payload(inputs: CacheKeyInput) -> dict[str, Any]:
    return {
        "schema": KEY_SCHEMA,
        "name": inputs.name,
        "subpath": inputs.subpath,
        "version": inputs.version,
        "intent": inputs.intent,
    }
