"""Disk cache tier with manifest verification."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pkgserve.errors import IntegrityError

ARTIFACT_NAME = "artifact.bin"
MANIFEST_NAME = "manifest.json"


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    key: str
    code: bytes
    content_type: str
    compressed: Mapping[str, bytes] = field(default_factory=dict)
    meta: Mapping[str, str] = field(default_factory=dict)


class DiskStore:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def load(self, key: str) -> StoredArtifact | None:
        entry = self.root / key
        artifact_path = entry / ARTIFACT_NAME
        manifest_path = entry / MANIFEST_NAME
        if not artifact_path.exists() or not manifest_path.exists():
            return None

        manifest = self._read_manifest(manifest_path)
        if manifest.get("key") != key:
            raise IntegrityError(
                "Cache manifest key mismatch.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "key": key},
            )

        payload = artifact_path.read_bytes()
        if manifest.get("artifact_sha256") != hashlib.sha256(payload).hexdigest():
            raise IntegrityError(
                "Cache artifact digest mismatch.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "key": key},
            )

        compressed: dict[str, bytes] = {}
        variants = manifest.get("variants", {})
        if isinstance(variants, dict):
            for encoding, digest in sorted(variants.items()):
                variant_path = entry / f"artifact.{encoding}"
                if not variant_path.exists():
                    continue
                variant = variant_path.read_bytes()
                # A damaged variant is dropped, never served.
                if hashlib.sha256(variant).hexdigest() == digest:
                    compressed[encoding] = variant

        meta = manifest.get("meta", {})
        return StoredArtifact(
            key=key,
            code=payload,
            content_type=str(manifest.get("content_type", "application/octet-stream")),
            compressed=compressed,
            meta={str(k): str(v) for k, v in meta.items()} if isinstance(meta, dict) else {},
        )

    def save(
        self,
        *,
        key: str,
        code: bytes,
        content_type: str,
        meta: Mapping[str, str] | None = None,
    ) -> Path:
        entry = self.root / key
        entry.mkdir(parents=True, exist_ok=True)
        _atomic_write(entry / ARTIFACT_NAME, code)
        manifest = {
            "key": key,
            "content_type": content_type,
            "meta": dict(sorted((meta or {}).items())),
            "artifact_sha256": hashlib.sha256(code).hexdigest(),
            "variants": {},
        }
        _atomic_write(entry / MANIFEST_NAME, _encode_manifest(manifest))
        return entry

    def save_variant(self, *, key: str, encoding: str, payload: bytes) -> None:
        entry = self.root / key
        manifest_path = entry / MANIFEST_NAME
        manifest = self._read_manifest(manifest_path)
        _atomic_write(entry / f"artifact.{encoding}", payload)
        variants = manifest.setdefault("variants", {})
        if isinstance(variants, dict):
            variants[encoding] = hashlib.sha256(payload).hexdigest()
        _atomic_write(manifest_path, _encode_manifest(manifest))

    def _read_manifest(self, path: Path) -> dict[str, Any]:
        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise IntegrityError(
                "Cache manifest is not valid JSON.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "path": str(path)},
            ) from exc
        if not isinstance(parsed, dict):
            raise IntegrityError(
                "Cache manifest has invalid structure.",
                hint="Invalidate the cache entry and rebuild.",
                context={"operation": "cache_load", "path": str(path)},
            )
        return parsed


def _encode_manifest(manifest: dict[str, Any]) -> bytes:
    return (json.dumps(manifest, indent=2, sort_keys=True) + "\n").encode("utf-8")


def _atomic_write(path: Path, payload: bytes) -> None:
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_bytes(payload)
    os.replace(temp_path, path)
