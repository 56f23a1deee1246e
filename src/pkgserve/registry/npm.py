"""npm registry client with integrity-enforced, content-addressed tarball caching."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import json
import os
import tarfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from pkgserve.config import DEFAULT_REGISTRY_URL
from pkgserve.errors import DisallowedAccessError, IntegrityError, VersionResolutionError
from pkgserve.registry.base import PackageFiles, contained_path
from pkgserve.registry.versions import select_version

T = TypeVar("T")

PACKUMENT_ACCEPT = "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"
SUPPORTED_INTEGRITY = ("sha512", "sha384", "sha256", "sha1")


@dataclass(frozen=True, slots=True)
class TarballRef:
    url: str
    algorithm: str
    digest: str

    @property
    def cache_name(self) -> str:
        return f"{self.algorithm}-{self.digest}.tgz"


@dataclass(slots=True)
class NpmRegistry:
    registry_url: str = DEFAULT_REGISTRY_URL
    cache_dir: Path | None = None
    name: str = "npm"
    _packuments: dict[str, dict[str, Any]] = field(default_factory=dict)
    _files: dict[str, PackageFiles] = field(default_factory=dict)
    _inflight: dict[str, asyncio.Task[Any]] = field(default_factory=dict)

    async def resolve_version(self, name: str, constraint: str | None) -> str:
        packument = await self._packument(name)
        versions = packument.get("versions")
        dist_tags = packument.get("dist-tags")
        if not isinstance(versions, dict) or not versions:
            raise VersionResolutionError(
                "Package has no published versions.",
                context={"operation": "resolve", "package": name},
            )
        return select_version(
            name,
            constraint,
            versions=versions.keys(),
            dist_tags=dist_tags if isinstance(dist_tags, dict) else {},
        )

    async def package_files(self, name: str, version: str) -> PackageFiles:
        package_id = f"{name}@{version}"
        cached = self._files.get(package_id)
        if cached is not None:
            return cached
        files = await self._once(f"files:{package_id}", lambda: self._load_files(name, version))
        self._files[package_id] = files
        return files

    async def _packument(self, name: str) -> dict[str, Any]:
        cached = self._packuments.get(name)
        if cached is not None:
            return cached
        packument = await self._once(
            f"packument:{name}", lambda: asyncio.to_thread(self._fetch_packument, name)
        )
        self._packuments[name] = packument
        return packument

    async def _load_files(self, name: str, version: str) -> PackageFiles:
        packument = await self._packument(name)
        ref = tarball_ref(packument, name=name, version=version)
        payload = await asyncio.to_thread(self._fetch_tarball, ref)
        files = await asyncio.to_thread(extract_tarball, payload, package=f"{name}@{version}")
        return PackageFiles(name=name, version=version, files=files)

    async def _once(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    def _fetch_packument(self, name: str) -> dict[str, Any]:
        url = f"{self.registry_url.rstrip('/')}/{quote(name, safe='@')}"
        request = Request(url, headers={"Accept": PACKUMENT_ACCEPT})
        try:
            with urlopen(request) as response:  # noqa: S310 - registry URL comes from configuration
                raw = response.read()
        except HTTPError as exc:
            if exc.code == 404:
                raise VersionResolutionError(
                    "Package does not exist in the registry.",
                    context={"operation": "resolve", "package": name, "url": url},
                ) from exc
            raise VersionResolutionError(
                "Registry request failed.",
                unreachable=True,
                context={"operation": "resolve", "package": name, "status": str(exc.code)},
            ) from exc
        except (URLError, OSError) as exc:
            raise VersionResolutionError(
                "Registry is unreachable.",
                unreachable=True,
                hint="Check network access and the configured registry URL.",
                context={"operation": "resolve", "package": name, "url": url},
            ) from exc

        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise VersionResolutionError(
                "Registry returned invalid package metadata.",
                unreachable=True,
                context={"operation": "resolve", "package": name, "url": url},
            ) from exc
        if not isinstance(parsed, dict):
            raise VersionResolutionError(
                "Registry returned invalid package metadata.",
                unreachable=True,
                context={"operation": "resolve", "package": name, "url": url},
            )
        return parsed

    def _fetch_tarball(self, ref: TarballRef) -> bytes:
        artifact_path = None
        if self.cache_dir is not None:
            artifact_path = Path(self.cache_dir) / "tarballs" / ref.cache_name
        if artifact_path is not None and artifact_path.exists():
            payload = artifact_path.read_bytes()
            _assert_digest_matches(payload, ref=ref, source=str(artifact_path))
            return payload

        try:
            with urlopen(ref.url) as response:  # noqa: S310 - integrity check is mandatory below
                payload = response.read()
        except (URLError, OSError) as exc:
            raise VersionResolutionError(
                "Package tarball could not be downloaded.",
                unreachable=True,
                context={"operation": "fetch", "url": ref.url},
            ) from exc
        _assert_digest_matches(payload, ref=ref, source=ref.url)

        if artifact_path is not None:
            artifact_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = artifact_path.with_suffix(".tmp")
            temp_path.write_bytes(payload)
            os.replace(temp_path, artifact_path)
        return payload


def tarball_ref(packument: dict[str, Any], *, name: str, version: str) -> TarballRef:
    """Read the tarball location and strongest supported digest for *version*."""
    versions = packument.get("versions")
    manifest = versions.get(version) if isinstance(versions, dict) else None
    dist = manifest.get("dist") if isinstance(manifest, dict) else None
    if not isinstance(dist, dict) or not isinstance(dist.get("tarball"), str):
        raise VersionResolutionError(
            "Package version has no tarball.",
            context={"operation": "fetch", "package": f"{name}@{version}"},
        )

    integrity = dist.get("integrity")
    if isinstance(integrity, str):
        for candidate in integrity.split():
            algorithm, _, encoded = candidate.partition("-")
            if algorithm in SUPPORTED_INTEGRITY and encoded:
                digest = base64.b64decode(encoded).hex()
                return TarballRef(url=dist["tarball"], algorithm=algorithm, digest=digest)

    shasum = dist.get("shasum")
    if isinstance(shasum, str) and shasum:
        return TarballRef(url=dist["tarball"], algorithm="sha1", digest=shasum.lower())

    raise IntegrityError(
        "Package version publishes no integrity digest.",
        hint="Refusing to load unverifiable package contents.",
        context={"operation": "fetch", "package": f"{name}@{version}"},
    )


def extract_tarball(payload: bytes, *, package: str) -> dict[str, bytes]:
    """Read regular files from a package tarball, stripping the top-level directory."""
    files: dict[str, bytes] = {}
    with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as archive:
        for member in archive.getmembers():
            if not member.isfile():
                continue
            _, _, relative = member.name.lstrip("./").partition("/")
            if not relative:
                continue
            path = contained_path(relative, package=package)
            if not path:
                raise DisallowedAccessError(
                    "Tarball member has an empty path.",
                    context={"operation": "extract", "package": package, "member": member.name},
                )
            extracted = archive.extractfile(member)
            if extracted is None:
                continue
            files[path] = extracted.read()
    return files


def _assert_digest_matches(payload: bytes, *, ref: TarballRef, source: str) -> None:
    actual = hashlib.new(ref.algorithm, payload).hexdigest()
    if actual != ref.digest:
        raise IntegrityError(
            "Package tarball digest mismatch.",
            hint="Clear the tarball cache and refetch from a trusted registry.",
            context={
                "operation": "fetch",
                "source": source,
                "algorithm": ref.algorithm,
                "expected": ref.digest,
                "actual": actual,
            },
        )
