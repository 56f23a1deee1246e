"""Request handling for package URLs, independent of the HTTP framework."""

from __future__ import annotations

from collections.abc import Container, Mapping
from dataclasses import dataclass, field

from pkgserve.builder.bundle import BundleBuilder
from pkgserve.cache.compress import ETAG_SUFFIXES, negotiate_encoding
from pkgserve.cache.keys import strip_validator
from pkgserve.cache.manager import CacheManager
from pkgserve.cache.store import DiskStore
from pkgserve.compiler.model import ModuleCompiler
from pkgserve.config import ServerOptions, ensure_supported_source
from pkgserve.models import CacheEntry
from pkgserve.observability import StructuredLogger
from pkgserve.registry.base import Registry
from pkgserve.registry.local import LocalPackages
from pkgserve.registry.npm import NpmRegistry
from pkgserve.resolver import ResolvedVersion, VersionResolver
from pkgserve.specifier import normalize_specifier

IMMUTABLE = "public, max-age=31536000, immutable"
REVALIDATE = "no-cache"


@dataclass(frozen=True, slots=True)
class DeliveryResponse:
    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)


class PackageService:
    """Specifier to response: normalize, resolve, revalidate, build once, deliver."""

    def __init__(
        self,
        options: ServerOptions,
        *,
        registry: Registry | None = None,
        compiler: ModuleCompiler | None = None,
        logger: StructuredLogger | None = None,
        cache: CacheManager | None = None,
    ) -> None:
        ensure_supported_source(options)
        self.options = options
        self.logger = logger or StructuredLogger()
        disk_dir = options.disk_cache_dir

        if registry is None:
            registry = NpmRegistry(
                registry_url=options.registry_url,
                cache_dir=disk_dir / "registry" if disk_dir is not None else None,
            )
        local = None if options.disable_local_resolution else LocalPackages(cwd=options.cwd)
        self.resolver = VersionResolver(registry=registry, local=local, logger=self.logger)
        self.cache = cache or CacheManager(
            disk=DiskStore(disk_dir / "bundles") if disk_dir is not None else None,
            logger=self.logger,
        )
        self.builder = BundleBuilder(
            options, self.resolver, compiler=compiler, logger=self.logger
        )

    async def handle(
        self,
        path: str,
        *,
        query: Container[str] = (),
        headers: Mapping[str, str] | None = None,
    ) -> DeliveryResponse:
        headers = {name.lower(): value for name, value in (headers or {}).items()}
        specifier = normalize_specifier(path, query=query)
        resolved = await self.resolver.resolve(specifier)
        key = self.cache.key_for(specifier, resolved)

        if strip_validator(headers.get("if-none-match")) == key:
            self.logger.log(
                operation="deliver",
                package=resolved.package_id,
                message="304 not modified",
                level="debug",
                extra={"key": key},
            )
            return DeliveryResponse(status=304, headers={"etag": key})

        entry, built = await self.cache.get_or_build(
            key,
            lambda warm: self.builder.build(specifier, resolved, warm_cache=warm),
            meta={"package": resolved.package_id, "specifier": specifier.specifier},
        )
        if built and self.options.optimize:
            self.cache.enqueue_compression(key)
        elif not built:
            self.logger.log(
                operation="cache_lookup",
                package=resolved.package_id,
                message="hit",
                level="debug",
                extra={"key": key},
            )
        return self._respond(entry, resolved, accept_encoding=headers.get("accept-encoding"))

    async def close(self) -> None:
        await self.cache.drain()

    def _respond(
        self,
        entry: CacheEntry,
        resolved: ResolvedVersion,
        *,
        accept_encoding: str | None,
    ) -> DeliveryResponse:
        response_headers = {
            "content-type": entry.content_type,
            "vary": "accept-encoding",
            "cache-control": IMMUTABLE if resolved.pinned else REVALIDATE,
        }
        encoding = negotiate_encoding(accept_encoding, tuple(entry.compressed))
        if encoding is None:
            response_headers["etag"] = entry.key
            response_headers["content-length"] = str(entry.size)
            return DeliveryResponse(status=200, body=entry.code, headers=response_headers)

        body = entry.compressed[encoding]
        response_headers["etag"] = f"{entry.key}-{ETAG_SUFFIXES[encoding]}"
        response_headers["content-encoding"] = encoding
        response_headers["content-length"] = str(len(body))
        return DeliveryResponse(status=200, body=body, headers=response_headers)
