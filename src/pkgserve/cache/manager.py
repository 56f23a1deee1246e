"""Two-tier artifact cache with single-flight build arbitration."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from types import MappingProxyType

from pkgserve.cache.compress import compress_variants
from pkgserve.cache.keys import cache_key, key_input
from pkgserve.cache.store import DiskStore
from pkgserve.compiler.model import WarmCache
from pkgserve.errors import CacheConflictError, IntegrityError
from pkgserve.models import BuildOutput, CacheEntry
from pkgserve.observability import StructuredLogger
from pkgserve.resolver import ResolvedVersion
from pkgserve.specifier import PackageSpecifier

BuildFn = Callable[[WarmCache], Awaitable[BuildOutput]]
Compressor = Callable[[bytes], dict[str, bytes]]


class CacheManager:
    """Owns cache entries, pending builds and the compiler warm cache.

    Entries live in memory and, when a :class:`DiskStore` is configured, on
    disk. Content stored under a key never changes.
    """

    def __init__(
        self,
        *,
        disk: DiskStore | None = None,
        logger: StructuredLogger | None = None,
        compressor: Compressor = compress_variants,
    ) -> None:
        self.disk = disk
        self.logger = logger or StructuredLogger()
        self.compressor = compressor
        self._memory: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task[CacheEntry]] = {}
        self._jobs: set[asyncio.Task[None]] = set()
        self._warm_cache: WarmCache = MappingProxyType({})
        self.builds_started = 0

    @staticmethod
    def key_for(specifier: PackageSpecifier, resolved: ResolvedVersion) -> str:
        return cache_key(key_input(specifier, resolved))

    @property
    def warm_cache(self) -> WarmCache:
        return self._warm_cache

    def commit_warm_cache(self, cache: WarmCache) -> None:
        """Replace the warm cache; only called with the output of a successful build."""
        self._warm_cache = MappingProxyType(dict(cache))

    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    async def lookup(self, key: str) -> CacheEntry | None:
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        if self.disk is None:
            return None

        try:
            stored = await asyncio.to_thread(self.disk.load, key)
        except IntegrityError as exc:
            self.logger.log(
                operation="cache_lookup",
                message=f"ignoring damaged disk entry: {exc.message}",
                level="warning",
                extra={"key": key},
            )
            return None
        if stored is None:
            return None

        entry = self._memory.setdefault(
            key,
            CacheEntry(
                key=key,
                code=stored.code,
                content_type=stored.content_type,
                compressed=dict(stored.compressed),
                on_disk=True,
                meta=dict(stored.meta),
            ),
        )
        self.logger.log(operation="cache_lookup", message="promoted disk hit", extra={"key": key})
        return entry

    async def store(
        self,
        key: str,
        code: bytes,
        *,
        content_type: str,
        meta: Mapping[str, str] | None = None,
    ) -> CacheEntry:
        existing = await self.lookup(key)
        if existing is not None:
            if existing.code != code:
                raise CacheConflictError(
                    "Refusing to overwrite a cache entry with different content.",
                    hint="Published versions are immutable; the build is not deterministic.",
                    context={"operation": "cache_store", "key": key},
                )
            return existing

        on_disk = False
        if self.disk is not None:
            try:
                await asyncio.to_thread(
                    self.disk.save,
                    key=key,
                    code=code,
                    content_type=content_type,
                    meta=meta,
                )
                on_disk = True
            except OSError as exc:
                self.logger.log(
                    operation="cache_store",
                    message=f"disk tier write failed, keeping entry in memory: {exc}",
                    level="warning",
                    extra={"key": key},
                )

        entry = CacheEntry(
            key=key,
            code=code,
            content_type=content_type,
            on_disk=on_disk,
            meta=dict(meta or {}),
        )
        self._memory[key] = entry
        return entry

    async def get_or_build(
        self,
        key: str,
        build: BuildFn,
        *,
        meta: Mapping[str, str] | None = None,
    ) -> tuple[CacheEntry, bool]:
        """Return the entry for *key*, building it at most once across concurrent callers.

        The boolean is true only for the caller whose request started the build.
        """
        task = self._pending.get(key)
        if task is None:
            cached = await self.lookup(key)
            if cached is not None:
                return cached, False
            task = self._pending.get(key)
        if task is not None:
            return await asyncio.shield(task), False

        entry = self._memory.get(key)
        if entry is not None:
            return entry, False

        task = asyncio.ensure_future(self._build_and_store(key, build, meta))
        self._pending[key] = task
        task.add_done_callback(lambda done: self._build_finished(key, done))
        return await asyncio.shield(task), True

    def enqueue_compression(self, key: str) -> asyncio.Task[None]:
        """Schedule compressed variants for *key* without waiting for them."""
        task = asyncio.get_running_loop().create_task(self._compress(key))
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding compression jobs."""
        if self._jobs:
            await asyncio.gather(*tuple(self._jobs), return_exceptions=True)

    async def _build_and_store(
        self,
        key: str,
        build: BuildFn,
        meta: Mapping[str, str] | None,
    ) -> CacheEntry:
        self.builds_started += 1
        package = (meta or {}).get("package")
        self.logger.log(operation="build", package=package, message="cache miss, building")
        output = await build(self._warm_cache)
        if output.warm_cache is not None:
            self.commit_warm_cache(output.warm_cache)
        entry = await self.store(key, output.code, content_type=output.content_type, meta=meta)
        self.logger.log(
            operation="build",
            package=package,
            message=f"stored {entry.size} bytes",
            extra={"key": key},
        )
        return entry

    def _build_finished(self, key: str, task: asyncio.Task[CacheEntry]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled() and task.exception() is not None:
            self.logger.log(
                operation="build",
                message=f"build failed: {type(task.exception()).__name__}",
                level="warning",
                extra={"key": key},
            )

    async def _compress(self, key: str) -> None:
        try:
            entry = await self.lookup(key)
            if entry is None:
                self.logger.log(
                    operation="compress",
                    message="entry vanished before compression",
                    level="warning",
                    extra={"key": key},
                )
                return
            if entry.compressed:
                return

            variants = await asyncio.to_thread(self.compressor, entry.code)
            current = self._memory.get(key, entry)
            self._memory[key] = replace(current, compressed={**current.compressed, **variants})
            if self.disk is not None and current.on_disk:
                for encoding, payload in sorted(variants.items()):
                    await asyncio.to_thread(
                        self.disk.save_variant, key=key, encoding=encoding, payload=payload
                    )
            self.logger.log(
                operation="compress",
                message=", ".join(f"{name}={len(data)}" for name, data in sorted(variants.items())),
                extra={"key": key},
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.log(
                operation="compress",
                message=f"compression failed: {exc}",
                level="warning",
                extra={"key": key},
            )
