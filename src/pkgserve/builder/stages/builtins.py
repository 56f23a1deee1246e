"""Empty stand-ins for Node.js built-in modules."""

from __future__ import annotations

from pkgserve.compiler.model import BaseStage, LoadResult, ResolvedId, StageContext

BUILTIN_PREFIX = "\0builtin:"
NODE_PREFIX = "node:"

NODE_BUILTINS = frozenset(
    {
        "assert",
        "async_hooks",
        "buffer",
        "child_process",
        "cluster",
        "console",
        "constants",
        "crypto",
        "dgram",
        "diagnostics_channel",
        "dns",
        "domain",
        "events",
        "fs",
        "http",
        "http2",
        "https",
        "inspector",
        "module",
        "net",
        "os",
        "path",
        "perf_hooks",
        "process",
        "punycode",
        "querystring",
        "readline",
        "repl",
        "stream",
        "string_decoder",
        "sys",
        "timers",
        "tls",
        "trace_events",
        "tty",
        "url",
        "util",
        "v8",
        "vm",
        "wasi",
        "worker_threads",
        "zlib",
    }
)


class BuiltinsStage(BaseStage):
    name = "builtins"

    def __init__(self, package_name: str) -> None:
        self.package_name = package_name

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        if source.startswith(NODE_PREFIX):
            return ResolvedId(BUILTIN_PREFIX + source[len(NODE_PREFIX) :])
        root = source.split("/", 1)[0]
        # A package may share a built-in's name (e.g. the "events" polyfill).
        if root in NODE_BUILTINS and root != self.package_name:
            return ResolvedId(BUILTIN_PREFIX + source)
        return None

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        if module_id.startswith(BUILTIN_PREFIX):
            return LoadResult("export default {};\n")
        return None
