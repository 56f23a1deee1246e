"""Package-name remapping."""

from __future__ import annotations

from collections.abc import Mapping

from pkgserve.compiler.model import BaseStage, ResolvedId, StageContext


class AliasStage(BaseStage):
    """Rewrites ``name`` and ``name/sub`` imports, then resolves the result normally."""

    name = "alias"

    def __init__(self, alias: Mapping[str, str]) -> None:
        # Longest prefix first so "@scope/pkg/sub" beats "@scope/pkg".
        self.alias = dict(sorted(alias.items(), key=lambda item: len(item[0]), reverse=True))

    def rewrite(self, source: str) -> str | None:
        for prefix, target in self.alias.items():
            if source == prefix or source.startswith(prefix + "/"):
                return target + source[len(prefix) :]
        return None

    async def resolve_id(
        self, source: str, importer: str | None, ctx: StageContext
    ) -> ResolvedId | None:
        rewritten = self.rewrite(source)
        if rewritten is None or rewritten == source:
            return None
        return await ctx.resolve(rewritten, importer, skip=self)
