"""Last stage: nothing reaches the local disk."""

from __future__ import annotations

from pkgserve.compiler.model import BaseStage, LoadResult, StageContext
from pkgserve.errors import DisallowedAccessError


class NeverDiskStage(BaseStage):
    name = "no-disk"

    async def load(self, module_id: str, ctx: StageContext) -> LoadResult | None:
        raise DisallowedAccessError(
            "Local file access is not allowed while bundling packages.",
            hint="Package code may only load files published in the package.",
            context={"operation": "load", "package": ctx.package, "module": module_id},
        )
