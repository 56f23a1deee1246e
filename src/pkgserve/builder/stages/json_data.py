"""JSON files as ECMAScript modules."""

from __future__ import annotations

import json

from pkgserve.builder.stages.commonjs import RESERVED_NAMES, VALID_NAME
from pkgserve.compiler.model import BaseStage, StageContext, TransformResult


class JsonStage(BaseStage):
    """``data.json`` becomes a default export, plus one named export per identifier key.

    ``__moduleExports`` carries the parsed value for ``require()`` callers.
    """

    name = "json"

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        if module_id.startswith("\0") or not module_id.lower().endswith(".json"):
            return None
        value = json.loads(code)
        lines = [
            f"const __json = {json.dumps(value, ensure_ascii=False)};",
            "export default __json;",
            "export { __json as __moduleExports };",
        ]
        if isinstance(value, dict):
            names = [
                key for key in value if VALID_NAME.fullmatch(key) and key not in RESERVED_NAMES
            ]
            for index, name in enumerate(names):
                lines.append(f"const __json{index} = __json[{json.dumps(name)}];")
            if names:
                specs = ", ".join(f"__json{index} as {name}" for index, name in enumerate(names))
                lines.append(f"export {{ {specs} }};")
        return TransformResult("\n".join(lines) + "\n")
