"""``process.env.NODE_ENV`` substitution and ``process``/``global`` shims."""

from __future__ import annotations

import json
import re

from pkgserve.builder.stages.package_source import is_script
from pkgserve.compiler.model import BaseStage, StageContext, TransformResult
from pkgserve.compiler.scan import mask_source, scan_module

NODE_ENV_REFERENCE = re.compile(r"(?<![\w$.])process\s*\.\s*env\s*\.\s*NODE_ENV\b")
PROCESS_REFERENCE = re.compile(r"(?<![\w$.])process\b(?!\s*:)")
GLOBAL_REFERENCE = re.compile(r"(?<![\w$.])global\b(?!\s*:)")
DECLARED = r"(?<![\w$.])(?:var|let|const|function|class)\s+{name}\b"


class ProcessEnvStage(BaseStage):
    name = "process-env"

    def __init__(self, node_env: str) -> None:
        self.node_env = node_env

    def process_shim(self) -> str:
        env = json.dumps({"NODE_ENV": self.node_env})
        return (
            f"const process = {{ env: {env}, browser: true, argv: [], versions: {{}}, "
            'platform: "browser", cwd: () => "/", '
            "nextTick: (fn, ...args) => Promise.resolve().then(() => fn(...args)) };"
        )

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        if not is_script(module_id):
            return None
        masked = mask_source(code)
        imported = {
            binding.local
            for statement in scan_module(code, masked).imports
            for binding in statement.bindings
        }
        replacement = json.dumps(self.node_env)
        spans = [match.span() for match in NODE_ENV_REFERENCE.finditer(masked)]
        for start, end in reversed(spans):
            code = code[:start] + replacement + code[end:]
            masked = masked[:start] + replacement + masked[end:]

        header: list[str] = []
        if PROCESS_REFERENCE.search(masked) and not _declares("process", masked, imported):
            header.append(self.process_shim())
        if GLOBAL_REFERENCE.search(masked) and not _declares("global", masked, imported):
            header.append("const global = globalThis;")

        if not spans and not header:
            return None
        return TransformResult("\n".join([*header, code]) if header else code)


def _declares(name: str, masked: str, imported: set[str]) -> bool:
    return name in imported or re.search(DECLARED.format(name=name), masked) is not None
