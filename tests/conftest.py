"""Shared test fixtures."""

from __future__ import annotations

import json
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pkgserve.config import ServerOptions
from pkgserve.registry.memory import InMemoryRegistry

LEFT_PAD_SOURCE = """\
'use strict';
module.exports = leftPad;

function leftPad(str, len, ch) {
  str = String(str);
  ch = ch || ' ';
  while (str.length < len) str = ch + str;
  return str;
}
"""

SOME_PKG_FILES = {
    "package.json": json.dumps(
        {
            "name": "some-pkg",
            "version": "2.0.0",
            "main": "cjs/index.js",
            "module": "esm/index.js",
        }
    ),
    "esm/index.js": (
        'import { helper } from "./helper.js";\n'
        'import "../theme.css";\n'
        "export function greet(name) {\n"
        "  return helper(name);\n"
        "}\n"
        "export default greet;\n"
    ),
    "esm/helper.js": "export const helper = (name) => `Hello, ${name}!`;\n",
    "cjs/index.js": "exports.greet = (name) => 'Hello, ' + name + '!';\n",
    "theme.css": "body { color: rebeccapurple; }\n",
}


@pytest.fixture
def registry() -> InMemoryRegistry:
    """Registry with a CommonJS package, an ESM package with a stylesheet, and a hostile one."""
    registry = InMemoryRegistry()
    registry.publish("left-pad", "1.2.0", {"index.js": LEFT_PAD_SOURCE}, tag=None)
    registry.publish(
        "left-pad",
        "1.3.0",
        {
            "package.json": json.dumps({"name": "left-pad", "version": "1.3.0", "main": "index.js"}),
            "index.js": LEFT_PAD_SOURCE,
        },
    )
    registry.publish("some-pkg", "2.0.0", SOME_PKG_FILES)
    registry.publish(
        "evil-pkg",
        "0.0.1",
        {"index.js": 'import secret from "/etc/passwd";\nexport default secret;\n'},
    )
    return registry


@pytest.fixture
def options(tmp_path: Path) -> ServerOptions:
    return ServerOptions(cwd=tmp_path, disk_cache=False, disable_local_resolution=True)


@pytest.fixture
def run_bundle(tmp_path: Path) -> Callable[[str, str], Any]:
    """Evaluate a bundle in node; the script body sees it as ``m`` and returns JSON."""
    node = shutil.which("node")
    if node is None:
        pytest.skip("node is not installed")
    workdir = tmp_path / "node"
    workdir.mkdir()

    def run(bundle: str, script: str) -> Any:
        (workdir / "bundle.mjs").write_text(bundle, encoding="utf-8")
        main = workdir / "main.mjs"
        main.write_text(
            'import * as m from "./bundle.mjs";\n'
            f"const result = await (async () => {{ {script} }})();\n"
            "console.log(JSON.stringify(result));\n",
            encoding="utf-8",
        )
        completed = subprocess.run(
            [node, str(main)], capture_output=True, text=True, timeout=60, check=False
        )
        assert completed.returncode == 0, completed.stderr
        return json.loads(completed.stdout)

    return run
