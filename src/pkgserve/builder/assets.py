"""Raw asset delivery and proxy modules for directly requested asset files."""

from __future__ import annotations

import json
import mimetypes

from pkgserve.models import JS_CONTENT_TYPE, BuildOutput
from pkgserve.registry.base import PackageFiles
from pkgserve.specifier import PackageSpecifier

CONTENT_TYPES = {
    ".css": "text/css",
    ".scss": "text/x-scss",
    ".sass": "text/x-sass",
    ".less": "text/less",
    ".wasm": "application/wasm",
    ".json": "application/json",
    ".txt": "text/plain",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(path: str) -> str:
    extension = "." + path.rsplit(".", 1)[-1].lower() if "." in path else ""
    known = CONTENT_TYPES.get(extension)
    if known is not None:
        return known
    guessed, _ = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPE


def asset_url(specifier: PackageSpecifier, public_path: str) -> str:
    return f"{public_path.rstrip('/')}/{specifier.specifier}"


def build_asset(
    specifier: PackageSpecifier,
    files: PackageFiles | None,
    *,
    public_path: str,
    style_loader_url: str,
) -> BuildOutput:
    """Serve the file itself, or with module intent a small module standing in for it."""
    if specifier.wants_module:
        url = json.dumps(asset_url(specifier, public_path))
        if specifier.is_stylesheet:
            code = f"import {{ style }} from {json.dumps(style_loader_url)};\nstyle({url});\n"
        else:
            code = f"export default {url};\n"
        return BuildOutput(code=code.encode("utf-8"), content_type=JS_CONTENT_TYPE)

    if files is None:
        raise ValueError("raw asset delivery needs the package files")
    return BuildOutput(
        code=files.read(specifier.subpath),
        content_type=content_type_for(specifier.subpath),
    )
