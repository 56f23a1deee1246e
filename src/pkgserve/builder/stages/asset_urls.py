"""Non-JavaScript package files imported from package code."""

from __future__ import annotations

import json
import posixpath

from pkgserve.builder.stages.package_source import PackageSourceStage, is_script
from pkgserve.compiler.model import BaseStage, StageContext, TransformResult
from pkgserve.specifier import ASSET_FLAG, STYLESHEET_EXTENSIONS, is_asset_path


class AssetUrlStage(BaseStage):
    """Replaces an imported asset with a module exporting its servable URL.

    Stylesheets additionally hand their URL to the runtime style loader.
    """

    name = "asset-urls"

    def __init__(self, source: PackageSourceStage, *, style_loader_url: str) -> None:
        self.source = source
        self.style_loader_url = style_loader_url

    def url_for(self, path: str) -> str:
        url = f"{self.source.public_path}/{self.source.files.package_id}/{path}"
        return url if is_asset_path(path) else f"{url}?{ASSET_FLAG}"

    async def transform(
        self, code: str, module_id: str, ctx: StageContext
    ) -> TransformResult | None:
        path = self.source.path_of(module_id)
        if path is None or is_script(module_id) or path.lower().endswith(".json"):
            return None
        url = json.dumps(self.url_for(path))
        if posixpath.splitext(path)[1].lower() in STYLESHEET_EXTENSIONS:
            loader = json.dumps(self.style_loader_url)
            return TransformResult(
                f"import {{ style }} from {loader};\nstyle({url});\nexport default {url};\n"
            )
        return TransformResult(f"export default {url};\n")
