"""Request path parsing into package specifiers."""

from __future__ import annotations

import mimetypes
import posixpath
import re
from collections.abc import Container
from dataclasses import dataclass

from pkgserve.errors import MalformedSpecifierError

SCRIPT_EXTENSIONS = frozenset({"", ".js", ".mjs", ".cjs"})
STYLESHEET_EXTENSIONS = frozenset({".css", ".scss", ".sass", ".less"})
BINARY_EXTENSIONS = frozenset({".wasm"})
TEXT_EXTENSIONS = frozenset({".txt"})
DATA_EXTENSIONS = frozenset({".json"})
MEDIA_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".avif",
        ".ico",
        ".bmp",
        ".svg",
        ".woff",
        ".woff2",
        ".ttf",
        ".otf",
        ".eot",
        ".mp3",
        ".mp4",
        ".webm",
        ".ogg",
        ".wav",
    }
)
ASSET_EXTENSIONS = (
    STYLESHEET_EXTENSIONS
    | BINARY_EXTENSIONS
    | TEXT_EXTENSIONS
    | DATA_EXTENSIONS
    | MEDIA_EXTENSIONS
)

_NAME_PART = r"[a-z0-9~][a-z0-9._~-]*"
SPECIFIER_PATTERN = re.compile(
    rf"^(?P<name>(?:@{_NAME_PART}/)?{_NAME_PART})"
    r"(?:@(?P<version>[^/]*))?"
    r"(?P<subpath>/.*)?$",
    re.IGNORECASE,
)
MODULE_FLAG = "module"
ASSET_FLAG = "asset"


def is_asset_path(path: str) -> bool:
    """Whether *path* is served as a file rather than bundled as a module."""
    extension = posixpath.splitext(path)[1].lower()
    if extension in SCRIPT_EXTENSIONS:
        return False
    return extension in ASSET_EXTENSIONS or mimetypes.guess_type(path)[0] is not None


@dataclass(frozen=True, slots=True)
class PackageSpecifier:
    name: str
    version_constraint: str | None
    subpath: str
    wants_module: bool = False
    wants_asset: bool = False

    @property
    def specifier(self) -> str:
        """The request string: name, optional version, and subpath."""
        head = self.name
        if self.version_constraint is not None:
            head = f"{self.name}@{self.version_constraint}"
        return f"{head}/{self.subpath}" if self.subpath else head

    @property
    def module_id(self) -> str:
        """Bare import id for the requested module, without version."""
        return f"{self.name}/{self.subpath}" if self.subpath else self.name

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.subpath)[1].lower()

    @property
    def is_stylesheet(self) -> bool:
        return self.extension in STYLESHEET_EXTENSIONS


def normalize_specifier(path: str, *, query: Container[str] = ()) -> PackageSpecifier:
    """Parse ``[/]name[@version][/subpath]`` into a :class:`PackageSpecifier`."""
    raw = path[1:] if path.startswith("/") else path
    if not raw:
        raise MalformedSpecifierError(
            "Empty package specifier.",
            hint="Request /<package>[@<version>]/<subpath>.",
            context={"operation": "normalize", "path": path},
        )
    if "\\" in raw or "\x00" in raw:
        raise MalformedSpecifierError(
            "Package specifier contains forbidden characters.",
            context={"operation": "normalize", "path": path},
        )

    match = SPECIFIER_PATTERN.match(raw)
    if match is None:
        raise MalformedSpecifierError(
            "Package specifier does not match name[@version][/subpath].",
            hint="Scoped packages take the form @scope/name.",
            context={"operation": "normalize", "path": path},
        )

    version = match.group("version")
    if version is not None and not version.strip():
        raise MalformedSpecifierError(
            "Package specifier has an empty version suffix.",
            context={"operation": "normalize", "path": path},
        )

    subpath = _normalize_subpath(match.group("subpath") or "", path=path)
    return PackageSpecifier(
        name=match.group("name"),
        version_constraint=version,
        subpath=subpath,
        wants_module=MODULE_FLAG in query,
        wants_asset=ASSET_FLAG in query or is_asset_path(subpath),
    )


def _normalize_subpath(raw: str, *, path: str) -> str:
    stripped = raw.lstrip("/")
    if not stripped:
        return ""
    segments = stripped.split("/")
    if segments[-1] == "":
        segments.pop()
    for segment in segments:
        if segment in ("", ".", ".."):
            raise MalformedSpecifierError(
                "Package subpath contains empty or relative segments.",
                hint="Subpaths must point inside the package.",
                context={"operation": "normalize", "path": path},
            )
    return "/".join(segments)
