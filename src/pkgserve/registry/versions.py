"""npm-style version selection over a set of published versions."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from semantic_version import NpmSpec, Version

from pkgserve.errors import VersionResolutionError

LATEST_TAG = "latest"


def select_version(
    name: str,
    constraint: str | None,
    *,
    versions: Iterable[str],
    dist_tags: Mapping[str, str],
) -> str:
    """Pick the published version for *constraint*: dist-tag, exact, or highest in range."""
    published = list(versions)
    wanted = (constraint or "").strip() or LATEST_TAG

    if wanted in dist_tags:
        return dist_tags[wanted]
    if wanted in published:
        return wanted

    try:
        spec = NpmSpec(wanted)
    except ValueError as exc:
        raise VersionResolutionError(
            "Version constraint is neither a dist-tag nor a valid npm range.",
            hint="Use an exact version, a range like ^1.2.0, or a dist-tag.",
            context={"operation": "resolve", "package": name, "constraint": wanted},
        ) from exc

    selected = spec.select(_parse_all(published))
    if selected is None:
        raise VersionResolutionError(
            "No published version satisfies the requested constraint.",
            context={"operation": "resolve", "package": name, "constraint": wanted},
        )
    return str(selected)


def satisfies(version: str, constraint: str | None) -> bool:
    """Whether *version* matches *constraint*; an empty constraint matches anything."""
    wanted = (constraint or "").strip()
    if not wanted or wanted == LATEST_TAG or wanted == version:
        return True
    try:
        return Version(version) in NpmSpec(wanted)
    except ValueError:
        return False


def _parse_all(published: list[str]) -> list[Version]:
    parsed: list[Version] = []
    for raw in published:
        try:
            parsed.append(Version(raw))
        except ValueError:
            continue
    return parsed
