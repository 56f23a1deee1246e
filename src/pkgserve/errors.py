"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    MALFORMED_SPECIFIER = "E_MALFORMED_SPECIFIER"
    VERSION_RESOLUTION = "E_VERSION_RESOLUTION"
    DISALLOWED_ACCESS = "E_DISALLOWED_ACCESS"
    BUILD = "E_BUILD"
    UNSUPPORTED_SOURCE = "E_UNSUPPORTED_SOURCE"
    CACHE_CONFLICT = "E_CACHE_CONFLICT"
    INTEGRITY = "E_INTEGRITY"


class PkgServeError(Exception):
    """Base error class that carries code, optional hint, and context."""

    status_code: int = 500
    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    @property
    def message(self) -> str:
        return super().__str__()

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class MalformedSpecifierError(PkgServeError):
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MALFORMED_SPECIFIER, hint=hint, context=context)


class VersionResolutionError(PkgServeError):
    status_code = 404

    def __init__(
        self,
        message: str,
        *,
        unreachable: bool = False,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VERSION_RESOLUTION, hint=hint, context=context)
        self.unreachable = unreachable
        if unreachable:
            self.status_code = 502


class DisallowedAccessError(PkgServeError):
    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DISALLOWED_ACCESS, hint=hint, context=context)


class BuildError(PkgServeError):
    """Compiler pipeline failure, tagged with the originating stage and package."""

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        package: str,
        module: str | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        merged = {"stage": stage, "package": package}
        if module is not None:
            merged["module"] = module
        merged.update(context or {})
        super().__init__(message, code=ErrorCode.BUILD, hint=hint, context=merged)
        self.stage = stage
        self.package = package
        self.module = module


class UnsupportedSourceError(PkgServeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.UNSUPPORTED_SOURCE, hint=hint, context=context)


class CacheConflictError(PkgServeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CACHE_CONFLICT, hint=hint, context=context)


class IntegrityError(PkgServeError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.INTEGRITY, hint=hint, context=context)


__all__ = [
    "BuildError",
    "CacheConflictError",
    "DisallowedAccessError",
    "ErrorCode",
    "IntegrityError",
    "MalformedSpecifierError",
    "PkgServeError",
    "UnsupportedSourceError",
    "VersionResolutionError",
]
