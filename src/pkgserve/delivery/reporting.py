"""Error reporting collaborator for the HTTP surface."""

from __future__ import annotations

from fastapi.responses import JSONResponse

from pkgserve.errors import PkgServeError
from pkgserve.observability import StructuredLogger


class ErrorReporter:
    """Logs a failed request and renders its machine-readable error body."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self.logger = logger or StructuredLogger()

    def report(self, exc: PkgServeError, *, path: str) -> JSONResponse:
        context = exc.context
        self.logger.log(
            operation="report",
            package=context.get("package"),
            stage=context.get("stage"),
            module=context.get("module"),
            message=f"{exc.code} {path}: {exc.message}",
            level="error" if exc.status_code >= 500 else "warning",
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
