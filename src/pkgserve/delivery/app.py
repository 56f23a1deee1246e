"""FastAPI application serving ``/<package>[@<version>]/<subpath>[?module]``."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import Response

from pkgserve.compiler.model import ModuleCompiler
from pkgserve.config import ServerOptions
from pkgserve.delivery.handler import PackageService
from pkgserve.delivery.reporting import ErrorReporter
from pkgserve.errors import PkgServeError
from pkgserve.registry.base import Registry
from pkgserve.version import __version__


def create_router(service: PackageService) -> APIRouter:
    router = APIRouter()

    @router.get("/{path:path}")
    async def serve_package(path: str, request: Request) -> Response:
        result = await service.handle(
            path,
            query=frozenset(request.query_params.keys()),
            headers=dict(request.headers),
        )
        return Response(
            content=result.body,
            status_code=result.status,
            headers=dict(result.headers),
            media_type=None,
        )

    return router


def create_app(
    options: ServerOptions | None = None,
    *,
    registry: Registry | None = None,
    compiler: ModuleCompiler | None = None,
    reporter: ErrorReporter | None = None,
    service: PackageService | None = None,
) -> FastAPI:
    """Build the app; configuration errors such as an unsupported source raise here."""
    options = options or ServerOptions.from_env()
    service = service or PackageService(options, registry=registry, compiler=compiler)
    reporter = reporter or ErrorReporter(service.logger)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await service.close()

    app = FastAPI(title="pkgserve", version=__version__, lifespan=lifespan)
    app.state.service = service
    app.state.reporter = reporter

    @app.exception_handler(PkgServeError)
    async def handle_pkgserve_error(request: Request, exc: PkgServeError) -> Response:
        return reporter.report(exc, path=request.url.path)

    app.include_router(create_router(service), prefix=options.public_path.rstrip("/"))
    return app
