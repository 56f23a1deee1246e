"""Run the package server: ``python -m pkgserve``."""

from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from pkgserve.config import DEFAULT_REGISTRY_URL, ServerOptions
from pkgserve.delivery.app import create_app
from pkgserve.observability import configure_logging


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="pkgserve")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--cwd", type=Path, default=Path.cwd())
    parser.add_argument("--registry", default=DEFAULT_REGISTRY_URL)
    parser.add_argument("--cache-dir", type=Path, default=None)
    parser.add_argument("--no-disk-cache", action="store_true")
    parser.add_argument("--no-optimize", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    overrides = {
        "cwd": args.cwd.resolve(),
        "registry_url": args.registry,
        "cache_dir": args.cache_dir,
        "disk_cache": not args.no_disk_cache,
        "optimize": not args.no_optimize,
    }
    if args.debug:
        overrides["debug"] = True
    options = ServerOptions.from_env(**overrides)
    configure_logging(debug=options.debug)
    uvicorn.run(create_app(options), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
