"""Delivery Layer: HTTP-facing request handling."""

from .app import create_app, create_router
from .handler import DeliveryResponse, PackageService
from .reporting import ErrorReporter

__all__ = [
    "DeliveryResponse",
    "ErrorReporter",
    "PackageService",
    "create_app",
    "create_router",
]
