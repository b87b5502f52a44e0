"""Middleware registration."""

from fastapi import FastAPI

from devpath.config import Settings
from devpath.middleware.cors import setup_cors
from devpath.middleware.error_handler import setup_error_handlers
from devpath.middleware.logging import setup_logging
from devpath.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost),
    so CORS goes last to wrap error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
