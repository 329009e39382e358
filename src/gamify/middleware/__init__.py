"""Middleware registration."""

from fastapi import FastAPI

from gamify.config import Settings
from gamify.middleware.error_handler import setup_error_handlers
from gamify.middleware.logging import setup_logging
from gamify.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and request-id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
