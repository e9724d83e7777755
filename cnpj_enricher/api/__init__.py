"""HTTP API."""

from .app import app, create_app, http_status_for

__all__ = ["app", "create_app", "http_status_for"]
