"""HTTP API for the extraction pipeline."""

from .app import create_app, status_for

__all__ = ["create_app", "status_for"]
