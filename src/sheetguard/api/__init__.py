"""HTTP API for SheetGuard."""

from .app import create_app

__all__ = ["create_app"]
