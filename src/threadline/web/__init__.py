"""Web application entry point for Threadline."""

from .app import create_app

__all__ = ["create_app"]
