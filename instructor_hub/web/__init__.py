"""Web interface for Instructor Hub."""

from .server import create_app

__all__ = ["create_app"]
