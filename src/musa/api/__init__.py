"""HTTP surface and request handling for the document API."""

from .app import create_app

__all__ = ["create_app"]
