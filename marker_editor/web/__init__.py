"""Web interface for the Marker Editor."""

from .server import create_app

__all__ = ["create_app"]
