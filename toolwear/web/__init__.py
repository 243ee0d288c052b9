"""Web interface for the tool wear tracker."""

from .app import create_app

__all__ = ["create_app"]
