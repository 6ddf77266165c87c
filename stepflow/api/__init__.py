"""
stepflow HTTP API.

Usage:
    from stepflow.api import create_app
    app = create_app()
"""

from .server import create_app

__all__ = ["create_app"]
