"""
Prioritizer HTTP API
====================

FastAPI application factories and routers.
"""

from prioritizer.api.server import create_app, create_default_app

__all__ = ["create_app", "create_default_app"]
