"""
Prioritizer API Routers
=======================

FastAPI routers for the prioritization service.
"""

from prioritizer.api.routers.prioritization import router as prioritization_router

__all__ = ["prioritization_router"]
