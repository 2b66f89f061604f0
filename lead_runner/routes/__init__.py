"""
Route modules for the lead runner API.
"""

from .cookies import router as cookies_router
from .jobs import router as jobs_router

__all__ = ["cookies_router", "jobs_router"]
