"""API routers"""

from . import search

__all__ = ["search"]
