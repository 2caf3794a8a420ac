"""
API route handlers.
"""

from . import auth, bookmarks

__all__ = ["auth", "bookmarks"]
