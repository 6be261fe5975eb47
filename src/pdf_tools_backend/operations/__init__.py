"""
HTTP handlers for the PDF operations, grouped by concern.

Each submodule exposes an ``APIRouter`` without a prefix; ``main`` mounts all
of them under every public prefix.
"""

from . import conversions, pages, quality, security

routers = [pages.router, quality.router, security.router, conversions.router]

__all__ = ["routers"]
