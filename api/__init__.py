"""
HTTP routers for the generation gateway.
"""

from api.generate import router as generate_router, get_infra

__all__ = ["generate_router", "get_infra"]
