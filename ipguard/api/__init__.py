"""HTTP routers for guard administration."""

from .admin import ADMIN_PREFIX, BlockAddressRequest, build_admin_router

__all__ = ["ADMIN_PREFIX", "BlockAddressRequest", "build_admin_router"]
