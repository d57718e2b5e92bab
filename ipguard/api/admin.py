"""Admin endpoints for managing blocked addresses.

Authentication and role checks are supplied by the host application as
FastAPI dependencies; this router only talks to the BlockRegistry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Sequence

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import bittensor as bt

from ipguard.guard.errors import GuardRejection, StoreUnavailable
from ipguard.guard.registry import BlockRegistry
from ipguard.guard.service import ADMIN_PREFIX
from ipguard.shared.log_colors import LogColors


class BlockAddressRequest(BaseModel):
    ip_address: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _failure(operation: str, exc: Exception) -> JSONResponse:
    if isinstance(exc, GuardRejection):
        return exc.to_response()
    if isinstance(exc, StoreUnavailable):
        bt.logging.warning(f"{LogColors.STORE_LABEL} admin_{operation}_failed: error={exc}")
        return _error(503, "Block store unavailable, try again later")
    bt.logging.error(f"{LogColors.GUARD_LABEL} admin_{operation}_failed: error={exc!r}")
    return _error(500, f"Failed to {operation.replace('_', ' ')}")


def build_admin_router(
    registry: BlockRegistry,
    dependencies: Sequence[Any] = (),
    prefix: str = ADMIN_PREFIX,
) -> APIRouter:
    """Router exposing block, unblock and list over HTTP.

    ``dependencies`` are callables wrapped in ``Depends`` and run before
    every endpoint (typically token auth plus an admin-role check).
    """
    router = APIRouter(
        prefix=prefix,
        tags=["admin"],
        dependencies=[Depends(dep) for dep in dependencies],
    )

    @router.post("/block-ip")
    async def block_ip(body: BlockAddressRequest):
        try:
            await registry.block(body.ip_address, body.user_id, body.reason, body.expires_at)
        except Exception as e:
            return _failure("block_ip", e)
        return {"success": True, "message": "IP blocked successfully"}

    @router.delete("/unblock-ip/{ip_address}")
    async def unblock_ip(ip_address: str):
        try:
            unblocked = await registry.unblock(ip_address)
        except Exception as e:
            return _failure("unblock_ip", e)
        if not unblocked:
            bt.logging.debug({"admin_unblock_ip": {"address": ip_address, "noop": True}})
        return {"success": True, "message": "IP unblocked successfully"}

    @router.get("/blocked-ips")
    async def list_blocked_ips(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=500),
    ):
        try:
            result = await registry.list_blocked(page=page, page_size=limit)
        except Exception as e:
            return _failure("list_blocked_ips", e)
        return [record.to_dict() for record in result.items]

    return router


__all__ = ["ADMIN_PREFIX", "BlockAddressRequest", "build_admin_router"]
