"""
Gateway Data Router
Pool listings, token prices and the Solana RPC proxy, all served through the DataGateway
"""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from typing import Any, List, Optional

from gateway import DataGateway, ValidationError

router = APIRouter(prefix="/api", tags=["Gateway Data"])


class RpcRequest(BaseModel):
    """JSON-RPC call forwarded to the Solana node"""
    method: str
    params: Optional[List[Any]] = None
    id: Any = 1


def get_gateway(request: Request) -> DataGateway:
    return request.app.state.gateway


@router.get("/pools")
async def get_pools(
    limit: int = Query(50, ge=1, le=1000, description="Maximum pools returned"),
    refresh: bool = Query(False, description="Bypass the fresh-cache shortcut"),
    gateway: DataGateway = Depends(get_gateway),
):
    """
    Raydium pool listing, most liquid first.

    Served from cache when fresh; a stale copy or the static pool list is
    returned with `degraded: true` when Raydium is unreachable.
    """
    result = await gateway.get_pool_listing(force_refresh=refresh)
    pools = result.value[:limit]

    return {
        "success": True,
        "data": pools,
        "count": len(pools),
        **result.meta(),
    }


@router.get("/prices")
async def get_prices(
    mints: str = Query(..., description="Comma-separated SPL mint addresses"),
    gateway: DataGateway = Depends(get_gateway),
):
    """USD prices for several mints. Unavailable mints come back as null."""
    mint_list = [m.strip() for m in mints.split(",") if m.strip()]
    if not mint_list:
        raise ValidationError("at least one mint is required")
    if len(mint_list) > 100:
        raise ValidationError("too many mints", {"max": 100, "received": len(mint_list)})

    results = await gateway.get_token_prices(mint_list)

    return {
        "success": True,
        "data": {
            mint: ({"price": r.value, **r.meta()} if r is not None else None)
            for mint, r in results.items()
        },
        "degraded": any(r is None or r.degraded for r in results.values()),
    }


@router.get("/prices/{mint}")
async def get_price(
    mint: str,
    refresh: bool = Query(False, description="Bypass the fresh-cache shortcut"),
    gateway: DataGateway = Depends(get_gateway),
):
    """USD price for one mint."""
    result = await gateway.get_token_price(mint, force_refresh=refresh)

    return {
        "success": True,
        "mint": mint,
        "price": result.value,
        **result.meta(),
    }


@router.post("/solana/rpc")
async def solana_rpc(
    body: RpcRequest,
    gateway: DataGateway = Depends(get_gateway),
):
    """
    Forward a JSON-RPC call to the Solana node and return its response verbatim.

    Not cached. Upstream failures surface as 502 EXTERNAL_API_ERROR.
    """
    return await gateway.rpc_call(body.method, body.params, body.id)
