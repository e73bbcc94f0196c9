"""
Resource classes served by the gateway and the parsers for their upstream payloads.

Raydium exposes two pool listings with different shapes (v2 `main/pairs` is a bare
list, v3 `pools/info/list` is wrapped in `{"data": {"data": [...]}}`) and price APIs
disagree as well, so every upstream payload is reduced to one compact shape here
before it reaches the cache.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional


class ResourceType(str, Enum):
    """Logical resources the gateway knows how to resolve."""
    POOL_LISTING = "pool-listing"
    TOKEN_PRICE = "token-price"
    RPC = "rpc-passthrough"


POOL_LISTING_KEY = "pools:raydium"

# Base58, no 0 / O / I / l
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def price_key(mint: str) -> str:
    return f"price:{mint}"


def is_solana_address(value: str) -> bool:
    return bool(SOLANA_ADDRESS_RE.fullmatch(value or ""))


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def _normalize_v2_pair(pair: Dict) -> Dict:
    return {
        "id": pair.get("ammId") or pair.get("id"),
        "name": pair.get("name", ""),
        "baseMint": pair.get("baseMint"),
        "quoteMint": pair.get("quoteMint"),
        "lpMint": pair.get("lpMint"),
        "tvl": _to_float(pair.get("liquidity")),
        "volume24h": _to_float(pair.get("volume24h")),
        "apr24h": _to_float(pair.get("apr24h")),
        "protocol": "raydium",
    }


def _normalize_v3_pool(pool: Dict) -> Dict:
    mint_a = pool.get("mintA") or {}
    mint_b = pool.get("mintB") or {}
    day = pool.get("day") or {}
    symbols = [s for s in (mint_a.get("symbol"), mint_b.get("symbol")) if s]
    return {
        "id": pool.get("id"),
        "name": "/".join(symbols) if symbols else pool.get("id", ""),
        "baseMint": mint_a.get("address"),
        "quoteMint": mint_b.get("address"),
        "lpMint": (pool.get("lpMint") or {}).get("address"),
        "tvl": _to_float(pool.get("tvl")),
        "volume24h": _to_float(day.get("volume")),
        "apr24h": _to_float(day.get("apr")),
        "protocol": "raydium",
    }


def normalize_pool_listing(payload: Any, limit: Optional[int] = None) -> List[Dict]:
    """
    Reduce a Raydium v2 or v3 listing to compact pool dicts, most liquid first.

    Raises ValueError when the payload is neither shape or holds no pools, so the
    failover fetcher moves on to the next candidate.
    """
    if isinstance(payload, list):
        pools = [_normalize_v2_pair(p) for p in payload if isinstance(p, dict)]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        if payload.get("success") is False:
            raise ValueError("upstream reported success=false")
        items = payload["data"].get("data") or []
        pools = [_normalize_v3_pool(p) for p in items if isinstance(p, dict)]
    else:
        raise ValueError(f"unrecognised pool listing shape: {type(payload).__name__}")

    pools = [p for p in pools if p["id"]]
    if not pools:
        raise ValueError("pool listing is empty")

    pools.sort(key=lambda p: p["tvl"], reverse=True)
    if limit:
        pools = pools[:limit]
    return pools


def extract_token_price(payload: Any, mint: str) -> float:
    """
    Pull a USD price for `mint` out of a Jupiter or CoinGecko response.

    Jupiter:   {"data": {"<mint>": {"price": "147.2"}}}
    CoinGecko: {"<mint>": {"usd": 147.2}}  (keys sometimes lower-cased)
    """
    if not isinstance(payload, dict):
        raise ValueError("price payload is not an object")

    data = payload.get("data")
    if isinstance(data, dict):
        entry = data.get(mint)
        if isinstance(entry, dict) and entry.get("price") is not None:
            return _checked_price(entry["price"])
        raise ValueError(f"no price for {mint}")

    entry = payload.get(mint) or payload.get(mint.lower())
    if isinstance(entry, dict) and entry.get("usd") is not None:
        return _checked_price(entry["usd"])
    raise ValueError(f"no price for {mint}")


def _checked_price(raw: Any) -> float:
    price = float(raw)
    if price < 0:
        raise ValueError(f"negative price {price}")
    return price


def build_rpc_payload(method: str, params: Optional[List] = None, request_id: Any = 1) -> Dict:
    """JSON-RPC 2.0 envelope for the Solana node."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": params if params is not None else [],
    }
