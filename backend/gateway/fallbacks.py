"""
Last-resort datasets served when the cache is empty and every upstream is down.

Hand-curated, immutable and deliberately small. Anything served from here is
flagged as degraded by the gateway.
"""

from types import MappingProxyType
from typing import Any, Optional

from .resources import POOL_LISTING_KEY, ResourceType

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
RAY_MINT = "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R"


FALLBACK_POOLS = (
    MappingProxyType({
        "id": "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
        "name": "SOL/USDC",
        "baseMint": SOL_MINT,
        "quoteMint": USDC_MINT,
        "lpMint": "8HoQnePLqPj4M7PUDzfw8e3Ymdwgc7NLGnaTUapubyvu",
        "tvl": 1_500_000.0,
        "volume24h": 2_500_000.0,
        "apr24h": 12.5,
        "protocol": "raydium",
    }),
    MappingProxyType({
        "id": "AVs9TA4nWDzfPJE9gGVNJMVhcQy3V9PGazuz33BfG2RA",
        "name": "RAY/SOL",
        "baseMint": RAY_MINT,
        "quoteMint": SOL_MINT,
        "lpMint": "89ZKE4aoyfLBe2RuV6jM3JGNhaV18Nxh8eNtjRcndBip",
        "tvl": 850_000.0,
        "volume24h": 1_200_000.0,
        "apr24h": 18.3,
        "protocol": "raydium",
    }),
    MappingProxyType({
        "id": "6UmmUiYoBjSrhakAobJw8BvkmJtDVxaeBtbt7rxWo1mg",
        "name": "RAY/USDC",
        "baseMint": RAY_MINT,
        "quoteMint": USDC_MINT,
        "lpMint": "FbC6K13MzHvN42bXrtGaWsvZY9fxrackRSZcBGfjPc7m",
        "tvl": 420_000.0,
        "volume24h": 380_000.0,
        "apr24h": 9.8,
        "protocol": "raydium",
    }),
)

# Stablecoins pinned at 1; SOL and RAY are conservative placeholders.
FALLBACK_PRICES = MappingProxyType({
    USDC_MINT: 1.0,
    USDT_MINT: 1.0,
    SOL_MINT: 100.0,
    RAY_MINT: 1.0,
})


def get_fallback(resource: ResourceType, key: Optional[str] = None) -> Optional[Any]:
    """
    Return a copy of the static dataset for `resource` / `key`, or None.

    Pool listings come back as plain dicts so callers can serialise them.
    """
    if resource == ResourceType.POOL_LISTING and key in (None, POOL_LISTING_KEY):
        return [dict(pool) for pool in FALLBACK_POOLS]

    if resource == ResourceType.TOKEN_PRICE and key:
        mint = key.split(":", 1)[1] if key.startswith("price:") else key
        return FALLBACK_PRICES.get(mint)

    return None
