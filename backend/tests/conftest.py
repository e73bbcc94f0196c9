"""
Pytest Configuration for the Data Gateway Tests

Run all tests: python -m pytest backend/tests/ -v
Run unit tests only: python -m pytest backend/tests/ -v -m "not integration"
"""

import pytest
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from gateway import GatewayConfig, ResourcePolicy, ResourceType, UpstreamCandidate


# =============================================================================
# HELPERS
# =============================================================================

class FakeClock:
    """Manually advanced wall clock for TTL tests"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class UpstreamStub:
    """
    Scriptable upstream behind httpx.MockTransport.

    routes maps a URL prefix to a handler(request) -> httpx.Response; every call is recorded.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, prefix: str, handler):
        self.routes[prefix] = handler

    def count(self, prefix: str) -> int:
        return sum(1 for url in self.calls if url.startswith(prefix))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        for prefix, handler in self.routes.items():
            if url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, json={"error": "no route"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


# =============================================================================
# FIXTURES - Shared across all test files
# =============================================================================

POOLS_PRIMARY = "https://pools-primary.test/v2/main/pairs"
POOLS_SECONDARY = "https://pools-secondary.test/pools/info/list"
PRICES_PRIMARY = "https://prices-primary.test/price?ids={mint}"
PRICES_SECONDARY = "https://prices-secondary.test/token_price?contract_addresses={mint}"
RPC_URL = "https://rpc.test/"


@pytest.fixture
def test_mints():
    """Well-known Solana mints"""
    return {
        "SOL": "So11111111111111111111111111111111111111112",
        "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        "RAY": "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",
        "UNKNOWN": "UnknownMint1111111111111111111111111111111",
    }


@pytest.fixture
def raydium_pairs():
    """Raydium v2 main/pairs payload (trimmed)"""
    return [
        {
            "name": "RAY-SOL",
            "ammId": "AVs9TA4nWDzfPJE9gGVNJMVhcQy3V9PGazuz33BfG2RA",
            "baseMint": "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",
            "quoteMint": "So11111111111111111111111111111111111111112",
            "lpMint": "89ZKE4aoyfLBe2RuV6jM3JGNhaV18Nxh8eNtjRcndBip",
            "liquidity": 850000.5,
            "volume24h": 1200000,
            "apr24h": 18.3,
        },
        {
            "name": "SOL-USDC",
            "ammId": "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
            "baseMint": "So11111111111111111111111111111111111111112",
            "quoteMint": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
            "lpMint": "8HoQnePLqPj4M7PUDzfw8e3Ymdwgc7NLGnaTUapubyvu",
            "liquidity": 15000000,
            "volume24h": 25000000,
            "apr24h": 12.5,
        },
    ]


@pytest.fixture
def raydium_v3_listing():
    """Raydium v3 pools/info/list payload (trimmed)"""
    return {
        "id": "req-1",
        "success": True,
        "data": {
            "count": 1,
            "data": [
                {
                    "type": "Standard",
                    "id": "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
                    "mintA": {"address": "So11111111111111111111111111111111111111112", "symbol": "WSOL"},
                    "mintB": {"address": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "symbol": "USDC"},
                    "lpMint": {"address": "8HoQnePLqPj4M7PUDzfw8e3Ymdwgc7NLGnaTUapubyvu"},
                    "tvl": 14000000.0,
                    "day": {"volume": 21000000.0, "apr": 11.2},
                }
            ],
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def gateway_config():
    """Config pointing at stub hosts, no pacing delay so tests run fast"""
    return GatewayConfig(
        memory_budget_bytes=1024 * 1024,
        max_entry_bytes=256 * 1024,
        heap_ceiling_bytes=0,
        min_dispatch_delay=0.0,
        resources={
            ResourceType.POOL_LISTING: ResourcePolicy(
                ttl=3600,
                stale_ttl=86400,
                timeout=5.0,
                queued=True,
                candidates=[
                    UpstreamCandidate(POOLS_PRIMARY, 0),
                    UpstreamCandidate(POOLS_SECONDARY, 1),
                ],
            ),
            ResourceType.TOKEN_PRICE: ResourcePolicy(
                ttl=300,
                stale_ttl=3600,
                timeout=5.0,
                queued=True,
                candidates=[
                    UpstreamCandidate(PRICES_PRIMARY, 0),
                    UpstreamCandidate(PRICES_SECONDARY, 1),
                ],
            ),
            ResourceType.RPC: ResourcePolicy(
                ttl=0,
                stale_ttl=0,
                timeout=5.0,
                queued=False,
                candidates=[UpstreamCandidate(RPC_URL, 0)],
            ),
        },
    )


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (use real APIs)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
