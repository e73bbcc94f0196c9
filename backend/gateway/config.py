"""
Configuration Management for the Data Gateway
Environment-based configuration for TTLs, memory budget, pacing and upstream candidates

Features:
- Environment-based config (dev/staging/prod)
- Per-resource policies (TTL, stale retention, timeout, queueing, candidates)
- Dynamic reload
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List
from enum import Enum

from .failover import UpstreamCandidate
from .resources import ResourceType

logger = logging.getLogger("Config")

MIB = 1024 * 1024

RAYDIUM_V2_PAIRS_URL = "https://api.raydium.io/v2/main/pairs"
RAYDIUM_V3_POOLS_URL = (
    "https://api-v3.raydium.io/pools/info/list"
    "?poolType=all&poolSortField=liquidity&sortType=desc&pageSize=1000&page=1"
)
JUPITER_PRICE_URL = "https://api.jup.ag/price/v2?ids={mint}"
COINGECKO_PRICE_URL = (
    "https://api.coingecko.com/api/v3/simple/token_price/solana"
    "?contract_addresses={mint}&vs_currencies=usd"
)
SOLANA_RPC_URL = "https://solana-rpc.publicnode.com"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _candidates(*urls: str) -> List[UpstreamCandidate]:
    return [UpstreamCandidate(url=url, priority=i) for i, url in enumerate(urls)]


@dataclass
class ResourcePolicy:
    """How one resource class is cached, paced and fetched"""
    ttl: float
    stale_ttl: float
    timeout: float
    queued: bool = True
    candidates: List[UpstreamCandidate] = field(default_factory=list)


def _default_resources() -> Dict[ResourceType, ResourcePolicy]:
    return {
        # 1h fresh, keep 24h for the stale path
        ResourceType.POOL_LISTING: ResourcePolicy(
            ttl=3600,
            stale_ttl=86400,
            timeout=30.0,
            queued=True,
            candidates=_candidates(RAYDIUM_V2_PAIRS_URL, RAYDIUM_V3_POOLS_URL),
        ),
        # 5min fresh, keep 1h for the stale path
        ResourceType.TOKEN_PRICE: ResourcePolicy(
            ttl=300,
            stale_ttl=3600,
            timeout=10.0,
            queued=True,
            candidates=_candidates(JUPITER_PRICE_URL, COINGECKO_PRICE_URL),
        ),
        # never cached
        ResourceType.RPC: ResourcePolicy(
            ttl=0,
            stale_ttl=0,
            timeout=15.0,
            queued=False,
            candidates=_candidates(SOLANA_RPC_URL),
        ),
    }


@dataclass
class GatewayConfig:
    """Main gateway configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: str = "INFO"

    # Cache budget
    memory_budget_bytes: int = 64 * MIB
    max_entry_bytes: int = 16 * MIB
    heap_ceiling_bytes: int = 512 * MIB
    high_water_ratio: float = 0.8
    sweep_interval: float = 300.0
    memory_check_interval: float = 60.0

    # Outbound pacing
    min_dispatch_delay: float = 1.0
    user_agent: str = "SolanaDataGateway/1.0"

    pool_listing_limit: int = 500

    resources: Dict[ResourceType, ResourcePolicy] = field(default_factory=_default_resources)

    def policy(self, resource: ResourceType) -> ResourcePolicy:
        return self.resources[resource]

    @property
    def ttl_by_resource(self) -> Dict[str, float]:
        return {r.value: p.ttl for r, p in self.resources.items()}

    @property
    def upstream_candidates(self) -> Dict[str, List[str]]:
        return {
            r.value: [c.url for c in sorted(p.candidates, key=lambda c: c.priority)]
            for r, p in self.resources.items()
        }

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Create configuration from environment variables"""
        env = os.environ.get("GATEWAY_ENV", "development").lower()

        config = cls(
            environment=Environment(env) if env in [e.value for e in Environment] else Environment.DEVELOPMENT,
            debug=os.environ.get("GATEWAY_DEBUG", "true").lower() == "true",
            log_level=os.environ.get("GATEWAY_LOG_LEVEL", "INFO").upper(),
            memory_budget_bytes=int(os.environ.get("GATEWAY_MEMORY_BUDGET_BYTES", 64 * MIB)),
            max_entry_bytes=int(os.environ.get("GATEWAY_MAX_ENTRY_BYTES", 16 * MIB)),
            heap_ceiling_bytes=int(os.environ.get("GATEWAY_HEAP_CEILING_BYTES", 512 * MIB)),
            min_dispatch_delay=float(os.environ.get("GATEWAY_MIN_DISPATCH_DELAY", "1.0")),
        )

        pools = config.resources[ResourceType.POOL_LISTING]
        prices = config.resources[ResourceType.TOKEN_PRICE]
        rpc = config.resources[ResourceType.RPC]

        if os.environ.get("GATEWAY_POOLS_TTL"):
            pools.ttl = float(os.environ["GATEWAY_POOLS_TTL"])
        if os.environ.get("GATEWAY_PRICES_TTL"):
            prices.ttl = float(os.environ["GATEWAY_PRICES_TTL"])
        if os.environ.get("GATEWAY_POOLS_URLS"):
            pools.candidates = _candidates(*_split_urls(os.environ["GATEWAY_POOLS_URLS"]))
        if os.environ.get("GATEWAY_PRICES_URLS"):
            prices.candidates = _candidates(*_split_urls(os.environ["GATEWAY_PRICES_URLS"]))
        if os.environ.get("SOLANA_RPC_URL"):
            rpc.candidates = _candidates(os.environ["SOLANA_RPC_URL"])
        if os.environ.get("GATEWAY_PER_CALL_TIMEOUT"):
            timeout = float(os.environ["GATEWAY_PER_CALL_TIMEOUT"])
            for policy in config.resources.values():
                policy.timeout = timeout

        for policy in config.resources.values():
            policy.stale_ttl = max(policy.stale_ttl, policy.ttl)

        if config.environment == Environment.PRODUCTION:
            config.debug = False
            config.log_level = "WARNING" if config.log_level == "INFO" else config.log_level

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary"""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "memory_budget_bytes": self.memory_budget_bytes,
            "max_entry_bytes": self.max_entry_bytes,
            "heap_ceiling_bytes": self.heap_ceiling_bytes,
            "min_dispatch_delay": self.min_dispatch_delay,
            "ttl_by_resource": self.ttl_by_resource,
            "upstream_candidates": self.upstream_candidates,
        }


def _split_urls(raw: str) -> List[str]:
    return [u.strip() for u in raw.split(",") if u.strip()]


def load_config() -> GatewayConfig:
    """Load configuration from the environment and log where it came from"""
    config = GatewayConfig.from_env()
    logger.info(f"Configuration loaded for environment: {config.environment.value}")
    return config
