"""
Data Gateway - Unified interface for Solana dashboard upstream calls

WHY: Single entry point that combines all protection layers:
1. Cache (fresh? return immediately)
2. Single-flight (same resource in-flight? wait for it)
3. Dispatch queue (paced, one call at a time per upstream)
4. Endpoint failover (candidate down? try the next one)
5. Degradation (everything down? stale copy, then static fallback)

Callers get a GatewayResult carrying the value plus where it came from; only a
resource with no cache entry and no fallback dataset raises, and then always as
ResourceUnavailableError.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from .cache import BoundedTTLCache
from .config import GatewayConfig, load_config
from .dispatch_queue import RateLimitedDispatchQueue
from .errors import ResourceUnavailableError, ValidationError
from .failover import EndpointFailoverFetcher
from .fallbacks import get_fallback
from .fetch_client import FetchClient
from .resources import (
    POOL_LISTING_KEY,
    ResourceType,
    build_rpc_payload,
    extract_token_price,
    is_solana_address,
    normalize_pool_listing,
    price_key,
)
from .single_flight import SingleFlightRegistry

logger = logging.getLogger(__name__)


class ResultSource(str, Enum):
    """Where a resolved value came from."""
    FRESH = "fresh"         # cache hit within TTL
    UPSTREAM = "upstream"   # fetched just now
    STALE = "stale"         # cached past TTL, upstreams failing
    FALLBACK = "fallback"   # static dataset, upstreams failing and nothing cached


@dataclass
class GatewayResult:
    key: str
    value: Any
    source: ResultSource
    age_seconds: float = 0.0

    @property
    def degraded(self) -> bool:
        return self.source in (ResultSource.STALE, ResultSource.FALLBACK)

    def meta(self) -> Dict:
        """Metadata for API responses."""
        return {
            "source": self.source.value,
            "degraded": self.degraded,
            "ageSeconds": round(self.age_seconds, 1),
        }


class DataGateway:
    """
    Orchestrates cache, single-flight, dispatch queues and failover per resource.

    FLOW:
    resolve(key) -> cache fresh? ---------------------------> FRESH
                       | no
                 single-flight(key) -> queue / direct -> failover
                       | ok                               | all failed
                 cache.put -> UPSTREAM              stale entry? -> STALE
                                                    fallback?    -> FALLBACK
                                                    else ResourceUnavailableError

    Instances are independent; build one per process (or per tenant) and close it.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        cache: Optional[BoundedTTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or GatewayConfig()
        self._clock = clock

        self._client = FetchClient(
            user_agent=self._config.user_agent,
            transport=transport,
        )
        self._fetcher = EndpointFailoverFetcher(self._client)
        self._single_flight = SingleFlightRegistry()
        self._cache = cache or BoundedTTLCache(
            memory_budget_bytes=self._config.memory_budget_bytes,
            max_entry_bytes=self._config.max_entry_bytes,
            heap_ceiling_bytes=self._config.heap_ceiling_bytes,
            high_water_ratio=self._config.high_water_ratio,
            sweep_interval=self._config.sweep_interval,
            memory_check_interval=self._config.memory_check_interval,
            clock=clock,
        )
        self._queues: Dict[ResourceType, RateLimitedDispatchQueue] = {
            resource: RateLimitedDispatchQueue(resource.value, self._config.min_dispatch_delay)
            for resource, policy in self._config.resources.items()
            if policy.queued
        }

        # Statistics
        self._stats = {
            "requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "upstream_successes": 0,
            "stale_served": 0,
            "fallback_served": 0,
            "unavailable": 0,
            "rpc_calls": 0,
        }

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def cache(self) -> BoundedTTLCache:
        return self._cache

    def queue_for(self, resource: ResourceType) -> Optional[RateLimitedDispatchQueue]:
        return self._queues.get(resource)

    # =====================================================
    # Lifecycle
    # =====================================================

    async def start(self):
        """Start cache maintenance on the running loop."""
        self._cache.start()
        logger.info(f"Data gateway started: queues={[q.name for q in self._queues.values()]}")

    async def close(self):
        """Stop maintenance, drain queues and close the HTTP client."""
        await self._cache.stop()
        for queue in self._queues.values():
            await queue.close()
        await self._client.close()
        logger.info("Data gateway closed")

    async def __aenter__(self) -> "DataGateway":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # =====================================================
    # Read path
    # =====================================================

    async def resolve(
        self,
        resource: ResourceType,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        *,
        force_refresh: bool = False,
    ) -> GatewayResult:
        """
        Resolve `key` through cache, single-flight, queue and degradation.

        Args:
            resource: Resource class, selects TTL, queue and fallback dataset
            key: Cache / coalescing key
            fetch: Async function that talks to the upstream(s)
            force_refresh: Skip the fresh-cache shortcut

        Raises:
            ResourceUnavailableError: upstreams failed, nothing cached, no fallback
        """
        self._stats["requests"] += 1
        policy = self._config.policy(resource)
        entry = self._cache.get(key)

        if entry is not None and not force_refresh and self._cache.is_fresh(entry, policy.ttl):
            self._stats["cache_hits"] += 1
            age = entry.age(self._clock())
            logger.debug(f"Cache HIT (fresh): key={key} age={age:.1f}s")
            return GatewayResult(key=key, value=entry.value, source=ResultSource.FRESH, age_seconds=age)

        self._stats["cache_misses"] += 1
        if entry is None:
            logger.info(f"Cache MISS: key={key}")
        else:
            logger.info(f"Cache STALE, refreshing: key={key} age={entry.age(self._clock()):.1f}s")

        async def producer():
            queue = self._queues.get(resource)
            if queue is not None:
                value = await queue.enqueue(fetch)
            else:
                value = await fetch()
            self._cache.put(key, value, ttl=policy.ttl, stale_ttl=policy.stale_ttl)
            return value

        try:
            value = await self._single_flight.run(key, producer)
        except Exception as e:
            return self._degrade(resource, key, e)

        self._stats["upstream_successes"] += 1
        return GatewayResult(key=key, value=value, source=ResultSource.UPSTREAM)

    def _degrade(self, resource: ResourceType, key: str, error: Exception) -> GatewayResult:
        # Re-read: a concurrent generation may have refreshed the entry meanwhile
        entry = self._cache.get(key)
        if entry is not None:
            self._stats["stale_served"] += 1
            age = entry.age(self._clock())
            logger.warning(
                f"Fallback to STALE: key={key} age={age:.1f}s error={type(error).__name__}: {error}"
            )
            return GatewayResult(key=key, value=entry.value, source=ResultSource.STALE, age_seconds=age)

        fallback = get_fallback(resource, key)
        if fallback is not None:
            self._stats["fallback_served"] += 1
            logger.warning(
                f"Fallback to STATIC dataset: key={key} error={type(error).__name__}: {error}"
            )
            return GatewayResult(key=key, value=fallback, source=ResultSource.FALLBACK)

        self._stats["unavailable"] += 1
        logger.error(f"Resource unavailable: key={key} error={type(error).__name__}: {error}")
        raise ResourceUnavailableError(resource.value, key, error)

    # =====================================================
    # Resource accessors
    # =====================================================

    async def get_pool_listing(self, force_refresh: bool = False) -> GatewayResult:
        """Raydium pool listing, most liquid first."""
        resource = ResourceType.POOL_LISTING
        policy = self._config.policy(resource)

        async def fetch():
            result = await self._fetcher.fetch(
                policy.candidates,
                policy.timeout,
                resource=resource.value,
                parse=partial(normalize_pool_listing, limit=self._config.pool_listing_limit),
            )
            return result.payload

        return await self.resolve(resource, POOL_LISTING_KEY, fetch, force_refresh=force_refresh)

    async def get_token_price(self, mint: str, force_refresh: bool = False) -> GatewayResult:
        """USD price for one SPL mint."""
        mint = (mint or "").strip()
        if not mint:
            raise ValidationError("mint is required")
        if not is_solana_address(mint):
            raise ValidationError("invalid mint address", {"mint": mint[:64]})

        resource = ResourceType.TOKEN_PRICE
        policy = self._config.policy(resource)

        async def fetch():
            result = await self._fetcher.fetch(
                policy.candidates,
                policy.timeout,
                resource=resource.value,
                url_params={"mint": mint},
                parse=partial(extract_token_price, mint=mint),
            )
            return result.payload

        return await self.resolve(resource, price_key(mint), fetch, force_refresh=force_refresh)

    async def get_token_prices(self, mints: Iterable[str]) -> Dict[str, Optional[GatewayResult]]:
        """
        Resolve several mints concurrently. Each mint is its own queued call.

        Mints that are definitively unavailable map to None.
        """
        unique: List[str] = list(dict.fromkeys(m.strip() for m in mints if m and m.strip()))
        if not unique:
            raise ValidationError("at least one mint is required")
        invalid = [m for m in unique if not is_solana_address(m)]
        if invalid:
            raise ValidationError("invalid mint address", {"mints": [m[:64] for m in invalid[:10]]})

        results = await asyncio.gather(
            *(self.get_token_price(mint) for mint in unique),
            return_exceptions=True,
        )

        prices: Dict[str, Optional[GatewayResult]] = {}
        for mint, result in zip(unique, results):
            if isinstance(result, ResourceUnavailableError):
                prices[mint] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                prices[mint] = result
        return prices

    async def rpc_call(self, method: str, params: Optional[List] = None, request_id: Any = 1) -> Any:
        """
        Forward one JSON-RPC call to the Solana node. Never cached.

        Raises:
            AggregateUpstreamFailure: the node could not be reached or answered non-2xx
        """
        if not method:
            raise ValidationError("method is required")

        self._stats["rpc_calls"] += 1
        resource = ResourceType.RPC
        policy = self._config.policy(resource)

        async def fetch():
            result = await self._fetcher.fetch(
                policy.candidates,
                policy.timeout,
                resource=resource.value,
                method="POST",
                json=build_rpc_payload(method, params, request_id),
            )
            return result.payload

        queue = self._queues.get(resource)
        if queue is not None:
            return await queue.enqueue(fetch)
        return await fetch()

    # =====================================================
    # Maintenance
    # =====================================================

    def invalidate(self, resource: Optional[ResourceType] = None, key: Optional[str] = None) -> int:
        """Drop one key, every key of a resource class, or everything."""
        if key:
            return int(self._cache.invalidate(key))
        if resource == ResourceType.POOL_LISTING:
            return self._cache.invalidate_prefix("pools:")
        if resource == ResourceType.TOKEN_PRICE:
            return self._cache.invalidate_prefix("price:")
        return self._cache.clear()

    def get_stats(self) -> Dict:
        """Get gateway statistics for monitoring."""
        return {
            "gateway": dict(self._stats),
            "cache": self._cache.get_stats(),
            "single_flight": self._single_flight.get_stats(),
            "queues": {q.name: q.get_stats() for q in self._queues.values()},
            "failover": self._fetcher.get_stats(),
            "http": self._client.get_stats(),
        }


def create_gateway(config: Optional[GatewayConfig] = None, **kwargs) -> DataGateway:
    """Build a gateway from `config`, or from the environment when omitted."""
    return DataGateway(config or load_config(), **kwargs)
