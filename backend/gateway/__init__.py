"""
Solana Data Gateway
Cache, single-flight, paced dispatch and failover in front of third-party Solana APIs
"""

from .cache import (
    BoundedTTLCache,
    CacheEntry,
    estimate_size,
)

from .single_flight import SingleFlightRegistry

from .dispatch_queue import (
    QueuedCall,
    RateLimitedDispatchQueue,
)

from .fetch_client import FetchClient

from .failover import (
    EndpointFailoverFetcher,
    FailoverResult,
    UpstreamCandidate,
)

from .resources import (
    ResourceType,
    POOL_LISTING_KEY,
    price_key,
    normalize_pool_listing,
    extract_token_price,
    build_rpc_payload,
    is_solana_address,
)

from .fallbacks import (
    FALLBACK_POOLS,
    FALLBACK_PRICES,
    get_fallback,
)

from .errors import (
    GatewayError,
    ValidationError,
    UpstreamError,
    UpstreamTimeout,
    UpstreamHTTPError,
    UpstreamConnectionError,
    UpstreamPayloadError,
    AggregateUpstreamFailure,
    ResourceUnavailableError,
    GatewayClosedError,
    ErrorCode,
    ErrorTracker,
    register_exception_handlers,
)

from .config import (
    GatewayConfig,
    ResourcePolicy,
    Environment,
    load_config,
)

from .gateway import (
    DataGateway,
    GatewayResult,
    ResultSource,
    create_gateway,
)

__all__ = [
    # Cache
    "BoundedTTLCache",
    "CacheEntry",
    "estimate_size",

    # Coordination
    "SingleFlightRegistry",
    "QueuedCall",
    "RateLimitedDispatchQueue",

    # Upstream access
    "FetchClient",
    "EndpointFailoverFetcher",
    "FailoverResult",
    "UpstreamCandidate",

    # Resources
    "ResourceType",
    "POOL_LISTING_KEY",
    "price_key",
    "normalize_pool_listing",
    "extract_token_price",
    "build_rpc_payload",
    "is_solana_address",
    "FALLBACK_POOLS",
    "FALLBACK_PRICES",
    "get_fallback",

    # Errors
    "GatewayError",
    "ValidationError",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamHTTPError",
    "UpstreamConnectionError",
    "UpstreamPayloadError",
    "AggregateUpstreamFailure",
    "ResourceUnavailableError",
    "GatewayClosedError",
    "ErrorCode",
    "ErrorTracker",
    "register_exception_handlers",

    # Config
    "GatewayConfig",
    "ResourcePolicy",
    "Environment",
    "load_config",

    # Gateway
    "DataGateway",
    "GatewayResult",
    "ResultSource",
    "create_gateway",
]
