"""
Service layer - the resilient upstream data gateway.

Provides:
- TieredCache: Namespaced in-memory cache with TTL and bounded capacity
- CircuitBreaker: Stops calling a failing upstream for a cooldown period
- UpstreamResolver: Picks the upstream base URL from a priority chain
- SnapshotStore: Static last-resort fallbacks per logical endpoint
- UpstreamGateway: Cache → breaker → retrying call → snapshot fallback
"""

from streamgate.services.errors import (
    ServiceError,
    CacheError,
    RequestTimeoutError,
    UpstreamConnectionError,
    UpstreamStatusError,
    MalformedPayloadError,
    SourceNotFoundError,
)
from streamgate.services.cache import TieredCache, CacheEntry, CacheStats
from streamgate.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from streamgate.services.resolver import UpstreamResolver, UpstreamEndpoint
from streamgate.services.snapshots import SnapshotStore
from streamgate.services.client import UpstreamGateway, GatewayResult, UNAVAILABLE

__all__ = [
    # Errors
    "ServiceError",
    "CacheError",
    "RequestTimeoutError",
    "UpstreamConnectionError",
    "UpstreamStatusError",
    "MalformedPayloadError",
    "SourceNotFoundError",
    # Cache
    "TieredCache",
    "CacheEntry",
    "CacheStats",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Upstream
    "UpstreamResolver",
    "UpstreamEndpoint",
    "SnapshotStore",
    # Gateway
    "UpstreamGateway",
    "GatewayResult",
    "UNAVAILABLE",
]
