"""
UpstreamGateway - Resilient async client for the upstream content API.

Order of operations for every fetch:
- TieredCache lookup ("api" namespace); a hit is returned as-is
- CircuitBreaker check; an open circuit skips the network entirely
- httpx call with per-attempt timeout, retried with exponential backoff
  on transient failures
- Normalization per logical endpoint, then cache population
- SnapshotStore fallback, and finally the UNAVAILABLE sentinel
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from streamgate.services.cache import TieredCache
from streamgate.services.circuit_breaker import CircuitBreaker
from streamgate.services.endpoints import (
    EndpointSpec,
    build_request,
    effective_params,
    get_endpoint,
    normalize,
)
from streamgate.services.errors import (
    MalformedPayloadError,
    RequestTimeoutError,
    ServiceError,
    UpstreamConnectionError,
    UpstreamStatusError,
    is_transient,
)
from streamgate.services.resolver import UpstreamResolver
from streamgate.services.snapshots import SnapshotStore

MAX_ATTEMPTS = 3
BACKOFF_BASE = 0.3  # seconds, doubled after each failed attempt

CACHE_NAMESPACE = "api"

SOURCE_LIVE = "live"
SOURCE_CACHE = "cache"
SOURCE_SNAPSHOT = "snapshot"
UNAVAILABLE = "unavailable"

DEFAULT_HEADERS = {
    "User-Agent": "StreamGate/1.0",
    "Accept": "application/json",
}


@dataclass
class GatewayResult:
    """Result from a gateway fetch."""

    data: Any
    source: str  # 'live' | 'cache' | 'snapshot' | 'unavailable'
    endpoint: str

    @property
    def available(self) -> bool:
        return self.source != UNAVAILABLE


class UpstreamGateway:
    """
    Fetches logical endpoints from the upstream API without ever raising
    upstream failures to the caller.

    Usage:
        gateway = UpstreamGateway(cache, resolver, breaker, snapshots)

        result = await gateway.fetch("anime-episodes", {"slug": "one-piece"})
        if result.available:
            render(result.data)
    """

    def __init__(
        self,
        cache: TieredCache,
        resolver: UpstreamResolver,
        breaker: CircuitBreaker,
        snapshots: SnapshotStore,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._cache = cache
        self._resolver = resolver
        self._breaker = breaker
        self._snapshots = snapshots
        self._timeout = timeout
        self._sleep = sleep
        self._debug = debug

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                max_redirects=3,
            )
        return self._http_client

    async def fetch(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> GatewayResult:
        """
        Fetch a logical endpoint.

        Args:
            endpoint: Logical endpoint name (see streamgate.services.endpoints)
            params: Path and query parameters

        Returns:
            GatewayResult from the cache, the live upstream, a snapshot, or
            the UNAVAILABLE sentinel

        Raises:
            KeyError: Unknown logical endpoint
            ValueError: A required path parameter is missing
        """
        spec = get_endpoint(endpoint)
        params = effective_params(spec, params)
        path, query = build_request(spec, params)

        cache_key = self._cache.generate_api_key(spec.name, params)
        cached = self._cache.get(CACHE_NAMESPACE, cache_key)
        if cached is not None:
            self._log(f"Cache hit for: {spec.name}")
            return GatewayResult(data=cached, source=SOURCE_CACHE, endpoint=spec.name)

        if not self._breaker.allow_request():
            logger.info(f"Circuit breaker is OPEN, using fallback data for {spec.name}")
            return await self._fallback(spec)

        try:
            data = await self._request_with_retry(spec, path, query)
        except ServiceError as e:
            logger.error(f"API request failed for {spec.name}: {e}")
            self._breaker.record_failure()
            return await self._fallback(spec)

        self._breaker.record_success()
        self._cache.set(CACHE_NAMESPACE, cache_key, data, ttl=spec.ttl)
        return GatewayResult(data=data, source=SOURCE_LIVE, endpoint=spec.name)

    async def _request_with_retry(
        self,
        spec: EndpointSpec,
        path: str,
        query: dict[str, Any],
    ) -> Any:
        """Retry transient failures with exponential backoff."""
        attempt = 1
        while True:
            try:
                return await self._execute_request(spec, path, query)
            except ServiceError as e:
                if attempt >= MAX_ATTEMPTS or not is_transient(e):
                    raise
                delay = BACKOFF_BASE * 2 ** (attempt - 1)
                logger.warning(
                    f"Retrying {spec.name} in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{MAX_ATTEMPTS}): {e}"
                )
                await self._sleep(delay)
                attempt += 1

    async def _execute_request(
        self,
        spec: EndpointSpec,
        path: str,
        query: dict[str, Any],
    ) -> Any:
        """Execute a single upstream attempt and normalize the body."""
        base_url = await self._resolver.resolve_base_url()
        url = f"{base_url}{path}"
        client = await self._get_http_client()
        self._log(f"Making API request to: {url}")

        try:
            response = await client.get(
                url,
                params=query or None,
                headers=DEFAULT_HEADERS,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(spec.name, self._timeout) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise UpstreamConnectionError(
                f"{type(e).__name__}: {e}", service_id=spec.name
            ) from e
        except Exception as e:
            # Socket-level failures the transport did not translate
            # (OverflowError, OSError, exception groups from anyio)
            raise UpstreamConnectionError(
                f"{type(e).__name__}: {e}", service_id=spec.name
            ) from e

        if response.status_code >= 400:
            raise UpstreamStatusError(spec.name, response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedPayloadError(
                f"Response from '{spec.name}' is not JSON", service_id=spec.name
            ) from e

        return normalize(spec, body)

    async def _fallback(self, spec: EndpointSpec) -> GatewayResult:
        data = await self._snapshots.load(spec)
        if data is None:
            return GatewayResult(data=None, source=UNAVAILABLE, endpoint=spec.name)
        return GatewayResult(data=data, source=SOURCE_SNAPSHOT, endpoint=spec.name)

    async def check_connectivity(self) -> dict[str, Any]:
        """Check the upstream: /health first, then the lightweight /home."""
        base_url = await self._resolver.resolve_base_url()
        client = await self._get_http_client()

        try:
            response = await client.get(f"{base_url}/health", timeout=self._timeout)
            if response.is_success:
                return {
                    "ok": True,
                    "status": response.status_code,
                    "base_url": base_url,
                    "tested_endpoint": "/health",
                }
            logger.debug(f"Upstream /health returned {response.status_code}, trying /home")
        except httpx.HTTPError as e:
            logger.debug(f"Upstream /health check failed, trying /home: {e}")

        try:
            response = await client.get(
                f"{base_url}/home", headers=DEFAULT_HEADERS, timeout=self._timeout
            )
            return {
                "ok": response.is_success,
                "status": response.status_code,
                "base_url": base_url,
                "tested_endpoint": "/home",
            }
        except httpx.HTTPError as e:
            return {
                "ok": False,
                "error": str(e) or type(e).__name__,
                "base_url": base_url,
                "tested_endpoint": "/health then /home",
            }

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("UpstreamGateway closed")

    async def __aenter__(self) -> "UpstreamGateway":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of cache and circuit breaker."""
        return {
            "cache": self._cache.get_stats().to_dict(),
            "cache_healthy": self._cache.health_check(),
            "circuit_breaker": self._breaker.get_status(),
        }

    def reset_circuit(self) -> None:
        """Reset the circuit breaker."""
        self._breaker.reset()

    def clear_cache(self, pattern: str | None = None) -> int:
        """Clear api cache entries, optionally matching a pattern."""
        if pattern:
            return self._cache.invalidate_pattern(CACHE_NAMESPACE, pattern)
        return self._cache.flush(CACHE_NAMESPACE)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[UpstreamGateway] {message}")
