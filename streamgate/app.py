"""
Application composition.

Every stateful component (cache, breaker, gateway, proxy) is constructed
here and handed to whatever needs it; nothing is a module-level singleton.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from loguru import logger

from streamgate.api.server import StreamGateServer
from streamgate.datastore import engine as db_engine
from streamgate.datastore.repositories import ConfigStore, DatabaseConfigStore
from streamgate.services.cache import TieredCache
from streamgate.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from streamgate.services.client import UpstreamGateway
from streamgate.services.resolver import UpstreamResolver
from streamgate.services.snapshots import SnapshotStore
from streamgate.services.sweeper import CacheSweeper
from streamgate.settings import Settings, global_settings
from streamgate.streaming.embed import VideoConfigResolver
from streamgate.streaming.proxy import MediaStreamProxy


@dataclass
class Components:
    """Everything the server owns for its lifetime."""

    cache: TieredCache
    gateway: UpstreamGateway
    embed_resolver: VideoConfigResolver
    media_proxy: MediaStreamProxy
    sweeper: CacheSweeper


def build_components(
    settings: Settings,
    config_store: ConfigStore | None = None,
) -> Components:
    """Wire the gateway and proxy from settings."""
    cache = TieredCache(namespaces=settings.cache_namespaces())
    resolver = UpstreamResolver(
        config_store=config_store or DatabaseConfigStore(db_engine.get_session_factory),
        override_url=settings.upstream_override_url,
        fallback_file=settings.upstream_fallback_file,
        default_url=settings.upstream_default_url,
    )
    breaker = CircuitBreaker(
        "upstream",
        CircuitBreakerConfig(
            failure_threshold=settings.breaker_failure_threshold,
            open_duration=settings.breaker_open_seconds,
        ),
    )
    gateway = UpstreamGateway(
        cache=cache,
        resolver=resolver,
        breaker=breaker,
        snapshots=SnapshotStore(settings.snapshot_dir),
        timeout=settings.upstream_timeout,
    )
    embed_resolver = VideoConfigResolver(timeout=settings.embed_timeout)
    media_proxy = MediaStreamProxy(embed_resolver, timeout=settings.media_timeout)
    sweeper = CacheSweeper(cache, interval_seconds=settings.cache_sweep_seconds)
    return Components(
        cache=cache,
        gateway=gateway,
        embed_resolver=embed_resolver,
        media_proxy=media_proxy,
        sweeper=sweeper,
    )


def create_app(
    settings: Settings | None = None,
    config_store: ConfigStore | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        settings: Defaults to the environment-derived global settings
        config_store: External configuration store; the database-backed one
            is used (and initialized at startup) when omitted

    Returns:
        FastAPI app
    """
    settings = settings or global_settings
    uses_database = config_store is None
    components = build_components(settings, config_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if uses_database:
            logger.info("Initializing configuration database...")
            # The store is read-only here; its schema is owned elsewhere
            try:
                await db_engine.init_db(settings.database_url, settings.database_echo)
            except Exception as e:
                logger.error(f"Configuration database unavailable, continuing without it: {e}")
        components.sweeper.start()
        logger.info("StreamGate started")
        try:
            yield
        finally:
            components.sweeper.stop()
            await components.gateway.close()
            await components.media_proxy.close()
            await components.embed_resolver.close()
            if uses_database:
                await db_engine.close_db()
            logger.info("StreamGate stopped")

    server = StreamGateServer(components.gateway, components.media_proxy, lifespan)
    return server.app
