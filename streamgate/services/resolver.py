"""
UpstreamResolver - Picks the upstream API base URL from a priority chain.

Priority: operator override → active endpoint in the config store →
fallback file shipped with the deployment → hardcoded default.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

import httpx
from loguru import logger

from streamgate.datastore.repositories import ConfigStore

DEFAULT_BASE_URL = "http://localhost:3000/v1"


class EndpointSource(str, Enum):
    """Where a resolved base URL came from."""

    OVERRIDE = "override"
    PERSISTED = "persisted"
    FALLBACK_FILE = "fallback_file"
    DEFAULT = "default"


@dataclass(frozen=True)
class UpstreamEndpoint:
    """A resolved upstream base URL."""

    url: str
    source: EndpointSource
    is_active: bool = True


def normalize_base_url(candidate: object) -> str | None:
    """Return the URL without trailing slash if it is absolute http(s), else None."""
    if not isinstance(candidate, str):
        return None
    candidate = candidate.strip()
    try:
        parsed = urlparse(candidate)
        # Out-of-range or non-numeric ports only surface here
        parsed.port
        httpx.URL(candidate)
    except (ValueError, httpx.InvalidURL):
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return candidate.rstrip("/")


class UpstreamResolver:
    """
    Resolves the upstream base URL on every call; nothing is cached here so
    that an operator switching the active endpoint takes effect immediately.
    """

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        override_url: str | None = None,
        fallback_file: str | Path | None = None,
        default_url: str = DEFAULT_BASE_URL,
    ):
        self._config_store = config_store
        self._override_url = override_url
        self._fallback_file = Path(fallback_file) if fallback_file else None
        self._default_url = normalize_base_url(default_url) or DEFAULT_BASE_URL

    async def resolve(self) -> UpstreamEndpoint:
        """Walk the priority chain. Never raises."""
        url = normalize_base_url(self._override_url)
        if url:
            return UpstreamEndpoint(url=url, source=EndpointSource.OVERRIDE)

        url = normalize_base_url(await self._read_persisted())
        if url:
            return UpstreamEndpoint(url=url, source=EndpointSource.PERSISTED)

        url = normalize_base_url(await self._read_fallback_file())
        if url:
            return UpstreamEndpoint(url=url, source=EndpointSource.FALLBACK_FILE)

        return UpstreamEndpoint(url=self._default_url, source=EndpointSource.DEFAULT)

    async def resolve_base_url(self) -> str:
        endpoint = await self.resolve()
        return endpoint.url

    async def _read_persisted(self) -> str | None:
        if self._config_store is None:
            return None
        try:
            return await self._config_store.get_active_endpoint()
        except Exception as e:
            logger.warning(f"Config store unavailable, skipping persisted endpoint: {e}")
            return None

    async def _read_fallback_file(self) -> str | None:
        if self._fallback_file is None:
            return None
        try:
            raw = await asyncio.to_thread(self._fallback_file.read_text, "utf-8")
            data = json.loads(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {self._fallback_file}, using default URL: {e}")
            return None

        if not isinstance(data, dict):
            return None
        return data.get("base_url")
