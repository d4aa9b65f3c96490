"""
Embed page resolution.

Video hosts hide the playable URL inside the embed page's inline player
configuration. Scraping it depends entirely on the host's markup, so the
strategy lives behind the EmbedResolver protocol and the relay code never
sees how a URL was found.
"""

import json
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote, urlparse

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from streamgate.services.errors import SourceNotFoundError

BLOGGER_EMBED_URL = "https://www.blogger.com/video.g?token={token}"
DRIVE_DOWNLOAD_URL = "https://docs.google.com/uc?export=download&id={file_id}"
CONFIG_MARKER = "VIDEO_CONFIG"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def is_valid_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass(frozen=True)
class StreamReference:
    """What the client asked to play: an embed page URL or a host token."""

    url: str | None = None
    token: str | None = None

    def __post_init__(self) -> None:
        if bool(self.url) == bool(self.token):
            raise ValueError("Exactly one of url or token is required")
        if self.url and not is_valid_http_url(self.url):
            raise ValueError("Invalid URL format")

    @property
    def embed_url(self) -> str:
        if self.url:
            return self.url
        return BLOGGER_EMBED_URL.format(token=quote(self.token or "", safe=""))


@dataclass(frozen=True)
class StreamTarget:
    """A resolved, directly playable media location."""

    source_reference: str
    media_url: str
    referer_host: str


def drive_target(file_id: str) -> StreamTarget:
    """Target for a Google Drive file, which is served directly without an embed page."""
    file_id = (file_id or "").strip()
    if not file_id:
        raise ValueError("Drive file id is required")
    media_url = DRIVE_DOWNLOAD_URL.format(file_id=quote(file_id, safe=""))
    return StreamTarget(
        source_reference=media_url,
        media_url=media_url,
        referer_host=urlparse(media_url).netloc,
    )


class EmbedResolver(Protocol):
    async def resolve(self, reference: StreamReference) -> StreamTarget: ...


class VideoConfigResolver:
    """
    Extracts the first ``streams[].play_url`` from a ``VIDEO_CONFIG`` script
    block in the embed page.

    Resolution failures are content-shape problems: they are raised as
    SourceNotFoundError immediately and never retried.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def resolve(self, reference: StreamReference) -> StreamTarget:
        embed_url = reference.embed_url
        html = await self._fetch_embed_page(embed_url)

        config = self.extract_config(html)
        if config is None:
            raise SourceNotFoundError(embed_url, "no player configuration block")

        media_url = self.first_play_url(config)
        if media_url is None:
            raise SourceNotFoundError(embed_url, "no playable stream in configuration")

        target = StreamTarget(
            source_reference=embed_url,
            media_url=media_url,
            referer_host=urlparse(embed_url).netloc,
        )
        logger.info(f"Resolved stream from {target.referer_host} to {urlparse(media_url).hostname}")
        return target

    async def _fetch_embed_page(self, embed_url: str) -> str:
        client = await self._get_http_client()
        try:
            response = await client.get(
                embed_url,
                headers={"User-Agent": BROWSER_USER_AGENT},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceNotFoundError(
                embed_url, f"embed page unavailable ({type(e).__name__})"
            ) from e
        return response.text

    @staticmethod
    def extract_config(html: str) -> dict[str, Any] | None:
        """Parse the JSON object assigned to VIDEO_CONFIG in any inline script."""
        soup = BeautifulSoup(html, "html.parser")
        decoder = json.JSONDecoder()

        for script in soup.find_all("script"):
            content = (script.string or script.get_text() or "").strip()
            marker_at = content.find(CONFIG_MARKER)
            if marker_at == -1:
                continue

            brace_at = content.find("{", marker_at)
            if brace_at == -1:
                continue
            try:
                config, _ = decoder.raw_decode(content, brace_at)
            except ValueError as e:
                logger.warning(f"Unparsable {CONFIG_MARKER} block: {e}")
                continue
            if isinstance(config, dict):
                return config
        return None

    @staticmethod
    def first_play_url(config: dict[str, Any]) -> str | None:
        streams = config.get("streams")
        if not isinstance(streams, list):
            return None
        for stream in streams:
            if not isinstance(stream, dict):
                continue
            play_url = stream.get("play_url")
            if isinstance(play_url, str) and is_valid_http_url(play_url):
                return play_url
        return None

    async def close(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
