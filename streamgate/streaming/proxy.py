"""
MediaStreamProxy - Relays media bytes from a video host to the client.

- Forwards the client's Range header verbatim, and only when present
- Sends a browser User-Agent and a Referer for hotlink-protected hosts
- Disables compression so byte offsets match the stored file
- Mirrors the upstream status and range headers
- Streams chunk by chunk; the upstream response is closed as soon as the
  client goes away
"""

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable

import httpx
from loguru import logger

from streamgate.services.errors import (
    RequestTimeoutError,
    UpstreamConnectionError,
    UpstreamStatusError,
)
from streamgate.streaming.embed import (
    BROWSER_USER_AGENT,
    EmbedResolver,
    StreamReference,
    StreamTarget,
)

SERVICE_ID = "media"
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "video/mp4"

PASSTHROUGH_HEADERS = (
    "Content-Range",
    "Accept-Ranges",
    "Content-Length",
    "Content-Type",
    "ETag",
    "Content-Encoding",
)


class MediaStream:
    """An open upstream media response, ready to be relayed."""

    def __init__(
        self,
        target: StreamTarget,
        response: httpx.Response,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.target = target
        self._response = response
        self._chunk_size = chunk_size
        self.bytes_sent = 0

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> dict[str, str]:
        """Upstream headers the client needs for seeking, unchanged."""
        headers = {}
        for name in PASSTHROUGH_HEADERS:
            value = self._response.headers.get(name)
            if value is not None:
                headers[name] = value
        headers.setdefault("Content-Type", DEFAULT_CONTENT_TYPE)
        return headers

    @property
    def is_closed(self) -> bool:
        return self._response.is_closed

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Yield raw upstream chunks as they arrive.

        A failure after the first byte ends the stream quietly: the status
        line is already on the wire and cannot change.
        """
        started = time.monotonic()
        try:
            async for chunk in self._response.aiter_raw(self._chunk_size):
                self.bytes_sent += len(chunk)
                yield chunk
            logger.info(
                f"Stream completed: {self.bytes_sent} bytes in "
                f"{time.monotonic() - started:.2f}s"
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"Upstream stream from {self.target.referer_host} failed after "
                f"{self.bytes_sent} bytes: {type(e).__name__}"
            )
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(f"Client disconnected from stream after {self.bytes_sent} bytes")
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()


class MediaStreamProxy:
    """
    Resolves stream references and opens ranged upstream media requests.

    Usage:
        proxy = MediaStreamProxy(VideoConfigResolver())

        target = await proxy.resolve_stream_target(StreamReference(token=token))
        media = await proxy.open(target, request.headers.get("range"))
        return StreamingResponse(media.iter_bytes(), status_code=media.status_code,
                                 headers=media.headers)
    """

    def __init__(
        self,
        resolver: EmbedResolver,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 45.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._resolver = resolver
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                follow_redirects=True,
                max_redirects=5,
            )
        return self._http_client

    async def resolve_stream_target(self, reference: StreamReference) -> StreamTarget:
        """Raises SourceNotFoundError when no playable URL can be found."""
        return await self._resolver.resolve(reference)

    @staticmethod
    def build_headers(target: StreamTarget, range_header: str | None) -> dict[str, str]:
        headers = {
            "Accept": "video/mp4,video/*,*/*;q=0.9",
            "Accept-Encoding": "identity",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Referer": f"https://{target.referer_host}/",
            "User-Agent": BROWSER_USER_AGENT,
        }
        # An empty Range header is invalid
        if range_header and range_header.strip():
            headers["Range"] = range_header.strip()
        return headers

    async def open(
        self,
        target: StreamTarget,
        range_header: str | None = None,
    ) -> MediaStream:
        """
        Send the upstream request and return once headers have arrived.

        Raises:
            RequestTimeoutError: The media host did not answer in time
            UpstreamConnectionError: Transport failure before any headers
            UpstreamStatusError: The media host answered with 4xx/5xx
        """
        client = await self._get_http_client()
        request = client.build_request(
            "GET",
            target.media_url,
            headers=self.build_headers(target, range_header),
        )

        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(SERVICE_ID, self._timeout) from e
        except httpx.RequestError as e:
            raise UpstreamConnectionError(
                f"{type(e).__name__}: {e}", service_id=SERVICE_ID
            ) from e

        if response.status_code >= 400:
            await response.aclose()
            raise UpstreamStatusError(SERVICE_ID, response.status_code)

        logger.info(
            f"Streaming from {response.url.host} "
            f"(status {response.status_code}, range {range_header or 'none'})"
        )
        return MediaStream(target, response, self._chunk_size)

    async def stream(
        self,
        target: StreamTarget,
        range_header: str | None,
        sink: Callable[[bytes], Awaitable[object]],
        on_start: Callable[[int, dict[str, str]], Awaitable[object]] | None = None,
    ) -> int:
        """
        Relay a media stream into an async sink.

        Args:
            target: Resolved stream target
            range_header: Inbound Range header, or None
            sink: Awaited with every chunk in order
            on_start: Awaited once with (status_code, headers) before the first chunk

        Returns:
            Number of bytes relayed
        """
        media = await self.open(target, range_header)
        chunks = media.iter_bytes()
        try:
            if on_start is not None:
                await on_start(media.status_code, media.headers)
            async for chunk in chunks:
                await sink(chunk)
        finally:
            await chunks.aclose()
            await media.aclose()
        return media.bytes_sent

    async def close(self) -> None:
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
