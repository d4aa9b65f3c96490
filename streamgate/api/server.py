"""FastAPI server exposing the gateway data endpoints and the stream proxy."""

from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger

from streamgate.exceptions import (
    BadGatewayError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from streamgate.services.client import UpstreamGateway
from streamgate.services.errors import (
    ServiceError,
    SourceNotFoundError,
    UpstreamStatusError,
)
from streamgate.streaming.embed import StreamReference, StreamTarget, drive_target
from streamgate.streaming.proxy import MediaStream, MediaStreamProxy

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type",
    "Access-Control-Expose-Headers": "Content-Range, Accept-Ranges, Content-Length",
}


class MediaStreamingResponse(StreamingResponse):
    """
    StreamingResponse that owns an upstream MediaStream.

    The upstream is closed as soon as the response finishes, whether it ran
    to completion or the client went away mid-body.
    """

    def __init__(self, media: MediaStream, headers: dict[str, str]):
        self.media = media
        self._chunks = media.iter_bytes()
        super().__init__(self._chunks, status_code=media.status_code, headers=headers)

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._chunks.aclose()
            await self.media.aclose()


class StreamGateServer:
    """HTTP surface over the upstream gateway and the media proxy."""

    def __init__(
        self,
        gateway: UpstreamGateway,
        media_proxy: MediaStreamProxy,
        lifespan: Any = None,
    ):
        self.gateway = gateway
        self.media_proxy = media_proxy
        self.app = FastAPI(title="StreamGate", lifespan=lifespan)

        # Register routes
        self.app.get("/stream")(self.stream)
        self.app.get("/gdrive/{vid}")(self.stream_drive)
        self.app.get("/api/v1/{endpoint}")(self.fetch_endpoint)
        self.app.get("/api/health")(self.health_check)
        self.app.get("/api/health/upstream")(self.upstream_health)
        self.app.get("/api/cache/stats")(self.cache_stats)
        self.app.delete("/api/cache")(self.clear_cache)
        self.app.post("/api/circuit/reset")(self.reset_circuit)

    async def stream(
        self,
        request: Request,
        url: Optional[str] = None,
        token: Optional[str] = None,
    ):
        """Relay a video resolved from an embed page URL or a host token.

        Args:
            request: FastAPI request object, its Range header is forwarded
            url: Embed page URL
            token: Host token, mutually exclusive with url

        Returns:
            Streaming response mirroring the media host's 200/206
        """
        try:
            reference = StreamReference(url=url, token=token)
        except ValueError as e:
            raise ValidationError(str(e))

        try:
            target = await self.media_proxy.resolve_stream_target(reference)
        except SourceNotFoundError as e:
            logger.warning(str(e))
            raise NotFoundError("Video source not found")

        return await self._relay(target, request)

    async def stream_drive(self, vid: str, request: Request):
        """Relay a Google Drive file directly, without embed page resolution."""
        try:
            target = drive_target(vid)
        except ValueError as e:
            raise ValidationError(str(e))
        return await self._relay(target, request)

    async def _relay(self, target: StreamTarget, request: Request) -> MediaStreamingResponse:
        range_header = request.headers.get("range")
        try:
            media = await self.media_proxy.open(target, range_header)
        except UpstreamStatusError as e:
            logger.error(f"Media host refused stream: {e}")
            if e.status_code < 500:
                raise HTTPException(status_code=e.status_code, detail="Failed to stream video")
            raise BadGatewayError("Failed to stream video")
        except ServiceError as e:
            logger.error(f"Stream error: {e}")
            raise BadGatewayError("Failed to stream video")

        headers = {
            **media.headers,
            **CORS_HEADERS,
            "Cache-Control": "public, max-age=3600",
        }
        return MediaStreamingResponse(media, headers=headers)

    async def fetch_endpoint(self, endpoint: str, request: Request):
        """Fetch a logical upstream endpoint; query parameters are passed through."""
        params = dict(request.query_params)
        try:
            result = await self.gateway.fetch(endpoint, params)
        except KeyError:
            raise NotFoundError(f"Unknown endpoint: {endpoint}")
        except ValueError as e:
            raise ValidationError(str(e))

        if not result.available:
            return JSONResponse(
                status_code=UpstreamUnavailableError().status_code,
                content={"ok": False, "source": result.source, "data": None},
            )
        return {"ok": True, "source": result.source, "data": result.data}

    async def health_check(self):
        """Gateway health: cache statistics and circuit breaker state."""
        return {"status": "ok", "service": "streamgate", **self.gateway.get_health_status()}

    async def upstream_health(self):
        """Live connectivity check against the resolved upstream."""
        return await self.gateway.check_connectivity()

    async def cache_stats(self):
        return self.gateway.cache.get_stats().to_dict()

    async def clear_cache(
        self,
        namespace: Optional[str] = None,
        pattern: Optional[str] = None,
    ):
        """Invalidate cache entries by substring, or flush a namespace."""
        cache = self.gateway.cache
        if namespace is not None and namespace not in cache.namespaces():
            raise NotFoundError(f"Unknown cache namespace: {namespace}")

        if pattern:
            removed = cache.invalidate_pattern(namespace or "api", pattern)
        else:
            removed = cache.flush(namespace)
        logger.info(f"Cache cleared: {removed} entries (namespace={namespace}, pattern={pattern})")
        return {"removed": removed}

    async def reset_circuit(self):
        self.gateway.reset_circuit()
        return self.gateway.breaker.get_status()
