"""
HTTP tests for StreamGateServer and the application factory.
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from streamgate.api.server import StreamGateServer
from streamgate.app import create_app
from streamgate.datastore import engine as db_engine
from streamgate.services.cache import TieredCache
from streamgate.services.circuit_breaker import CircuitBreaker
from streamgate.services.client import UpstreamGateway
from streamgate.services.resolver import UpstreamResolver
from streamgate.services.snapshots import SnapshotStore
from streamgate.settings import Settings
from streamgate.streaming.embed import VideoConfigResolver
from streamgate.streaming.proxy import MediaStreamProxy

from conftest import SNAPSHOT_DIR, FakeConfigStore, RecordingSleep

API_BASE = "https://upstream.example/v1"
MEDIA_URL = "https://media.example/videoplayback?id=abc"
TOTAL_SIZE = 5_000_000
MEDIA = bytes(range(256)) * 8

EMBED_PAGE = (
    "<html><body><script>"
    'var VIDEO_CONFIG = {"streams": [{"play_url": "' + MEDIA_URL + '"}]};'
    "</script></body></html>"
)


class ChunkedBody(httpx.AsyncByteStream):
    """Media body served in small chunks that records whether it was closed."""

    def __init__(self, content: bytes, chunk_size: int = 256):
        self.content = content
        self.chunk_size = chunk_size
        self.closed = False

    async def __aiter__(self):
        for offset in range(0, len(self.content), self.chunk_size):
            yield self.content[offset : offset + self.chunk_size]

    async def aclose(self):
        self.closed = True


class FakeInternet:
    """Routes requests by host: upstream API, embed pages and the media host."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.api_responses: dict[str, httpx.Response] = {}
        self.embed_page = EMBED_PAGE
        self.media_status: int | None = None
        self.media_streams: list[ChunkedBody] = []

    def hits(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "upstream.example":
            scripted = self.api_responses.get(request.url.path)
            if scripted is None:
                return httpx.Response(500)
            return httpx.Response(
                scripted.status_code, headers=scripted.headers, content=scripted.content
            )
        if host in ("www.blogger.com", "embed.example"):
            return httpx.Response(200, text=self.embed_page)
        if host in ("media.example", "docs.google.com"):
            return self._media(request)
        return httpx.Response(404)

    def _media(self, request: httpx.Request) -> httpx.Response:
        if self.media_status is not None:
            return httpx.Response(self.media_status)
        range_header = request.headers.get("Range")
        if not range_header:
            body = ChunkedBody(MEDIA)
            self.media_streams.append(body)
            return httpx.Response(
                200,
                stream=body,
                headers={"Content-Type": "video/mp4", "Content-Length": str(len(MEDIA))},
            )
        start, end = range_header.removeprefix("bytes=").split("-")
        body = ChunkedBody(MEDIA[int(start) : int(end) + 1])
        self.media_streams.append(body)
        return httpx.Response(
            206,
            stream=body,
            headers={
                "Content-Length": str(len(body.content)),
                "Content-Range": f"bytes {start}-{end}/{TOTAL_SIZE}",
                "Accept-Ranges": "bytes",
                "Content-Type": "video/mp4",
            },
        )


@pytest.fixture
def internet():
    return FakeInternet()


@pytest.fixture
def server(internet):
    """Server wired from components that all talk to FakeInternet."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(internet))
    gateway = UpstreamGateway(
        cache=TieredCache(),
        resolver=UpstreamResolver(config_store=FakeConfigStore(active_endpoint=API_BASE)),
        breaker=CircuitBreaker("upstream"),
        snapshots=SnapshotStore(SNAPSHOT_DIR),
        http_client=http_client,
        sleep=RecordingSleep(),
    )
    media_proxy = MediaStreamProxy(
        VideoConfigResolver(http_client=http_client),
        http_client=http_client,
    )
    return StreamGateServer(gateway, media_proxy)


@pytest.fixture
def client(server):
    return TestClient(server.app)


class TestStreamRoute:
    def test_range_request_is_relayed_as_partial_content(self, client, internet):
        response = client.get(
            "/stream", params={"token": "tok"}, headers={"Range": "bytes=1000-1999"}
        )

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 1000-1999/{TOTAL_SIZE}"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert len(response.content) == 1000
        assert response.content == MEDIA[1000:2000]

        media_request = internet.hits("media.example")[0]
        assert media_request.headers["Range"] == "bytes=1000-1999"
        assert media_request.headers["Referer"] == "https://www.blogger.com/"

    def test_no_range_streams_whole_file(self, client, internet):
        response = client.get("/stream", params={"url": "https://embed.example/v/1"})

        assert response.status_code == 200
        assert response.content == MEDIA
        assert "range" not in internet.hits("media.example")[0].headers
        assert internet.hits("media.example")[0].headers["Referer"] == "https://embed.example/"

    def test_upstream_closed_after_full_relay(self, client, internet):
        response = client.get("/stream", params={"token": "tok"})
        assert response.content == MEDIA
        assert internet.media_streams[0].closed

    async def test_client_disconnect_closes_upstream(self, server, internet):
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/stream",
            "raw_path": b"/stream",
            "root_path": "",
            "query_string": b"token=tok",
            "headers": [(b"host", b"testserver"), (b"range", b"bytes=0-1999")],
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }
        sent = []
        requests = [{"type": "http.request", "body": b"", "more_body": False}]

        async def receive():
            if requests:
                return requests.pop()
            # The client never reports the disconnect
            await asyncio.Event().wait()

        async def send(message):
            sent.append(message)
            if message["type"] == "http.response.body" and message.get("body"):
                raise OSError("client went away")

        with pytest.raises(Exception):
            await server.app(scope, receive, send)

        assert sent[0]["status"] == 206
        assert len(internet.media_streams) == 1
        assert internet.media_streams[0].closed

    def test_missing_config_is_not_found_without_media_fetch(self, client, internet):
        internet.embed_page = "<html><body>This video is unavailable</body></html>"

        response = client.get("/stream", params={"token": "tok"})

        assert response.status_code == 404
        assert response.json()["detail"] == "Video source not found"
        assert internet.hits("media.example") == []

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"url": "https://embed.example/v/1", "token": "tok"},
            {"url": "not-a-url"},
        ],
    )
    def test_invalid_reference_is_bad_request(self, client, internet, params):
        response = client.get("/stream", params=params)
        assert response.status_code == 400
        assert internet.requests == []

    def test_media_host_client_error_is_mirrored(self, client, internet):
        internet.media_status = 403
        response = client.get("/stream", params={"token": "tok"})
        assert response.status_code == 403

    def test_media_host_server_error_is_bad_gateway(self, client, internet):
        internet.media_status = 500
        response = client.get("/stream", params={"token": "tok"})
        assert response.status_code == 502


class TestDriveRoute:
    def test_range_is_relayed_from_drive(self, client, internet):
        response = client.get("/gdrive/1AbC-xyz", headers={"Range": "bytes=0-511"})

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 0-511/{TOTAL_SIZE}"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.content == MEDIA[:512]

        drive_request = internet.hits("docs.google.com")[0]
        assert drive_request.url.params["id"] == "1AbC-xyz"
        assert drive_request.url.params["export"] == "download"
        assert drive_request.headers["Range"] == "bytes=0-511"
        assert drive_request.headers["Referer"] == "https://docs.google.com/"
        assert internet.media_streams[0].closed

    def test_drive_client_error_is_mirrored(self, client, internet):
        internet.media_status = 404
        response = client.get("/gdrive/gone")
        assert response.status_code == 404

    def test_blank_id_is_bad_request(self, client, internet):
        response = client.get("/gdrive/%20")
        assert response.status_code == 400
        assert internet.requests == []


class TestDataRoutes:
    def test_live_payload(self, client, internet):
        internet.api_responses["/v1/anime/frieren"] = httpx.Response(
            200, json={"status": "Ok", "data": {"title": "Frieren"}}
        )

        response = client.get("/api/v1/anime-detail", params={"slug": "frieren"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "source": "live", "data": {"title": "Frieren"}}

        again = client.get("/api/v1/anime-detail", params={"slug": "frieren"})
        assert again.json()["source"] == "cache"

    def test_snapshot_when_upstream_fails(self, client):
        response = client.get("/api/v1/genres")
        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "snapshot"
        assert isinstance(body["data"], list)

    def test_unavailable_is_service_unavailable(self, client):
        response = client.get("/api/v1/movies")
        assert response.status_code == 503
        assert response.json() == {"ok": False, "source": "unavailable", "data": None}

    def test_unknown_endpoint(self, client, internet):
        response = client.get("/api/v1/not-an-endpoint")
        assert response.status_code == 404
        assert internet.requests == []

    def test_missing_path_parameter(self, client):
        response = client.get("/api/v1/anime-detail")
        assert response.status_code == 400


class TestOperationalRoutes:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["circuit_breaker"]["state"] == "CLOSED"

    def test_upstream_health(self, client, internet):
        internet.api_responses["/v1/health"] = httpx.Response(200, json={"ok": True})
        body = client.get("/api/health/upstream").json()
        assert body["ok"] is True
        assert body["base_url"] == API_BASE

    def test_clear_cache_by_pattern(self, client, internet):
        internet.api_responses["/v1/anime/frieren"] = httpx.Response(
            200, json={"status": "Ok", "data": {"title": "Frieren"}}
        )
        client.get("/api/v1/anime-detail", params={"slug": "frieren"})

        response = client.delete("/api/cache", params={"pattern": "frieren"})
        assert response.json() == {"removed": 1}
        assert client.get("/api/cache/stats").json()["per_namespace"]["api"]["size"] == 0

    def test_clear_unknown_namespace(self, client):
        response = client.delete("/api/cache", params={"namespace": "sessions"})
        assert response.status_code == 404

    def test_circuit_reset(self, client):
        for _ in range(3):
            client.get("/api/v1/genres")
        assert client.get("/api/health").json()["circuit_breaker"]["state"] == "OPEN"

        body = client.post("/api/circuit/reset").json()
        assert body["state"] == "CLOSED"
        assert body["consecutive_failures"] == 0


class TestCreateApp:
    def test_lifespan_starts_and_stops_sweeper(self, tmp_path):
        settings = Settings(
            upstream_fallback_file=str(tmp_path / "missing.json"),
            snapshot_dir=str(SNAPSHOT_DIR),
            upstream_timeout=0.5,
        )
        app = create_app(settings, config_store=FakeConfigStore(active_endpoint=API_BASE))

        with TestClient(app) as client:
            body = client.get("/api/health").json()
            assert body["service"] == "streamgate"
            assert body["cache"]["per_namespace"]["api"]["size"] == 0

    def test_missing_database_does_not_block_startup(self, tmp_path):
        settings = Settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'absent' / 'config.db'}",
            upstream_fallback_file=str(tmp_path / "missing.json"),
            snapshot_dir=str(SNAPSHOT_DIR),
        )
        app = create_app(settings)

        with TestClient(app) as client:
            assert client.get("/api/health").status_code == 200
        # Startup never creates the schema or the database file
        assert not (tmp_path / "absent").exists()

    def test_failing_database_init_is_logged_not_fatal(self, tmp_path, monkeypatch):
        async def refuse(*args, **kwargs):
            raise ConnectionError("database host unreachable")

        monkeypatch.setattr(db_engine, "init_db", refuse)
        settings = Settings(
            upstream_fallback_file=str(tmp_path / "missing.json"),
            snapshot_dir=str(SNAPSHOT_DIR),
        )
        app = create_app(settings)

        with TestClient(app) as client:
            assert client.get("/api/health").json()["status"] == "ok"
