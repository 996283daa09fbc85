"""
Tests for the aiohttp transport, liveness probe and generation client.
"""

import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from genstream.client import GenerationClient
from genstream.streaming.session import SessionState, StreamSession
from genstream.streaming.watchdog import ProbeOutcome
from genstream.transport.http import HttpLivenessProbe, HttpStreamSource, STREAM_HEADERS, auth_headers
from genstream.utils.config import GenstreamConfig
from genstream.utils.errors import AuthError, ErrorKind, TransportError
from tests.fixtures.streaming_fixtures import RecordingSink


async def stream_handler(request):
    response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
    await response.prepare(request)
    await response.write(b":keepalive\n")
    await response.write(b'data: {"d":"Hel')
    await asyncio.sleep(0.01)
    await response.write('lo"}\n[Agent] CodeGen done - wrote 2 files\ndata: {"d":" wörld"}\n'.encode("utf-8"))
    await response.write(b"data: [DONE]\n")
    await response.write_eof()
    return response


async def echo_handler(request):
    body = await request.json() if request.can_read_body else None
    summary = {
        "method": request.method,
        "auth": request.headers.get("Authorization"),
        "accept": request.headers.get("Accept"),
        "app_id": request.query.get("appId"),
        "body": body,
    }
    line = "data: " + json.dumps({"d": json.dumps(summary)}) + "\n"
    return web.Response(body=line.encode("utf-8"), content_type="text/event-stream")


async def unauthorized_handler(request):
    return web.Response(status=401, text="token expired")


async def broken_handler(request):
    return web.Response(status=500, text="internal error")


async def missing_handler(request):
    return web.Response(status=404, text="no such app")


async def ping_handler(request):
    return web.Response(text="pong")


async def slow_ping_handler(request):
    await asyncio.sleep(1)
    return web.Response(text="pong")


@pytest_asyncio.fixture
async def server():
    app = web.Application()
    app.router.add_get("/api/stream", stream_handler)
    app.router.add_route("*", "/api/echo", echo_handler)
    app.router.add_get("/api/unauthorized", unauthorized_handler)
    app.router.add_get("/api/broken", broken_handler)
    app.router.add_get("/api/missing", missing_handler)
    app.router.add_get("/api/ping", ping_handler)
    app.router.add_get("/api/slow-ping", slow_ping_handler)

    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


def url(server, path):
    return str(server.make_url(path))


def echoed(sink):
    return json.loads(sink.text)


class TestHttpStreamSource:
    """Streaming responses over HTTP."""

    @pytest.mark.asyncio
    async def test_stream_session(self, server, quiet_settings):
        sink = RecordingSink()
        session = StreamSession(
            HttpStreamSource(url(server, "/api/stream")),
            sinks=[sink],
            settings=quiet_settings
        )

        assert await session.run() is SessionState.COMPLETED
        assert sink.text == "Hello wörld"
        assert ("progress", "CodeGen", "done", "wrote 2 files") in sink.calls
        assert sink.count("complete") == 1

    @pytest.mark.asyncio
    async def test_request_headers_and_params(self, server, quiet_settings):
        sink = RecordingSink()
        source = HttpStreamSource(url(server, "/api/echo"), params={"appId": "42"}, token="secret")
        await StreamSession(source, sinks=[sink], settings=quiet_settings).run()

        summary = echoed(sink)
        assert summary["method"] == "GET"
        assert summary["auth"] == "Bearer secret"
        assert summary["accept"] == "text/event-stream"
        assert summary["app_id"] == "42"

    @pytest.mark.asyncio
    async def test_post_body(self, server, quiet_settings):
        sink = RecordingSink()
        source = HttpStreamSource(url(server, "/api/echo"), method="post", json_body={"prompt": "hi"})
        await StreamSession(source, sinks=[sink], settings=quiet_settings).run()

        summary = echoed(sink)
        assert summary["method"] == "POST"
        assert summary["auth"] is None
        assert summary["body"] == {"prompt": "hi"}

    @pytest.mark.asyncio
    async def test_unauthorized(self, server, quiet_settings):
        sink = RecordingSink()
        session = StreamSession(HttpStreamSource(url(server, "/api/unauthorized")), sinks=[sink], settings=quiet_settings)

        assert await session.run() is SessionState.FAILED
        assert isinstance(session.error, AuthError)
        assert session.error.kind is ErrorKind.AUTH
        assert "token expired" in session.error.message
        assert sink.names == ["error", "complete"]

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, server, quiet_settings):
        session = StreamSession(HttpStreamSource(url(server, "/api/broken")), settings=quiet_settings)
        await session.run()
        assert isinstance(session.error, TransportError)
        assert session.error.status == 500
        assert session.error.is_retryable

    @pytest.mark.asyncio
    async def test_client_error_is_not_retryable(self, server, quiet_settings):
        session = StreamSession(HttpStreamSource(url(server, "/api/missing")), settings=quiet_settings)
        await session.run()
        assert session.error.status == 404
        assert not session.error.is_retryable

    @pytest.mark.asyncio
    async def test_connection_refused(self, quiet_settings):
        source = HttpStreamSource(f"http://127.0.0.1:{unused_port()}/api/stream", connect_timeout=2)
        session = StreamSession(source, settings=quiet_settings)
        await session.run()
        assert isinstance(session.error, TransportError)
        assert session.error.kind is ErrorKind.TRANSPORT
        assert source.closed

    @pytest.mark.asyncio
    async def test_abort_while_waiting_for_headers(self, server):
        source = HttpStreamSource(url(server, "/api/slow-ping"))
        opening = asyncio.ensure_future(source.open())
        await asyncio.sleep(0.05)

        source.abort()
        with pytest.raises(TransportError, match="aborted"):
            await asyncio.wait_for(opening, timeout=0.5)

        await source.close()
        assert source.closed

    def test_headers(self):
        source = HttpStreamSource("http://example.invalid/", headers={"X-Trace": "1"}, token="t")
        assert source.headers["Authorization"] == "Bearer t"
        assert source.headers["X-Trace"] == "1"
        for key, value in STREAM_HEADERS.items():
            assert source.headers[key] == value
        assert auth_headers(None) == {}


class TestHttpLivenessProbe:
    """Probe outcomes."""

    @pytest.mark.asyncio
    async def test_alive(self, server):
        probe = HttpLivenessProbe(url(server, "/api/ping"), token="t")
        assert await probe() is ProbeOutcome.ALIVE

    @pytest.mark.asyncio
    async def test_error_status_is_still_alive(self, server):
        probe = HttpLivenessProbe(url(server, "/api/unauthorized"))
        assert await probe() is ProbeOutcome.ALIVE

    @pytest.mark.asyncio
    async def test_timeout_is_inconclusive(self, server):
        probe = HttpLivenessProbe(url(server, "/api/slow-ping"), timeout=0.1)
        assert await probe() is ProbeOutcome.INCONCLUSIVE

    @pytest.mark.asyncio
    async def test_unreachable(self):
        probe = HttpLivenessProbe(f"http://127.0.0.1:{unused_port()}/ping", timeout=2)
        assert await probe() is ProbeOutcome.UNREACHABLE


class TestGenerationClient:
    """Client wiring."""

    def config_for(self, server, token=None):
        return GenstreamConfig(
            transport={"base_url": url(server, "/api") + "/", "token": token},
            stream={"stall_threshold": 3600, "check_interval": 3600},
        )

    def test_url_for(self):
        client = GenerationClient(GenstreamConfig(transport={"base_url": "https://host/api/"}))
        assert client.url_for("app/chat/gen/code") == "https://host/api/app/chat/gen/code"
        assert client.url_for("/ping") == "https://host/api/ping"
        assert client.url_for("http://other/x") == "http://other/x"

    def test_create_session_defaults(self):
        client = GenerationClient()
        session = client.create_session("stream", [], body={"a": 1})
        assert session.source.method == "POST"
        assert session.watchdog.threshold == 180.0
        assert session.watchdog.probe.url.endswith("/api/ping")

    @pytest.mark.asyncio
    async def test_stream(self, server):
        client = GenerationClient(self.config_for(server, token="abc"))
        sink = RecordingSink()
        session = await client.stream("echo", [sink], params={"appId": "7"})

        assert session.state is SessionState.COMPLETED
        summary = echoed(sink)
        assert summary["auth"] == "Bearer abc"
        assert summary["app_id"] == "7"

    @pytest.mark.asyncio
    async def test_auth_hook(self, server):
        rejected = []

        async def on_auth_error(error):
            rejected.append(error)

        client = GenerationClient(self.config_for(server, token="stale"), on_auth_error=on_auth_error)
        session = await client.stream("unauthorized", [])

        assert session.state is SessionState.FAILED
        assert len(rejected) == 1
        assert rejected[0] is session.error

    @pytest.mark.asyncio
    async def test_auth_hook_not_called_for_other_errors(self, server):
        rejected = []
        client = GenerationClient(self.config_for(server), on_auth_error=rejected.append)
        await client.stream("broken", [])
        assert rejected == []
