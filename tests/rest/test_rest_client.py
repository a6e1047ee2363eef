"""REST client tests against an aiohttp test server."""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from edwiges.config import RestOptions
from edwiges.errors import ClientConfigError, RateLimitError, RestError
from edwiges.rest.client import RestClient


class RecordingApp:
    """Routes under /api/v10 that record the requests they saw."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.app = web.Application()
        self.app.router.add_get("/api/v10/users/@me", self.me)
        self.app.router.add_get("/api/v9/users/@me", self.me)
        self.app.router.add_post("/api/v10/channels/{channel_id}/messages", self.create_message)
        self.app.router.add_get("/api/v10/limited", self.limited)
        self.app.router.add_get("/api/v10/limited-header", self.limited_header)
        self.app.router.add_get("/api/v10/missing", self.missing)
        self.app.router.add_delete("/api/v10/empty", self.empty)
        self.app.router.add_get("/api/v10/text", self.text)
        self.app.router.add_get("/api/v10/malformed", self.malformed)

    def _record(self, request: web.Request, body: Any = None) -> None:
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "authorization": request.headers.get("Authorization"),
                "user_agent": request.headers.get("User-Agent"),
                "query": dict(request.query),
                "body": body,
            }
        )

    async def me(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.json_response({"id": "1", "username": "bot", "bot": True})

    async def create_message(self, request: web.Request) -> web.Response:
        body = await request.json()
        self._record(request, body)
        return web.json_response(
            {"id": "9", "channel_id": request.match_info["channel_id"], "content": body["content"]}
        )

    async def limited(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.json_response({"message": "slow down", "retry_after": 1.5, "global": True}, status=429)

    async def limited_header(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.Response(status=429, text="slow down", headers={"Retry-After": "2"})

    async def missing(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.json_response({"message": "Unknown", "code": 10003}, status=404)

    async def empty(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.Response(status=204)

    async def text(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.Response(text="plain")

    async def malformed(self, request: web.Request) -> web.Response:
        self._record(request)
        return web.Response(text="{not json", content_type="application/json")


@pytest.fixture()
def recording_app() -> RecordingApp:
    return RecordingApp()


async def start(recording_app: RecordingApp, **options: Any) -> tuple[TestServer, RestClient]:
    server = TestServer(recording_app.app)
    await server.start_server()
    base_url = str(server.make_url("/api"))
    client = RestClient("secret-token", RestOptions(base_url=base_url, **options))
    return server, client


class TestRequests:
    def test_rejects_missing_token(self) -> None:
        with pytest.raises(ClientConfigError):
            RestClient("")

    def test_api_url(self) -> None:
        client = RestClient("t", RestOptions(base_url="https://example.test/api/", api_version=9))
        assert client.api_url == "https://example.test/api/v9"

    @pytest.mark.asyncio
    async def test_get_current_user_sends_auth(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            me = await client.get_current_user()
        finally:
            await client.close()
            await server.close()

        assert me == {"id": "1", "username": "bot", "bot": True}
        seen = recording_app.requests[0]
        assert seen["authorization"] == "Bot secret-token"
        assert seen["user_agent"].startswith("DiscordBot (")

    @pytest.mark.asyncio
    async def test_no_auth_header_unless_requested(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            await client.request("GET", "/users/@me", params={"with": "x"})
        finally:
            await client.close()
            await server.close()

        assert recording_app.requests[0]["authorization"] is None
        assert recording_app.requests[0]["query"] == {"with": "x"}

    @pytest.mark.asyncio
    async def test_always_send_authorization_header(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app, always_send_authorization_header=True)
        try:
            await client.request("GET", "/users/@me")
        finally:
            await client.close()
            await server.close()

        assert recording_app.requests[0]["authorization"] == "Bot secret-token"

    @pytest.mark.asyncio
    async def test_api_version_in_path(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app, api_version=9)
        try:
            await client.get_current_user()
        finally:
            await client.close()
            await server.close()

        assert recording_app.requests[0]["path"] == "/api/v9/users/@me"

    @pytest.mark.asyncio
    async def test_create_message_posts_json(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            message = await client.create_message("42", "Pong!")
        finally:
            await client.close()
            await server.close()

        assert message["channel_id"] == "42"
        assert recording_app.requests[0]["method"] == "POST"
        assert recording_app.requests[0]["body"] == {"content": "Pong!"}

    @pytest.mark.asyncio
    async def test_empty_and_text_bodies(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            assert await client.request("delete", "/empty") is None
            assert await client.request("GET", "/text") == "plain"
        finally:
            await client.close()
            await server.close()

        assert recording_app.requests[0]["method"] == "DELETE"


class TestErrors:
    @pytest.mark.asyncio
    async def test_http_error_raises_rest_error(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            with pytest.raises(RestError) as exc_info:
                await client.request("GET", "/missing")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.status == 404
        assert exc_info.value.body == {"message": "Unknown", "code": 10003}
        assert not isinstance(exc_info.value, RateLimitError)

    @pytest.mark.asyncio
    async def test_malformed_json_raises_rest_error(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            with pytest.raises(RestError, match="Malformed JSON") as exc_info:
                await client.request("GET", "/malformed")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.status == 200
        assert exc_info.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_rate_limit_from_body(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            with pytest.raises(RateLimitError) as exc_info:
                await client.request("GET", "/limited")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.status == 429
        assert exc_info.value.retry_after_ms == 1500
        assert exc_info.value.is_global

    @pytest.mark.asyncio
    async def test_rate_limit_from_header(self, recording_app: RecordingApp) -> None:
        server, client = await start(recording_app)
        try:
            with pytest.raises(RateLimitError) as exc_info:
                await client.request("GET", "/limited-header")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.retry_after_ms == 2000
        assert not exc_info.value.is_global

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        client = RestClient("t")
        await client.close()
        await client.close()
