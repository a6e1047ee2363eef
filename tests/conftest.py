"""Shared fakes: an in-process gateway + REST server on aiohttp.web."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import aiohttp
import aiohttp.web
import orjson
import pytest

BOT_USER: dict[str, Any] = {
    "id": "100000000000000001",
    "username": "edwiges",
    "discriminator": "0",
    "bot": True,
}


class FakeGateway:
    """
    Minimal gateway that speaks Hello/Identify/Heartbeat and a REST stub.

    - WS ``/``: sends Hello, acks heartbeats, answers Identify with READY.
    - ``GET /api/v10/users/@me``: returns BOT_USER (or ``me_status``, or the raw ``me_raw`` text).
    - ``POST /api/v10/channels/{id}/messages``: records and echoes the message.
    """

    def __init__(
        self,
        heartbeat_interval_ms: int | None = 50,
        *,
        send_hello: bool = True,
        send_ready: bool = True,
        ack_heartbeats: bool = True,
        me_status: int = 200,
        me_raw: str | None = None,
    ) -> None:
        self.heartbeat_interval_ms = heartbeat_interval_ms
        self.send_hello = send_hello
        self.send_ready = send_ready
        self.ack_heartbeats = ack_heartbeats
        self.me_status = me_status
        self.me_raw = me_raw

        self.received: list[dict[str, Any]] = []
        self.received_at: list[float] = []
        self.queries: list[dict[str, str]] = []
        self.sockets: list[aiohttp.web.WebSocketResponse] = []
        self.created_messages: list[dict[str, Any]] = []
        self.me_requests: list[aiohttp.web.Request] = []
        self._sequence = 0
        self._runner: aiohttp.web.AppRunner | None = None
        self.port = 0

    async def __aenter__(self) -> FakeGateway:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    @property
    def ws_url(self) -> str:
        return f"ws://127.0.0.1:{self.port}/"

    @property
    def rest_url(self) -> str:
        return f"http://127.0.0.1:{self.port}/api"

    def options(self, **sharding: Any) -> dict[str, Any]:
        """Client options mapping pointed at this server."""
        return {
            "rest": {"baseUrl": self.rest_url},
            "sharding": {"gatewayUrl": self.ws_url, **sharding},
        }

    def payloads(self, op: int) -> list[dict[str, Any]]:
        return [p for p in self.received if p.get("op") == op]

    async def send(self, frame: dict[str, Any] | str, index: int = -1) -> None:
        """Push a frame (dict encoded as JSON, str sent as-is) to a socket."""
        ws = self.sockets[index]
        await ws.send_str(frame if isinstance(frame, str) else orjson.dumps(frame).decode())

    async def dispatch(self, event_type: str, data: Any, index: int = -1) -> int:
        self._sequence += 1
        await self.send({"op": 0, "t": event_type, "s": self._sequence, "d": data}, index)
        return self._sequence

    async def close_all(self, code: int = 4000) -> None:
        for ws in list(self.sockets):
            await ws.close(code=code)

    async def wait_until(self, predicate: Callable[[], bool], timeout: float = 3.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise TimeoutError("condition not met in time")
            await asyncio.sleep(0.01)

    async def _ws_handler(self, request: aiohttp.web.Request) -> aiohttp.web.WebSocketResponse:
        ws = aiohttp.web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        self.queries.append(dict(request.query))
        loop = asyncio.get_running_loop()

        if self.send_hello:
            await ws.send_str(
                orjson.dumps(
                    {"op": 10, "d": {"heartbeat_interval": self.heartbeat_interval_ms}, "s": None, "t": None}
                ).decode()
            )

        async for msg in ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue
            payload = orjson.loads(msg.data)
            self.received.append(payload)
            self.received_at.append(loop.time())

            if payload["op"] == 1 and self.ack_heartbeats:
                await ws.send_str(orjson.dumps({"op": 11, "d": None}).decode())
            elif payload["op"] == 2 and self.send_ready:
                self._sequence += 1
                ready = {
                    "v": 10,
                    "user": BOT_USER,
                    "session_id": f"session-{len(self.sockets)}",
                    "shard": payload["d"].get("shard"),
                    "guilds": [],
                }
                await ws.send_str(
                    orjson.dumps({"op": 0, "t": "READY", "s": self._sequence, "d": ready}).decode()
                )

        return ws

    async def _me_handler(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        self.me_requests.append(request)
        if self.me_status != 200:
            return aiohttp.web.json_response({"message": "nope", "code": 0}, status=self.me_status)
        if self.me_raw is not None:
            return aiohttp.web.Response(text=self.me_raw, content_type="application/json")
        return aiohttp.web.json_response(BOT_USER)

    async def _create_message_handler(self, request: aiohttp.web.Request) -> aiohttp.web.Response:
        body = await request.json()
        message = {
            "id": str(900 + len(self.created_messages)),
            "channel_id": request.match_info["channel_id"],
            "author": BOT_USER,
            "content": body["content"],
        }
        self.created_messages.append(message)
        return aiohttp.web.json_response(message)

    async def start(self) -> None:
        app = aiohttp.web.Application()
        app.router.add_get("/", self._ws_handler)
        app.router.add_get("/api/v10/users/@me", self._me_handler)
        app.router.add_post("/api/v10/channels/{channel_id}/messages", self._create_message_handler)
        self._runner = aiohttp.web.AppRunner(app, shutdown_timeout=1.0)
        await self._runner.setup()
        site = aiohttp.web.TCPSite(self._runner, "127.0.0.1", 0)
        await site.start()
        assert self._runner.addresses
        self.port = self._runner.addresses[0][1]

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()


@pytest.fixture()
def fake_gateway() -> type[FakeGateway]:
    """The FakeGateway class; use as ``async with fake_gateway(...) as gw``."""
    return FakeGateway


@pytest.fixture()
def bot_user() -> dict[str, Any]:
    return dict(BOT_USER)
