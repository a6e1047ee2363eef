"""Gateway envelope parsing and encoding."""

from __future__ import annotations

import orjson
import pytest

from edwiges.errors import MalformedPayloadError
from edwiges.gateway.types import GatewayOpcode, GatewayPayload


class TestFromRaw:
    def test_parses_hello(self) -> None:
        payload = GatewayPayload.from_raw('{"op":10,"d":{"heartbeat_interval":41250},"s":null,"t":null}')
        assert payload.opcode == GatewayOpcode.HELLO
        assert payload.d == {"heartbeat_interval": 41250}
        assert payload.s is None
        assert payload.t is None

    def test_parses_dispatch_from_bytes(self) -> None:
        raw = orjson.dumps({"op": 0, "t": "MESSAGE_CREATE", "s": 12, "d": {"id": "1"}})
        payload = GatewayPayload.from_raw(raw)
        assert payload.op == 0
        assert payload.t == "MESSAGE_CREATE"
        assert payload.s == 12

    def test_ignores_unknown_fields(self) -> None:
        payload = GatewayPayload.from_raw('{"op":11,"extra":true}')
        assert payload.opcode == GatewayOpcode.HEARTBEAT_ACK

    def test_unknown_opcode_is_kept(self) -> None:
        payload = GatewayPayload.from_raw('{"op":42}')
        assert payload.op == 42
        assert payload.opcode is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2, 3]",
            '"hello"',
            '{"d": {}}',
            '{"op": "ten"}',
            '{"op": true}',
            '{"op": -1}',
            '{"op": 0, "s": -5}',
            '{"op": 0, "t": 5}',
        ],
    )
    def test_rejects_malformed(self, raw: str) -> None:
        with pytest.raises(MalformedPayloadError) as exc_info:
            GatewayPayload.from_raw(raw)
        assert exc_info.value.raw == raw


class TestEncode:
    def test_encodes_op_and_data(self) -> None:
        encoded = GatewayPayload.encode(GatewayOpcode.HEARTBEAT, 7)
        assert orjson.loads(encoded) == {"op": 1, "d": 7}

    def test_encodes_null_data(self) -> None:
        encoded = GatewayPayload.encode(GatewayOpcode.HEARTBEAT, None)
        assert orjson.loads(encoded) == {"op": 1, "d": None}
