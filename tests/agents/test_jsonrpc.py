"""JSON-RPC framing tests."""

import asyncio
import json

from agentdesk.agents.jsonrpc import JsonRpcConnection


class FakeWriter:
    def __init__(self):
        self.buffer = b""
        self.closed = False

    def write(self, data: bytes):
        self.buffer += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    def frames(self):
        return [json.loads(line) for line in self.buffer.decode().splitlines()]


def _connection(*lines: str):
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data((line + "\n").encode())
    reader.feed_eof()
    writer = FakeWriter()
    return JsonRpcConnection(reader, writer), writer


class TestJsonRpcConnection:
    """Tests for JsonRpcConnection."""

    async def test_outgoing_frames(self):
        connection, writer = _connection()
        await connection.send_request(1, "initialize", {"protocolVersion": 1})
        await connection.send_notification("session/cancel", {"sessionId": "s"})
        await connection.send_result(7, {"ok": True})
        await connection.send_error(8, -32601, "nope")

        assert writer.frames() == [
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": 1}},
            {"jsonrpc": "2.0", "method": "session/cancel", "params": {"sessionId": "s"}},
            {"jsonrpc": "2.0", "id": 7, "result": {"ok": True}},
            {"jsonrpc": "2.0", "id": 8, "error": {"code": -32601, "message": "nope"}},
        ]

    async def test_messages_skip_noise(self):
        connection, _ = _connection(
            "starting agent...",
            "",
            '{"jsonrpc": "2.0", "id": 1, "result": {}}',
            "[1, 2]",
            '{"jsonrpc": "2.0", "method": "session/update", "params": {}}',
        )
        frames = [frame async for frame in connection.messages()]
        assert [frame.get("id", frame.get("method")) for frame in frames] == [1, "session/update"]

    async def test_close(self):
        connection, writer = _connection()
        connection.close()
        assert writer.closed
