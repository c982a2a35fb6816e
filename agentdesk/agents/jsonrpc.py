"""Newline delimited JSON-RPC 2.0 over a subprocess' stdio."""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional, Union

from ..utils.logger import get_app_logger

logger = get_app_logger()

JSONRPC_VERSION = "2.0"
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class JsonRpcError(Exception):
    """Error object returned by the peer."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{message} (code {code})")
        self.code = code
        self.message = message
        self.data = data


class JsonRpcConnection:
    """
    One JSON-RPC peer reached through a reader and a writer.

    Correlation of responses is left to the caller: ``messages()`` yields
    every decoded frame (requests, notifications and responses).
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._write_lock = asyncio.Lock()

    async def _write(self, frame: Dict[str, Any]) -> None:
        data = json.dumps(frame, ensure_ascii=False) + "\n"
        async with self._write_lock:
            self.writer.write(data.encode("utf-8"))
            await self.writer.drain()

    async def send_request(self, request_id: Union[int, str], method: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self._write({"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method, "params": params or {}})

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self._write({"jsonrpc": JSONRPC_VERSION, "method": method, "params": params or {}})

    async def send_result(self, request_id: Union[int, str], result: Any = None) -> None:
        await self._write({"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result})

    async def send_error(self, request_id: Union[int, str], code: int, message: str) -> None:
        await self._write({"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}})

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Decoded frames until EOF. Lines that are not JSON objects are skipped."""
        while True:
            line = await self.reader.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                frame = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non JSON-RPC output: {text[:200]}")
                continue
            if isinstance(frame, dict):
                yield frame

    def close(self) -> None:
        try:
            self.writer.close()
        except (OSError, RuntimeError):
            pass
