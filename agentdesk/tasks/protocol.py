"""Protocol agent task: external agent spoken to over the Agent Client Protocol."""

import asyncio
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..agents.jsonrpc import INTERNAL_ERROR, METHOD_NOT_FOUND, JsonRpcConnection, JsonRpcError
from ..agents.tools import resolve_workspace_path
from ..exceptions import BootstrapError
from ..models.conversation import Conversation, ConversationType, SendMessageRequest
from ..models.message import EventType, Message, StreamEvent
from .base import AgentTask, TaskContext

PROTOCOL_VERSION = 1
# Agent stderr is kept for error reports
STDERR_TAIL_LINES = 20


def permission_message_id(call_id: str) -> str:
    return f"{call_id}-permission"


class ProtocolAgentTask(AgentTask):
    """
    Conversation with an external agent process speaking ACP
    (JSON-RPC 2.0 over stdio).

    The process is spawned lazily by ``init_agent`` (called right after
    create) or by the first send. Outgoing requests go through the keyed
    request/reply table, their JSON-RPC id being the key.
    """

    type = ConversationType.ACP

    def __init__(self, conversation: Conversation, context: TaskContext):
        super().__init__(conversation, context)
        self.backend = conversation.extra.get("backend", "claude")
        self.cli_path: Optional[str] = conversation.extra.get("cli_path")
        self.session_id: Optional[str] = None
        self.agent_info: Dict[str, Any] = {}
        self._process: Optional[asyncio.subprocess.Process] = None
        self._connection: Optional[JsonRpcConnection] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: List[str] = []
        self._bootstrap: Optional[asyncio.Task] = None
        self._next_request_id = 0
        self._prompt_lock = asyncio.Lock()
        self._current_msg_id: Optional[str] = None
        self._tool_calls: Dict[str, Dict[str, Any]] = {}

    # === Bootstrap ===
    def init_agent(self) -> asyncio.Task:
        """Start the agent process and session if not started yet."""
        if self._bootstrap is None:
            self._bootstrap = asyncio.create_task(self._run_bootstrap())
            self._bootstrap.add_done_callback(self._log_bootstrap_result)
        return self._bootstrap

    def _log_bootstrap_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"[ACP] Bootstrap of {self.conversation_id} failed: {error}")

    def _command(self) -> List[str]:
        try:
            command = self.settings.get_acp_command(self.backend)
        except ValueError as e:
            raise BootstrapError(str(e), e) from e
        if self.cli_path:
            command = [*shlex.split(self.cli_path), *command[1:]]
        return command

    async def _run_bootstrap(self) -> None:
        if self._killed:
            raise BootstrapError("task was stopped")
        if not self.workspace or not Path(self.workspace).is_dir():
            raise BootstrapError(f"workspace does not exist: {self.workspace}")
        command = self._command()
        self.logger.info(f"[ACP] Starting {self.backend} agent: cwd={self.workspace}, cmd={' '.join(command)}")
        env = {**os.environ, **self.conversation.extra.get("env", {})}
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workspace,
                env=env,
                limit=self.settings.stream_limit,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise BootstrapError(f"Failed to start {self.backend} agent ({command[0]}): {e}", e) from e

        connection = JsonRpcConnection(process.stdout, process.stdin)
        self._process = process
        self._connection = connection
        self._stderr_tail = []
        self._reader_task = asyncio.create_task(self._read_loop(connection, process))
        self._stderr_task = asyncio.create_task(self._drain_stderr(process))

        try:
            self.agent_info = await self._call("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "clientCapabilities": {"fs": {"readTextFile": True, "writeTextFile": True}},
            }) or {}
            session = await self._call("session/new", {"cwd": self.workspace, "mcpServers": []}) or {}
        except JsonRpcError as e:
            raise BootstrapError(f"{self.backend} agent initialisation failed: {e.message}", e) from e
        self.session_id = session.get("sessionId")
        if not self.session_id:
            raise BootstrapError(f"{self.backend} agent returned no session id")
        self.logger.info(f"[ACP] Session {self.session_id} ready for {self.conversation_id}")

    # === Wire ===
    async def _call(self, method: str, params: Dict[str, Any]) -> Any:
        self._next_request_id += 1
        return await self.request_reply(str(self._next_request_id), {"method": method, "params": params})

    async def _post_control(self, key: str, payload: Any) -> None:
        if self._connection is None:
            self.reply(key, error=BootstrapError("agent process is not running"))
            return
        await self._connection.send_request(int(key), payload["method"], payload["params"])

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                # overlong line, already discarded by the reader
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail = (self._stderr_tail + [text])[-STDERR_TAIL_LINES:]
                self.logger.debug(f"[ACP] {self.backend} stderr: {text}")

    async def _read_loop(self, connection: JsonRpcConnection, process: asyncio.subprocess.Process) -> None:
        reason = None
        try:
            async for frame in connection.messages():
                if "method" in frame and "id" in frame:
                    self._spawn(self._handle_agent_request(frame))
                elif "method" in frame:
                    await self._handle_notification(frame)
                elif "id" in frame:
                    error = frame.get("error")
                    if error:
                        self.reply(
                            str(frame["id"]),
                            error=JsonRpcError(error.get("code", INTERNAL_ERROR), error.get("message", "")),
                        )
                    else:
                        self.reply(str(frame["id"]), frame.get("result"))
        except Exception as e:
            self.logger.exception(f"[ACP] Reader of {self.conversation_id} failed")
            reason = f"lost connection to {self.backend} agent: {e}"
            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
        finally:
            self._on_connection_closed(connection, reason)

    def _on_connection_closed(self, connection: JsonRpcConnection, reason: Optional[str] = None) -> None:
        """Fail outstanding requests; the next send starts a new agent process."""
        if connection is not self._connection:
            return
        if reason is None:
            detail = "\n".join(self._stderr_tail[-5:])
            reason = f"{self.backend} agent process exited"
            if detail:
                reason = f"{reason}: {detail}"
        self._connection = None
        self.session_id = None
        if not self._killed:
            self._bootstrap = None
        for key in list(self._requests.keys()):
            self.reply(key, error=BootstrapError(reason))
        self.logger.info(f"[ACP] {reason} ({self.conversation_id})")

    # === Agent -> client ===
    async def _handle_agent_request(self, frame: Dict[str, Any]) -> None:
        request_id = frame["id"]
        method = frame.get("method")
        params = frame.get("params") or {}
        try:
            if method == "session/request_permission":
                result = await self._request_permission(params)
            elif method == "fs/read_text_file":
                result = await self._read_text_file(params)
            elif method == "fs/write_text_file":
                result = await self._write_text_file(params)
            else:
                await self._connection.send_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
                return
            await self._connection.send_result(request_id, result)
        except Exception as e:
            self.logger.warning(f"[ACP] {method} failed: {e}")
            if self._connection is not None:
                await self._connection.send_error(request_id, INTERNAL_ERROR, str(e))

    async def _request_permission(self, params: Dict[str, Any]) -> Dict[str, Any]:
        tool_call = params.get("toolCall") or {}
        call_id = tool_call.get("toolCallId") or str(params.get("id", ""))
        future = self.wait_for_confirmation(call_id)
        await self.emit(EventType.ACP_PERMISSION, params, call_id)

        abort_wait = asyncio.create_task(self._abort.wait())
        try:
            await asyncio.wait({future, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_wait.cancel()
        if future.done() and not future.cancelled():
            option_id = future.result()
            await self._persist(self._permission_message(call_id, params, option_id))
            return {"outcome": {"outcome": "selected", "optionId": option_id}}
        future.cancel()
        self._confirmations.pop(call_id, None)
        await self._persist(self._permission_message(call_id, params, "cancelled"))
        return {"outcome": {"outcome": "cancelled"}}

    def _permission_message(self, call_id: str, params: Dict[str, Any], status: str) -> Message:
        """Permission requests are stored beside the tool call they guard, not over it."""
        return Message(
            id=permission_message_id(call_id),
            conversation_id=self.conversation_id,
            msg_id=call_id,
            type=EventType.ACP_PERMISSION.value,
            content=params,
            status=status,
        )

    async def _read_text_file(self, params: Dict[str, Any]) -> Dict[str, Any]:
        path = resolve_workspace_path(str(params.get("path", "")), Path(self.workspace))
        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        line, limit = params.get("line"), params.get("limit")
        if line or limit:
            lines = text.splitlines(keepends=True)
            start = max(int(line or 1) - 1, 0)
            end = start + int(limit) if limit else None
            text = "".join(lines[start:end])
        return {"content": text}

    async def _write_text_file(self, params: Dict[str, Any]) -> None:
        path = resolve_workspace_path(str(params.get("path", "")), Path(self.workspace))
        content = str(params.get("content", ""))

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return None

    async def _handle_notification(self, frame: Dict[str, Any]) -> None:
        if frame.get("method") != "session/update":
            return
        update = (frame.get("params") or {}).get("update") or {}
        kind = update.get("sessionUpdate")
        msg_id = self._current_msg_id or self.conversation_id

        if kind == "agent_message_chunk":
            content = update.get("content") or {}
            if content.get("type") == "text":
                await self.emit(EventType.CONTENT, content.get("text", ""), msg_id)
        elif kind == "agent_thought_chunk":
            content = update.get("content") or {}
            await self.emit(EventType.THOUGHT, content.get("text", ""), msg_id)
        elif kind in ("tool_call", "tool_call_update"):
            call_id = update.get("toolCallId", "")
            merged = dict(self._tool_calls.get(call_id, {}))
            merged.update({k: v for k, v in update.items() if v is not None})
            self._tool_calls[call_id] = merged
            await self.emit(EventType.ACP_TOOL_CALL, merged, call_id)
        else:
            self.logger.debug(f"[ACP] Ignoring session update {kind}")

    def transform_event(self, event: StreamEvent) -> Optional[Message]:
        if event.type == EventType.ACP_PERMISSION.value:
            return self._permission_message(event.msg_id, event.data, "pending")
        message = super().transform_event(event)
        if message is not None and event.type == EventType.ACP_TOOL_CALL.value:
            message.status = event.data.get("status")
        return message

    # === Turns ===
    async def _dispatch(self, request: SendMessageRequest) -> None:
        bootstrap = self.init_agent()
        try:
            await asyncio.shield(bootstrap)
        except asyncio.CancelledError:
            if not bootstrap.cancelled():
                raise
            await self._fail_send(request.msg_id, BootstrapError("task was stopped"))
        except Exception as e:
            await self._fail_send(request.msg_id, e)
        self._spawn(self._run_prompt(request, self._abort))

    async def _run_prompt(self, request: SendMessageRequest, abort: asyncio.Event) -> None:
        async with self._prompt_lock:
            if abort.is_set():
                return
            self._current_msg_id = request.msg_id
            await self.emit(EventType.START, "", request.msg_id)
            try:
                result = await self._call("session/prompt", {
                    "sessionId": self.session_id,
                    "prompt": [{"type": "text", "text": request.input}],
                }) or {}
                if result.get("stopReason") == "refusal":
                    await self.emit(EventType.ERROR, f"{self.backend} agent refused the request", request.msg_id)
            except Exception as e:
                self.logger.warning(f"[ACP] Prompt {request.msg_id} of {self.conversation_id} failed: {e}")
                await self.emit(EventType.ERROR, str(e), request.msg_id)
            finally:
                await self.emit(EventType.FINISH, "", request.msg_id)

    # === Stop / teardown ===
    async def _on_stop(self) -> None:
        if self._connection is None or not self.session_id:
            return
        try:
            await self._connection.send_notification("session/cancel", {"sessionId": self.session_id})
        except (ConnectionError, OSError) as e:
            self.logger.warning(f"[ACP] Failed to cancel session {self.session_id}: {e}")

    async def _teardown(self) -> None:
        if self._bootstrap is not None and not self._bootstrap.done():
            self._bootstrap.cancel()
        if self._connection is not None:
            self._connection.close()
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                self._process.kill()
        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                task.cancel()
