"""CLI agent task: a coding assistant CLI run once per turn."""

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import BootstrapError
from ..models.conversation import Conversation, ConversationType, SendMessageRequest
from ..models.message import EventType
from ..models.tool import ToolCallStatus, ToolDisplay
from .base import AgentTask, TaskContext

# item status reported by the CLI -> tool call status shown in the UI
ITEM_STATUS = {
    "in_progress": ToolCallStatus.EXECUTING,
    "completed": ToolCallStatus.SUCCESS,
    "failed": ToolCallStatus.ERROR,
    "declined": ToolCallStatus.CANCELLED,
}

MAX_RESULT_DISPLAY = 10_000


class CliAgentTask(AgentTask):
    """
    Conversation backed by a coding assistant CLI.

    Each turn spawns ``<binary> <args> [resume <session>] <prompt>`` in the
    workspace and converts its JSON lines into stream events. The session id
    reported by the CLI is stored in the conversation extra so later turns,
    and rebuilt tasks, resume it.
    """

    type = ConversationType.CLI

    def __init__(self, conversation: Conversation, context: TaskContext):
        super().__init__(conversation, context)
        self.command = self.settings.get_cli_command()
        self.session_id: Optional[str] = conversation.extra.get("session_id")
        self.env_vars: Dict[str, str] = conversation.extra.get("env", {})
        self._turn_lock = asyncio.Lock()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._tool_calls: Dict[str, Tuple[str, str]] = {}

    async def _dispatch(self, request: SendMessageRequest) -> None:
        if not self.workspace or not Path(self.workspace).exists():
            await self._fail_send(request.msg_id, BootstrapError(f"workspace does not exist: {self.workspace}"))
        if shutil.which(self.command[0]) is None:
            await self._fail_send(request.msg_id, BootstrapError(f"{self.command[0]} command not found in PATH"))
        self._spawn(self._run_turn(request, self._abort))

    def _build_command(self, prompt: str) -> List[str]:
        cmd = list(self.command)
        if self.session_id:
            cmd.extend(["resume", self.session_id])
        cmd.append(prompt)
        return cmd

    async def _run_turn(self, request: SendMessageRequest, abort: asyncio.Event) -> None:
        async with self._turn_lock:
            if abort.is_set():
                return
            msg_id = request.msg_id
            await self.emit(EventType.START, "", msg_id)
            process = None
            stderr_task = None
            try:
                cmd = self._build_command(request.input)
                self.logger.info(f"[CLI] turn {msg_id}: cwd={self.workspace}, cmd={' '.join(cmd[:-1])} <prompt>")
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.workspace,
                    env={**os.environ, **self.env_vars},
                    limit=self.settings.stream_limit,
                )
                self._process = process
                stderr_task = asyncio.create_task(process.stderr.read())

                async for raw in process.stdout:
                    if abort.is_set():
                        break
                    line = raw.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        self.logger.debug(f"[CLI] Ignoring non JSON output: {line[:200]}")
                        continue
                    if isinstance(data, dict):
                        await self._handle_line(data, msg_id)

                if abort.is_set():
                    # results of the interrupted turn are dropped, the process is left to finish
                    self._spawn(self._reap(process, stderr_task))
                    return

                returncode = await process.wait()
                stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
                if returncode != 0:
                    self.logger.error(f"[CLI] {self.command[0]} exited with code {returncode}: {stderr}")
                    await self.emit(EventType.ERROR, f"{self.command[0]} exited with code {returncode}: {stderr}", msg_id)
            except Exception as e:
                self.logger.exception(f"[CLI] turn {msg_id} of {self.conversation_id} failed")
                await self.emit(EventType.ERROR, str(e), msg_id)
                if process is not None and process.returncode is None:
                    try:
                        process.terminate()
                    except ProcessLookupError:
                        pass
                    self._spawn(self._reap(process, stderr_task))
            finally:
                self._process = None
                await self.emit(EventType.FINISH, "", msg_id)

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process, stderr_task: asyncio.Task) -> None:
        while await process.stdout.read(65536):
            pass
        await process.wait()
        await stderr_task

    async def _handle_line(self, data: Dict[str, Any], msg_id: str) -> None:
        """Convert one JSON line of the CLI into stream events."""
        line_type = data.get("type", "")

        if line_type == "thread.started":
            await self._remember_session(data.get("thread_id"))
        elif line_type in ("item.started", "item.updated", "item.completed"):
            await self._handle_item(data.get("item") or {}, msg_id, line_type == "item.completed")
        elif line_type == "turn.failed":
            error = data.get("error") or {}
            await self.emit(EventType.ERROR, error.get("message", "turn failed"), msg_id)
        elif line_type == "error":
            await self.emit(EventType.ERROR, data.get("message", "unknown error"), msg_id)

        # stream-json format
        elif line_type == "system" and data.get("subtype") == "init":
            await self._remember_session(data.get("session_id"))
        elif line_type == "assistant":
            await self._handle_assistant_message(data.get("message") or {}, msg_id)
        elif line_type == "user":
            await self._handle_tool_results(data.get("message") or {})
        elif line_type == "result":
            await self._remember_session(data.get("session_id"))
            if data.get("is_error"):
                await self.emit(EventType.ERROR, str(data.get("result", "CLI reported an error")), msg_id)

    async def _handle_item(self, item: Dict[str, Any], msg_id: str, completed: bool) -> None:
        item_type = item.get("type")
        item_id = item.get("id", "")

        if item_type == "agent_message":
            if completed:
                await self._emit_text(item.get("text", ""), msg_id)
        elif item_type == "reasoning":
            await self.emit(EventType.THOUGHT, item.get("text", ""), msg_id)
        elif item_type == "command_execution":
            await self._emit_tool(
                item_id, "shell", item.get("command", ""),
                item.get("status", "in_progress"), item.get("aggregated_output"),
            )
        elif item_type == "file_change":
            paths = ", ".join(change.get("path", "") for change in item.get("changes") or [])
            await self._emit_tool(item_id, "edit", paths, item.get("status", "in_progress"))
        elif item_type == "mcp_tool_call":
            name = f"{item.get('server', '')}.{item.get('tool', '')}"
            await self._emit_tool(item_id, name, name, item.get("status", "in_progress"))
        elif item_type == "error":
            await self.emit(EventType.ERROR, item.get("message", ""), msg_id)

    async def _handle_assistant_message(self, message: Dict[str, Any], msg_id: str) -> None:
        for block in message.get("content") or []:
            if block.get("type") == "text":
                await self._emit_text(block.get("text", ""), msg_id)
            elif block.get("type") == "thinking":
                await self.emit(EventType.THOUGHT, block.get("thinking", ""), msg_id)
            elif block.get("type") == "tool_use":
                call_id = block.get("id", "")
                description = json.dumps(block.get("input", {}), ensure_ascii=False)
                self._tool_calls[call_id] = (block.get("name", ""), description)
                await self._emit_tool(call_id, block.get("name", ""), description, "in_progress")

    async def _handle_tool_results(self, message: Dict[str, Any]) -> None:
        for block in message.get("content") or []:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            call_id = block.get("tool_use_id", "")
            content = block.get("content")
            if isinstance(content, list):
                content = "\n".join(c.get("text", "") for c in content if isinstance(c, dict))
            status = "failed" if block.get("is_error") else "completed"
            name, description = self._tool_calls.pop(call_id, ("", ""))
            await self._emit_tool(call_id, name, description, status, content)

    async def _emit_text(self, text: str, msg_id: str) -> None:
        if not text:
            return
        if self._text_buffers.get(msg_id):
            text = f"\n\n{text}"
        await self.emit(EventType.CONTENT, text, msg_id)

    async def _emit_tool(
        self,
        call_id: str,
        name: str,
        description: str,
        status: str,
        output: Optional[str] = None,
    ) -> None:
        display = ToolDisplay(
            call_id=call_id,
            name=name,
            description=description,
            status=ITEM_STATUS.get(status, ToolCallStatus.EXECUTING),
            result_display=output[-MAX_RESULT_DISPLAY:] if output else None,
        )
        await self.emit(EventType.TOOL_GROUP, [display.model_dump(mode="json")], call_id)

    async def _remember_session(self, session_id: Optional[str]) -> None:
        """Store a new session id so later turns resume it."""
        if not session_id or session_id == self.session_id:
            return
        self.session_id = session_id
        extra = {**self.conversation.extra, "session_id": session_id}
        self.conversation.extra = extra
        try:
            await self.store.update(self.conversation_id, {"extra": extra})
        except Exception as e:
            self.logger.error(f"[CLI] Failed to store session {session_id} of {self.conversation_id}: {e}")
        self.logger.info(f"[CLI] Conversation {self.conversation_id} bound to session {session_id}")

    async def _teardown(self) -> None:
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
