"""Interactive LLM task: in-process model client with tool calling."""

import asyncio
from typing import Any, Dict, List, Optional, Set, Union
from uuid import uuid4

from ..agents.memory import build_history_text, load_workspace_memory
from ..agents.scheduler import ToolScheduler
from ..agents.tools import build_workspace_tools
from ..exceptions import BootstrapError, CancellationSignal, ValidationError
from ..models.conversation import Conversation, ConversationType, SendMessageRequest
from ..models.message import EventType
from ..models.tool import ToolCall, ToolCallStatus, ToolDisplay
from .base import AgentTask, TaskContext

HISTORY_REQUEST = "init.history"


class InteractiveLlmTask(AgentTask):
    """
    Conversation driven by a model client running in this process.

    Bootstrap starts right after construction: stored configuration is
    loaded, the client is started and the recent history is injected.
    Tool calls requested by the model go through the ToolScheduler and
    their results are submitted back as a continuation turn.
    """

    type = ConversationType.LLM

    def __init__(self, conversation: Conversation, context: TaskContext):
        super().__init__(conversation, context)
        if conversation.model is None:
            raise ValidationError("model is required for llm conversations")
        self.model = conversation.model
        self.client = context.client_factory(conversation)
        self.tools = build_workspace_tools(self.workspace)
        self.scheduler = ToolScheduler(
            self.tools,
            on_update=self._on_tool_calls_update,
            on_all_complete=self._on_all_tool_calls_complete,
            confirm_handler=self._confirm_tool_call,
        )
        self._turn_lock = asyncio.Lock()
        self._live_msg_ids: Set[str] = set()
        self._control_handlers[HISTORY_REQUEST] = self._handle_init_history
        self._bootstrap = asyncio.create_task(self._run_bootstrap())
        self._bootstrap.add_done_callback(self._log_bootstrap_result)

    # === Bootstrap ===
    async def _run_bootstrap(self) -> None:
        llm_config, image_model, mcp_servers = await asyncio.gather(
            self._get_llm_config(),
            self._get_image_generation_model(),
            self._get_mcp_servers(),
        )
        config: Dict[str, Any] = {
            **llm_config,
            "workspace": self.workspace,
            "conversation_id": self.conversation_id,
            "image_generation_model": image_model,
            "mcp_servers": mcp_servers,
            "web_search_engine": self.conversation.extra.get("web_search_engine"),
            "tools": self.tools.schemas(),
        }
        try:
            await self.client.start(config)
        except BootstrapError:
            raise
        except Exception as e:
            raise BootstrapError(f"Failed to start model client: {e}", e) from e

        self.client.set_workspace_memory(await self._load_memory())
        await self._inject_history()

    def _log_bootstrap_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Bootstrap of {self.conversation_id} failed: {error}")
        else:
            self.logger.info(f"Bootstrap of {self.conversation_id} completed")

    async def _get_llm_config(self) -> Dict[str, Any]:
        config = await self.context.process_config.get("llm.config", {})
        return config if isinstance(config, dict) else {}

    async def _get_image_generation_model(self) -> Optional[Dict[str, Any]]:
        model = await self.context.process_config.get("tools.imageGenerationModel")
        if isinstance(model, dict) and model.get("switch"):
            return {k: v for k, v in model.items() if k != "switch"}
        return None

    async def _get_mcp_servers(self) -> Dict[str, Dict[str, Any]]:
        """Enabled, connected, stdio providers keyed by name."""
        servers = await self.context.process_config.get("mcp.config", [])
        found: Dict[str, Dict[str, Any]] = {}
        for server in servers if isinstance(servers, list) else []:
            if not isinstance(server, dict):
                continue
            transport = server.get("transport") or {}
            if not server.get("enabled") or server.get("status") != "connected":
                continue
            if transport.get("type") != "stdio":
                continue
            found[server.get("name", "")] = {
                "command": transport.get("command"),
                "args": transport.get("args", []),
                "env": transport.get("env", {}),
                "description": server.get("description", ""),
            }
        return found

    async def _load_memory(self) -> str:
        return await load_workspace_memory(self.workspace, self.settings.get_context_file_names())

    async def _inject_history(self, skip_live_turns: bool = True) -> None:
        """
        Inject the recent stored conversation. Failures are logged and ignored.

        Args:
            skip_live_turns: Leave out turns sent through this task, the
                client already holds them
        """
        try:
            messages = await self.store.get_messages(self.conversation_id)
            if skip_live_turns:
                messages = [m for m in messages if m.msg_id not in self._live_msg_ids]
            text = build_history_text(
                messages,
                self.settings.history_message_limit,
                self.settings.history_char_limit,
            )
            if text:
                await self.request_reply(HISTORY_REQUEST, {"text": text})
        except Exception as e:
            self.logger.warning(f"History injection for {self.conversation_id} failed: {e}")

    async def _handle_init_history(self, payload: Dict[str, Any]) -> bool:
        memory = await self._load_memory()
        await self.client.inject_conversation_history(payload.get("text", ""), memory)
        return True

    async def reload_context(self) -> None:
        """Re-inject the recent history after the bootstrap has completed."""
        await asyncio.shield(self._bootstrap)
        await self._inject_history(skip_live_turns=False)

    # === Turns ===
    async def send(self, request: SendMessageRequest) -> None:
        self._live_msg_ids.add(request.msg_id)
        await super().send(request)

    async def _dispatch(self, request: SendMessageRequest) -> None:
        try:
            await asyncio.shield(self._bootstrap)
        except asyncio.CancelledError:
            if not self._bootstrap.cancelled():
                raise
            await self._fail_send(request.msg_id, BootstrapError("task was stopped"))
        except Exception as e:
            await self._fail_send(request.msg_id, e)
        self._submit(request.input, request.msg_id, self.client.start_new_prompt())

    def _submit(
        self,
        query: Union[str, List[Dict[str, Any]]],
        msg_id: str,
        prompt_id: str,
        is_continuation: bool = False,
    ) -> asyncio.Task:
        return self._spawn(self._run_turn(query, msg_id, prompt_id, is_continuation, self._abort))

    async def _run_turn(
        self,
        query: Union[str, List[Dict[str, Any]]],
        msg_id: str,
        prompt_id: str,
        is_continuation: bool,
        abort: asyncio.Event,
    ) -> None:
        async with self._turn_lock:
            if abort.is_set():
                return
            await self.emit(EventType.START, "", msg_id)
            requests = []
            try:
                async for event in self.client.send_message_stream(query, abort, prompt_id):
                    if abort.is_set():
                        break
                    if event.type == "tool_call_request":
                        requests.append(event.data)
                        continue
                    await self.emit(EventType(event.type), event.data, msg_id)
                if requests and not abort.is_set():
                    await self.scheduler.schedule(requests, abort)
            except CancellationSignal:
                self.logger.info(f"Turn {msg_id} of {self.conversation_id} cancelled")
            except Exception as e:
                self.logger.exception(f"Turn {msg_id} of {self.conversation_id} failed")
                await self.emit(EventType.ERROR, str(e), msg_id)
            finally:
                await self.emit(EventType.FINISH, "", msg_id)

    # === Tool calls ===
    def _confirm_tool_call(self, call: ToolCall) -> asyncio.Future:
        return self.wait_for_confirmation(call.call_id)

    async def _on_tool_calls_update(self, calls: List[ToolCall], batch_id: str) -> None:
        displays = [ToolDisplay.from_call(call).model_dump(mode="json") for call in calls]
        await self.emit(EventType.TOOL_GROUP, displays, batch_id)

    async def _on_all_tool_calls_complete(self, calls: List[ToolCall]) -> None:
        """Refresh memory, then hand the results back to the model."""
        try:
            if any(c.modifies_workspace and c.status == ToolCallStatus.SUCCESS for c in calls):
                self.client.set_workspace_memory(await self._load_memory())

            cancelled = [c for c in calls if c.status == ToolCallStatus.CANCELLED]
            if cancelled:
                self.client.add_history([p for c in cancelled for p in c.response.response_parts])

            ready = [
                c for c in calls
                if c.status in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR)
                and not c.request.is_client_initiated
                and c.response is not None
                and c.response.response_parts
            ]
            if not ready:
                return

            parts = [part for c in ready for part in c.response.response_parts]
            if self._abort.is_set():
                # stopped: results are recorded but the model is not asked to answer
                self.client.add_history(parts)
                return
            self._submit(parts, uuid4().hex, ready[0].request.prompt_id, is_continuation=True)
        except Exception as e:
            self.logger.exception(f"Handling completed tools of {self.conversation_id} failed")
            await self.emit(EventType.ERROR, f"Failed to continue after tool calls: {e}", uuid4().hex)

    # === Stop / teardown ===
    async def _teardown(self) -> None:
        if not self._bootstrap.done():
            self._bootstrap.cancel()
        await self.client.close()

    async def wait_idle(self) -> None:
        """Wait for turns, tool batches and continuations to settle."""
        while True:
            await super().wait_idle()
            await self.scheduler.wait_idle()
            if not self._running:
                return
