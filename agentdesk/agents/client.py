"""Model clients used by the interactive task.

``AgentClient`` owns the model-side conversation state (chat history, user
memory, prompt ids). ``OpenAICompatibleClient`` streams chat completions
from any OpenAI compatible endpoint over httpx.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from uuid import uuid4

import httpx

from ..exceptions import BootstrapError
from ..models.conversation import ModelDescriptor
from ..models.tool import ToolCallRequest
from ..utils.logger import get_app_logger

logger = get_app_logger()

HISTORY_PREFIX_HEADER = "Conversation history (recent):\n"
RECENT_CHAT_HEADER = "\n\n[Recent Chat]\n"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful coding assistant working inside the user's workspace. "
    "Use the available tools to inspect and change files when needed."
)

# Platforms that serve models without an API key
KEYLESS_PLATFORMS = {"ollama", "local"}

# A user query is plain text; a continuation carries function responses
Query = Union[str, List[Dict[str, Any]]]


@dataclass
class AgentEvent:
    """One item of a model stream.

    ``type`` is ``thought``, ``content`` or ``tool_call_request``.
    """

    type: str
    data: Any


class AgentClient(ABC):
    """Base class for model clients."""

    def __init__(self):
        self.session_id = uuid4().hex
        self.config: Dict[str, Any] = {}
        self._prompt_count = 0
        self._user_memory = ""
        self._recent_chat = ""
        self._history_prefix: Optional[str] = None
        self._history_prefix_used = False

    @abstractmethod
    async def start(self, config: Dict[str, Any]) -> None:
        """
        Initialise the client.

        Raises:
            BootstrapError: On missing credentials or invalid configuration
        """
        pass

    @abstractmethod
    def send_message_stream(
        self,
        query: Query,
        cancel_event: asyncio.Event,
        prompt_id: str,
    ) -> AsyncIterator[AgentEvent]:
        """Stream the model's answer to a query."""
        pass

    @abstractmethod
    def add_history(self, parts: List[Dict[str, Any]]) -> None:
        """Record function responses without asking the model to answer."""
        pass

    async def close(self) -> None:
        pass

    def start_new_prompt(self) -> str:
        """Allocate the prompt id of a new user turn."""
        self._prompt_count += 1
        return f"{self.session_id}########{self._prompt_count}"

    def get_user_memory(self) -> str:
        return self._user_memory

    def set_user_memory(self, memory: str) -> None:
        self._user_memory = memory

    def set_workspace_memory(self, memory: str) -> None:
        """Replace the workspace part of the memory, keeping the injected chat."""
        if self._recent_chat:
            self.set_user_memory(f"{memory}{RECENT_CHAT_HEADER}{self._recent_chat}")
        else:
            self.set_user_memory(memory)

    async def inject_conversation_history(self, text: str, workspace_memory: str = "") -> None:
        """
        Seed the client with the recent conversation.

        The text is prepended once to the next user message and kept in the
        user memory for the whole session.
        """
        if not text:
            return
        self._history_prefix = f"{HISTORY_PREFIX_HEADER}{text}\n\n"
        self._history_prefix_used = False
        self._recent_chat = text
        self.set_workspace_memory(workspace_memory)

    def apply_history_prefix(self, text: str) -> str:
        if self._history_prefix and not self._history_prefix_used:
            self._history_prefix_used = True
            return f"{self._history_prefix}{text}"
        return text


class OpenAICompatibleClient(AgentClient):
    """Streaming chat completions client with function calling."""

    def __init__(
        self,
        model: ModelDescriptor,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._messages: List[Dict[str, Any]] = []
        self._tools: List[Dict[str, Any]] = []

    async def start(self, config: Dict[str, Any]) -> None:
        if not self.model.api_key and self.model.platform not in KEYLESS_PLATFORMS:
            raise BootstrapError(f"API key not configured for model provider {self.model.name or self.model.platform}")
        if not self.model.use_model:
            raise BootstrapError("No model selected")

        self.config = dict(config)
        self._tools = list(config.get("tools") or [])
        headers = {"Content-Type": "application/json"}
        if self.model.api_key:
            headers["Authorization"] = f"Bearer {self.model.api_key}"
        self._http = httpx.AsyncClient(
            base_url=self.model.base_url.rstrip("/"),
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.info(f"Model client started: {self.model.platform}/{self.model.use_model}")

    def _system_prompt(self) -> str:
        memory = self.get_user_memory().strip()
        if not memory:
            return DEFAULT_SYSTEM_PROMPT
        return f"{DEFAULT_SYSTEM_PROMPT}\n\n{memory}"

    def add_history(self, parts: List[Dict[str, Any]]) -> None:
        for part in parts:
            self._messages.append({
                "role": "tool",
                "tool_call_id": part["call_id"],
                "content": json.dumps(part.get("response", {}), ensure_ascii=False),
            })

    def _build_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model.use_model,
            "messages": [{"role": "system", "content": self._system_prompt()}, *self._messages],
            "stream": True,
        }
        if self._tools:
            payload["tools"] = self._tools
            payload["tool_choice"] = "auto"
        return payload

    async def send_message_stream(
        self,
        query: Query,
        cancel_event: asyncio.Event,
        prompt_id: str,
    ) -> AsyncIterator[AgentEvent]:
        if self._http is None:
            raise BootstrapError("Model client is not started")

        user_turn = isinstance(query, str)
        prefix_used = self._history_prefix_used
        if user_turn:
            self._messages.append({"role": "user", "content": self.apply_history_prefix(query)})
        else:
            self.add_history(query)

        content = ""
        tool_calls: Dict[int, Dict[str, Any]] = {}

        try:
            async with self._http.stream("POST", "/chat/completions", json=self._build_payload()) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="replace")
                    raise RuntimeError(f"Model API error {resp.status_code}: {body}")

                async for line in resp.aiter_lines():
                    if cancel_event.is_set():
                        break
                    data_str = line[5:].strip() if line.startswith("data:") else line.strip()
                    if not data_str or data_str == "[DONE]":
                        continue
                    try:
                        chunk = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue

                    for choice in chunk.get("choices") or []:
                        delta = choice.get("delta") or {}
                        reasoning = delta.get("reasoning_content")
                        if reasoning:
                            yield AgentEvent("thought", reasoning)
                        text = delta.get("content")
                        if text:
                            content += text
                            yield AgentEvent("content", text)
                        for raw in delta.get("tool_calls") or []:
                            slot = tool_calls.setdefault(raw.get("index", 0), {"id": "", "name": "", "arguments": ""})
                            function = raw.get("function") or {}
                            slot["id"] = raw.get("id") or slot["id"]
                            slot["name"] = function.get("name") or slot["name"]
                            slot["arguments"] += function.get("arguments") or ""
        except Exception:
            # A failed user turn leaves no unanswered user message behind;
            # function responses stay since their tool_calls are recorded.
            if user_turn:
                self._messages.pop()
                self._history_prefix_used = prefix_used
            raise

        # Tool calls of an interrupted stream are dropped so every recorded
        # call id has a matching response.
        if cancel_event.is_set():
            tool_calls = {}

        assistant: Dict[str, Any] = {"role": "assistant", "content": content or None}
        if tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": slot["id"] or f"call_{uuid4().hex[:12]}",
                    "type": "function",
                    "function": {"name": slot["name"], "arguments": slot["arguments"] or "{}"},
                }
                for _, slot in sorted(tool_calls.items())
            ]
        self._messages.append(assistant)

        for call in assistant.get("tool_calls", []):
            try:
                args = json.loads(call["function"]["arguments"])
            except json.JSONDecodeError:
                args = {}
            yield AgentEvent(
                "tool_call_request",
                ToolCallRequest(
                    call_id=call["id"],
                    name=call["function"]["name"],
                    args=args if isinstance(args, dict) else {},
                    prompt_id=prompt_id,
                ),
            )

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
