"""Tool scheduler tests."""

import asyncio
from typing import Dict, List

import pytest

from agentdesk.agents.scheduler import ToolScheduler
from agentdesk.agents.tools import BaseTool, ToolRegistry, ToolResult
from agentdesk.models.tool import ToolCall, ToolCallRequest, ToolCallStatus


class EchoTool(BaseTool):
    name = "echo"
    parameters = {"type": "object", "properties": {}}

    async def _run(self, args, cancel_event):
        return ToolResult(llm_content=str(args.get("text", "")), display="echoed")


class GuardedTool(EchoTool):
    name = "guarded"
    requires_confirmation = True
    modifies_workspace = True


class BrokenTool(EchoTool):
    name = "broken"

    async def _run(self, args, cancel_event):
        raise ValueError("disk on fire")


class Harness:
    """Collects scheduler callbacks and answers confirmations on demand."""

    def __init__(self, workspace):
        self.updates: List[List[ToolCallStatus]] = []
        self.completed: asyncio.Future = asyncio.get_running_loop().create_future()
        self.slots: Dict[str, asyncio.Future] = {}
        registry = ToolRegistry([EchoTool(workspace), GuardedTool(workspace), BrokenTool(workspace)])
        self.scheduler = ToolScheduler(registry, self.on_update, self.on_complete, self.confirm)

    async def on_update(self, calls: List[ToolCall], batch_id: str):
        self.updates.append([call.status for call in calls])

    async def on_complete(self, calls: List[ToolCall]):
        self.completed.set_result(calls)

    def confirm(self, call: ToolCall) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self.slots[call.call_id] = future
        return future

    async def wait_for_slot(self, call_id: str) -> asyncio.Future:
        for _ in range(100):
            if call_id in self.slots:
                return self.slots[call_id]
            await asyncio.sleep(0.01)
        raise AssertionError(f"no confirmation slot for {call_id}")


def _request(call_id, name, **args):
    return ToolCallRequest(call_id=call_id, name=name, args=args, prompt_id="p1")


@pytest.fixture
async def harness(workspace):
    return Harness(str(workspace))


class TestToolScheduler:
    """Tests for ToolScheduler."""

    async def test_runs_unconfirmed_tool(self, harness):
        await harness.scheduler.schedule([_request("a", "echo", text="hi")], asyncio.Event())
        calls = await asyncio.wait_for(harness.completed, 2)

        assert calls[0].status == ToolCallStatus.SUCCESS
        assert calls[0].response.response_parts == [
            {"call_id": "a", "name": "echo", "response": {"output": "hi"}}
        ]
        assert harness.updates[0] == [ToolCallStatus.PENDING]
        assert harness.updates[-1] == [ToolCallStatus.SUCCESS]

    async def test_unknown_tool_errors_immediately(self, harness):
        await harness.scheduler.schedule([_request("a", "nope")], asyncio.Event())
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.ERROR
        assert calls[0].response.error == 'Tool "nope" not found'

    async def test_tool_failure_is_error_not_exception(self, harness):
        await harness.scheduler.schedule([_request("a", "broken")], asyncio.Event())
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.ERROR
        assert calls[0].response.error == "disk on fire"

    async def test_confirmation_approved(self, harness):
        await harness.scheduler.schedule([_request("a", "guarded", text="x")], asyncio.Event())
        slot = await harness.wait_for_slot("a")
        assert ToolCallStatus.AWAITING_APPROVAL in harness.updates[-1]

        slot.set_result("proceed_once")
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.SUCCESS

    async def test_confirmation_rejected(self, harness):
        await harness.scheduler.schedule([_request("a", "guarded")], asyncio.Event())
        (await harness.wait_for_slot("a")).set_result("cancel")
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.CANCELLED
        assert calls[0].response.error == "User did not allow tool call"

    async def test_stop_while_awaiting_approval(self, harness):
        cancel = asyncio.Event()
        await harness.scheduler.schedule([_request("a", "guarded")], cancel)
        slot = await harness.wait_for_slot("a")

        cancel.set()
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.CANCELLED
        assert slot.cancelled()

    async def test_proceed_always_skips_later_confirmations(self, harness):
        await harness.scheduler.schedule([_request("a", "guarded")], asyncio.Event())
        (await harness.wait_for_slot("a")).set_result("proceed_always")
        await asyncio.wait_for(harness.completed, 2)

        harness.completed = asyncio.get_running_loop().create_future()
        await harness.scheduler.schedule([_request("b", "guarded")], asyncio.Event())
        calls = await asyncio.wait_for(harness.completed, 2)
        assert calls[0].status == ToolCallStatus.SUCCESS
        assert "b" not in harness.slots

    async def test_wait_idle(self, harness):
        await harness.scheduler.schedule([_request("a", "echo")], asyncio.Event())
        await harness.scheduler.wait_idle()
        assert harness.completed.done()
