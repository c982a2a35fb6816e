"""Tool call scheduling for the interactive task.

A batch holds every tool call requested by one model turn. Calls needing
approval wait on a confirmation slot; the rest run right away. Every state
change is reported through ``on_update`` and the finished batch through
``on_all_complete``.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Set
from uuid import uuid4

from ..exceptions import ToolExecutionError
from ..models.tool import (
    ConfirmationDecision,
    ToolCall,
    ToolCallRequest,
    ToolCallResponse,
    ToolCallStatus,
)
from ..utils.logger import get_app_logger
from .tools import ToolRegistry

logger = get_app_logger()

UpdateHandler = Callable[[List[ToolCall], str], Awaitable[None]]
CompleteHandler = Callable[[List[ToolCall]], Awaitable[None]]
ConfirmHandler = Callable[[ToolCall], "asyncio.Future[str]"]


def function_response(request: ToolCallRequest, response: dict) -> dict:
    return {"call_id": request.call_id, "name": request.name, "response": response}


def error_response(request: ToolCallRequest, message: str) -> ToolCallResponse:
    return ToolCallResponse(
        response_parts=[function_response(request, {"error": message})],
        result_display=message,
        error=message,
    )


class ToolScheduler:
    """Runs tool call batches and reports their progress."""

    def __init__(
        self,
        tools: ToolRegistry,
        on_update: UpdateHandler,
        on_all_complete: CompleteHandler,
        confirm_handler: ConfirmHandler,
    ):
        self.tools = tools
        self.on_update = on_update
        self.on_all_complete = on_all_complete
        self.confirm_handler = confirm_handler
        self._always_allowed: Set[str] = set()
        self._batches: Set[asyncio.Task] = set()

    async def schedule(self, requests: List[ToolCallRequest], cancel_event: asyncio.Event) -> str:
        """
        Start a batch.

        Args:
            requests: Tool calls of one model turn
            cancel_event: Set when the user stops the turn

        Returns:
            Batch id, used as the msg_id of the batch's tool_group events
        """
        batch_id = uuid4().hex
        calls = [self._validate(request) for request in requests]
        await self._notify(calls, batch_id)

        task = asyncio.create_task(self._run_batch(calls, batch_id, cancel_event))
        self._batches.add(task)
        task.add_done_callback(self._batches.discard)
        return batch_id

    def _validate(self, request: ToolCallRequest) -> ToolCall:
        tool = self.tools.get(request.name)
        if tool is None:
            return ToolCall(
                request=request,
                status=ToolCallStatus.ERROR,
                description=request.name,
                response=error_response(request, f'Tool "{request.name}" not found'),
            )
        return ToolCall(
            request=request,
            description=tool.describe(request.args),
            modifies_workspace=tool.modifies_workspace,
        )

    async def _notify(self, calls: List[ToolCall], batch_id: str) -> None:
        try:
            await self.on_update(calls, batch_id)
        except Exception:
            logger.exception(f"Tool update handler failed for batch {batch_id}")

    async def _run_batch(self, calls: List[ToolCall], batch_id: str, cancel_event: asyncio.Event) -> None:
        await asyncio.gather(*(
            self._run_call(call, calls, batch_id, cancel_event)
            for call in calls if not call.is_terminal
        ))
        try:
            await self.on_all_complete(calls)
        except Exception:
            logger.exception(f"Tool completion handler failed for batch {batch_id}")

    async def _run_call(
        self,
        call: ToolCall,
        batch: List[ToolCall],
        batch_id: str,
        cancel_event: asyncio.Event,
    ) -> None:
        tool = self.tools.get(call.request.name)
        try:
            if tool.requires_confirmation and tool.name not in self._always_allowed:
                call.status = ToolCallStatus.AWAITING_APPROVAL
                call.confirmation_details = tool.confirmation_details(call.request.args)
                # Slot registered before the UI can see the request
                decision_future = self.confirm_handler(call)
                await self._notify(batch, batch_id)

                decision = await self._wait_for_decision(decision_future, cancel_event)
                call.confirmation_details = None
                if decision is None or decision == ConfirmationDecision.CANCEL.value:
                    self._cancel(call, "User did not allow tool call")
                    return
                if decision == ConfirmationDecision.PROCEED_ALWAYS.value:
                    self._always_allowed.add(tool.name)

            if cancel_event.is_set():
                self._cancel(call, "Tool call cancelled by user")
                return

            call.status = ToolCallStatus.EXECUTING
            await self._notify(batch, batch_id)

            result = await tool.execute(call.call_id, call.request.args, cancel_event)
            if cancel_event.is_set():
                self._cancel(call, "Tool call cancelled by user")
                return
            call.status = ToolCallStatus.SUCCESS
            call.response = ToolCallResponse(
                response_parts=[function_response(call.request, {"output": result.llm_content})],
                result_display=result.display,
            )
        except ToolExecutionError as e:
            call.status = ToolCallStatus.ERROR
            call.response = error_response(call.request, e.message)
        except Exception as e:
            logger.exception(f"Tool {call.request.name} failed")
            call.status = ToolCallStatus.ERROR
            call.response = error_response(call.request, str(e))
        finally:
            if call.is_terminal:
                await self._notify(batch, batch_id)

    @staticmethod
    async def _wait_for_decision(future: "asyncio.Future[str]", cancel_event: asyncio.Event) -> Optional[str]:
        """Decision of the user, or None when the turn is stopped first."""
        cancel_wait = asyncio.create_task(cancel_event.wait())
        try:
            await asyncio.wait({future, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
        if future.done() and not future.cancelled():
            return future.result()
        future.cancel()
        return None

    @staticmethod
    def _cancel(call: ToolCall, message: str) -> None:
        call.status = ToolCallStatus.CANCELLED
        call.response = error_response(call.request, message)

    async def wait_idle(self) -> None:
        """Wait until no batch is running."""
        while self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)
