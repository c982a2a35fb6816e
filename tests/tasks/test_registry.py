"""Task registry tests."""

import asyncio

import pytest

from agentdesk.exceptions import ValidationError
from agentdesk.models.conversation import Conversation, UpdateConversationRequest
from agentdesk.tasks import CliAgentTask, InteractiveLlmTask, ProtocolAgentTask


def _cli_conversation(workspace, conversation_id="c1"):
    return Conversation(id=conversation_id, type="cli", name="cli", extra={"workspace": str(workspace)})


class TestTaskRegistry:
    """Tests for TaskRegistry."""

    class TestBuild:
        """SUT: TaskRegistry.build"""

        async def test_builtin_types(self, registry):
            assert sorted(registry.list_registered_types()) == ["acp", "cli", "llm"]
            assert registry.is_registered("LLM")

        async def test_builds_task_per_type(self, registry, workspace, model):
            llm = registry.build(Conversation(id="a", type="llm", name="a", model=model, extra={"workspace": str(workspace)}))
            acp = registry.build(Conversation(id="b", type="acp", name="b", extra={"workspace": str(workspace)}))
            cli = registry.build(_cli_conversation(workspace, "c"))
            assert isinstance(llm, InteractiveLlmTask)
            assert isinstance(acp, ProtocolAgentTask)
            assert isinstance(cli, CliAgentTask)
            assert len(registry.list_tasks()) == 3

        async def test_unregistered_type(self, registry, workspace):
            registry._handlers.pop("cli")
            with pytest.raises(ValidationError, match="Invalid conversation type"):
                registry.build(_cli_conversation(workspace))

        async def test_latest_build_wins(self, registry, workspace):
            first = registry.build(_cli_conversation(workspace))
            second = registry.build(_cli_conversation(workspace))
            assert first is not second
            assert registry.get_by_id("c1") is second

    class TestGetOrRebuild:
        """SUT: TaskRegistry.get_or_rebuild"""

        async def test_rebuilds_from_store(self, registry, store, workspace):
            await store.create(_cli_conversation(workspace))
            task = await registry.get_or_rebuild("c1")
            assert isinstance(task, CliAgentTask)
            assert registry.get_by_id("c1") is task

        async def test_missing_conversation(self, registry):
            assert await registry.get_or_rebuild("absent") is None

        async def test_concurrent_callers_share_one_rebuild(self, registry, store, workspace):
            await store.create(_cli_conversation(workspace))
            built = []
            original_build = registry.build

            def counting_build(conversation):
                task = original_build(conversation)
                built.append(task)
                return task

            registry.build = counting_build
            tasks = await asyncio.gather(*(registry.get_or_rebuild("c1") for _ in range(5)))

            assert len(built) == 1
            assert all(task is built[0] for task in tasks)

        async def test_rebuild_from_legacy_store(self, registry, legacy_store, workspace):
            await legacy_store.save_conversation(_cli_conversation(workspace, "old"))
            task = await registry.get_or_rebuild("old")
            assert task is not None and task.conversation_id == "old"

    class TestKill:
        """SUT: TaskRegistry.kill"""

        async def test_kill_unregisters(self, registry, workspace):
            registry.build(_cli_conversation(workspace))
            assert await registry.kill("c1")
            assert registry.get_by_id("c1") is None
            assert await registry.kill("c1") is False

        async def test_model_change_during_rebuild(self, registry, store, service, workspace, model):
            await store.create(Conversation(id="c1", type="llm", name="llm", model=model, extra={"workspace": str(workspace)}))
            read_started = asyncio.Event()
            release = asyncio.Event()
            original_get = store.get
            reads = []

            async def slow_first_get(conversation_id):
                reads.append(conversation_id)
                conversation = await original_get(conversation_id)
                if len(reads) == 1:
                    read_started.set()
                    await release.wait()
                return conversation

            store.get = slow_first_get
            rebuild = asyncio.create_task(registry.get_or_rebuild("c1"))
            await read_started.wait()

            new_model = model.model_copy(update={"use_model": "gpt-new"})
            assert await service.update("c1", UpdateConversationRequest(model=new_model))
            release.set()
            task = await rebuild

            assert task.model.use_model == "gpt-new"
            assert registry.get_by_id("c1") is task
