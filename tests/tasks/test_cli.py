"""CLI agent task tests, driven by a fake CLI script."""

import json
import stat

import pytest

from agentdesk.exceptions import BootstrapError
from agentdesk.models.conversation import Conversation, SendMessageRequest, TaskStatus

CODEX_LINES = [
    {"type": "thread.started", "thread_id": "thread-42"},
    {"type": "turn.started"},
    {"type": "item.completed", "item": {"id": "r1", "type": "reasoning", "text": "planning"}},
    {"type": "item.started", "item": {"id": "cmd1", "type": "command_execution", "command": "ls", "status": "in_progress"}},
    {"type": "item.completed", "item": {"id": "cmd1", "type": "command_execution", "command": "ls",
                                        "aggregated_output": "a.txt\n", "status": "completed"}},
    {"type": "item.completed", "item": {"id": "m1", "type": "agent_message", "text": "First part."}},
    {"type": "item.completed", "item": {"id": "m2", "type": "agent_message", "text": "Second part."}},
    {"type": "turn.completed", "usage": {}},
]


def _write_cli(path, lines, exit_code=0, stderr=""):
    """Fake CLI: records its argv in the cwd, prints the JSON lines, exits."""
    body = "\n".join(json.dumps(line) for line in lines)
    path.write_text(
        "#!/bin/sh\n"
        'printf "%s\\n" "$@" > argv.log\n'
        "cat <<'JSONLINES'\n"
        f"{body}\n"
        "JSONLINES\n"
        + (f"echo '{stderr}' >&2\n" if stderr else "")
        + f"exit {exit_code}\n",
        encoding="utf-8",
    )
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


@pytest.fixture
def cli_script(tmp_path):
    return tmp_path / "fake-codex"


@pytest.fixture
def use_cli(settings, cli_script):
    settings.cli_binary = str(cli_script)
    settings.cli_args = "exec --json"
    return cli_script


@pytest.fixture
async def cli_task(use_cli, registry, store, workspace):
    conversation = Conversation(id="c1", type="cli", name="cli", extra={"workspace": str(workspace)})
    await store.create(conversation)
    return registry.build(conversation)


class TestCliAgentTask:
    """Tests for CliAgentTask."""

    async def test_turn_converted_to_events(self, cli_task, cli_script, store, workspace):
        _write_cli(cli_script, CODEX_LINES)

        await cli_task.send(SendMessageRequest(input="list files", msg_id="m1"))
        await cli_task.wait_idle()

        assert cli_task.status == TaskStatus.FINISHED
        assert (workspace / "argv.log").read_text(encoding="utf-8").split("\n")[:3] == ["exec", "--json", "list files"]

        messages = {m.id: m for m in await store.get_messages("c1")}
        assert messages["m1-reply"].text == "First part.\n\nSecond part."
        tool = messages["cmd1"].content["tools"][0]
        assert tool["name"] == "shell"
        assert tool["status"] == "success"
        assert tool["result_display"] == "a.txt\n"

    async def test_session_stored_and_resumed(self, cli_task, cli_script, store, workspace):
        _write_cli(cli_script, CODEX_LINES)
        await cli_task.send(SendMessageRequest(input="one", msg_id="m1"))
        await cli_task.wait_idle()

        stored = await store.get("c1")
        assert stored.extra["session_id"] == "thread-42"

        await cli_task.send(SendMessageRequest(input="two", msg_id="m2"))
        await cli_task.wait_idle()
        argv = (workspace / "argv.log").read_text(encoding="utf-8").split("\n")
        assert argv[:5] == ["exec", "--json", "resume", "thread-42", "two"]

    async def test_rebuilt_task_resumes_stored_session(self, use_cli, registry, store, workspace):
        conversation = Conversation(
            id="c2", type="cli", name="cli",
            extra={"workspace": str(workspace), "session_id": "thread-7"},
        )
        await store.create(conversation)
        task = await registry.get_or_rebuild("c2")
        assert task._build_command("hi")[-3:] == ["resume", "thread-7", "hi"]

    async def test_stream_json_format(self, cli_task, cli_script, store):
        _write_cli(cli_script, [
            {"type": "system", "subtype": "init", "session_id": "sess-9"},
            {"type": "assistant", "message": {"content": [
                {"type": "text", "text": "Looking."},
                {"type": "tool_use", "id": "tu1", "name": "Bash", "input": {"command": "ls"}},
            ]}},
            {"type": "user", "message": {"content": [
                {"type": "tool_result", "tool_use_id": "tu1", "content": "a.txt"},
            ]}},
            {"type": "result", "session_id": "sess-9", "is_error": False, "result": "done"},
        ])
        await cli_task.send(SendMessageRequest(input="look", msg_id="m1"))
        await cli_task.wait_idle()

        messages = {m.id: m for m in await store.get_messages("c1")}
        assert messages["m1-reply"].text == "Looking."
        tool = messages["tu1"].content["tools"][0]
        assert (tool["name"], tool["status"], tool["result_display"]) == ("Bash", "success", "a.txt")
        assert cli_task.session_id == "sess-9"

    async def test_nonzero_exit_reported(self, cli_task, cli_script, store):
        _write_cli(cli_script, [{"type": "turn.failed", "error": {"message": "quota exceeded"}}],
                   exit_code=2, stderr="fatal")
        await cli_task.send(SendMessageRequest(input="x", msg_id="m1"))
        await cli_task.wait_idle()

        assert cli_task.status == TaskStatus.ERROR
        tips = [m.content["content"] for m in await store.get_messages("c1") if m.type == "tips"]
        assert tips[0] == "quota exceeded"
        assert "exited with code 2" in tips[1]
        assert "fatal" in tips[1]

    async def test_missing_binary(self, settings, registry, store, workspace, tmp_path):
        settings.cli_binary = str(tmp_path / "not-installed")
        conversation = Conversation(id="c3", type="cli", name="cli", extra={"workspace": str(workspace)})
        await store.create(conversation)
        task = registry.build(conversation)

        with pytest.raises(BootstrapError, match="not found"):
            await task.send(SendMessageRequest(input="x", msg_id="m1"))
        assert [m.type for m in await store.get_messages("c3")] == ["text", "tips"]

    async def test_missing_workspace(self, use_cli, registry, store, tmp_path):
        conversation = Conversation(id="c4", type="cli", name="cli", extra={"workspace": str(tmp_path / "gone")})
        await store.create(conversation)
        task = registry.build(conversation)
        with pytest.raises(BootstrapError, match="workspace does not exist"):
            await task.send(SendMessageRequest(input="x", msg_id="m1"))

    async def test_output_line_over_64k(self, cli_task, cli_script, store):
        text = "x" * 100000
        _write_cli(cli_script, [{"type": "item.completed", "item": {"id": "m1", "type": "agent_message", "text": text}}])
        await cli_task.send(SendMessageRequest(input="x", msg_id="m1"))
        await cli_task.wait_idle()

        assert cli_task.status == TaskStatus.FINISHED
        assert {m.id: m for m in await store.get_messages("c1")}["m1-reply"].text == text

    async def test_line_over_stream_limit_fails_turn(self, cli_task, cli_script, settings, store):
        settings.stream_limit = 4096
        _write_cli(cli_script, [
            {"type": "item.completed", "item": {"id": "m1", "type": "agent_message", "text": "x" * 100000}},
        ])
        await cli_task.send(SendMessageRequest(input="x", msg_id="m1"))
        await cli_task.wait_idle()

        assert cli_task.status == TaskStatus.ERROR
        messages = await store.get_messages("c1")
        assert "m1-reply" not in {m.id for m in messages}
        assert [m.type for m in messages] == ["text", "tips"]

        settings.stream_limit = 64 * 1024 * 1024
        await cli_task.send(SendMessageRequest(input="again", msg_id="m2"))
        await cli_task.wait_idle()
        assert {m.id: m for m in await store.get_messages("c1")}["m2-reply"].text == "x" * 100000
