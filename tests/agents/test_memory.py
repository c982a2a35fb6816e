"""Workspace memory and history rendering tests."""

from agentdesk.agents.memory import build_history_text, load_workspace_memory
from agentdesk.models.message import Message, MessagePosition


def _text(i, position=MessagePosition.RIGHT, text=None):
    return Message(
        id=f"m{i}",
        conversation_id="c1",
        type="text",
        position=position,
        content={"content": text if text is not None else f"message {i}"},
    )


class TestBuildHistoryText:
    """SUT: build_history_text"""

    def test_roles_and_order(self):
        messages = [_text(1), _text(2, MessagePosition.LEFT)]
        assert build_history_text(messages) == "User: message 1\nAssistant: message 2"

    def test_only_text_messages(self):
        tips = Message(id="t", conversation_id="c1", type="tips", content={"content": "boom"})
        assert build_history_text([tips, _text(1)]) == "User: message 1"

    def test_message_limit(self):
        """Only the 20 most recent text messages are rendered."""
        messages = [_text(i) for i in range(30)]
        text = build_history_text(messages)
        assert text.splitlines()[0] == "User: message 10"
        assert len(text.splitlines()) == 20

    def test_char_limit_keeps_tail(self):
        messages = [_text(1, text="a" * 3000), _text(2, text="b" * 3000)]
        text = build_history_text(messages)
        assert len(text) == 4000
        assert text.endswith("b" * 3000)

    def test_empty(self):
        assert build_history_text([]) == ""


class TestLoadWorkspaceMemory:
    """SUT: load_workspace_memory"""

    async def test_collects_nested_context_files(self, workspace):
        (workspace / "AGENTS.md").write_text("root rules", encoding="utf-8")
        (workspace / "sub").mkdir()
        (workspace / "sub" / "AGENTS.md").write_text("sub rules", encoding="utf-8")
        (workspace / "node_modules").mkdir()
        (workspace / "node_modules" / "AGENTS.md").write_text("ignored", encoding="utf-8")

        memory = await load_workspace_memory(str(workspace), ["AGENTS.md"])

        assert "--- Context from: AGENTS.md ---\nroot rules" in memory
        assert "sub rules" in memory
        assert "ignored" not in memory

    async def test_missing_workspace(self, tmp_path):
        assert await load_workspace_memory(str(tmp_path / "absent"), ["AGENTS.md"]) == ""
