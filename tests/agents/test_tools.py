"""Built-in tool tests."""

import asyncio

import pytest

from agentdesk.agents.tools import (
    ListDirectoryTool,
    ReadFileTool,
    RunShellCommandTool,
    WriteFileTool,
    build_workspace_tools,
    resolve_workspace_path,
)
from agentdesk.exceptions import ToolExecutionError


class TestResolveWorkspacePath:
    """SUT: resolve_workspace_path"""

    def test_relative_path(self, workspace):
        assert resolve_workspace_path("a/b.txt", workspace) == (workspace / "a" / "b.txt").resolve()

    def test_escape_rejected(self, workspace):
        with pytest.raises(ValueError, match="outside the workspace"):
            resolve_workspace_path("../secret", workspace)

    def test_empty_rejected(self, workspace):
        with pytest.raises(ValueError):
            resolve_workspace_path("  ", workspace)


class TestTools:
    """Tests for the tool implementations."""

    async def test_read_file(self, workspace):
        (workspace / "a.txt").write_text("hello", encoding="utf-8")
        result = await ReadFileTool(str(workspace)).execute("c1", {"path": "a.txt"}, asyncio.Event())
        assert result.llm_content == "hello"

    async def test_read_missing_file_raises_tool_error(self, workspace):
        with pytest.raises(ToolExecutionError) as exc_info:
            await ReadFileTool(str(workspace)).execute("c1", {"path": "absent.txt"}, asyncio.Event())
        assert exc_info.value.call_id == "c1"

    async def test_write_file_creates_parents(self, workspace):
        tool = WriteFileTool(str(workspace))
        await tool.execute("c1", {"path": "src/x.py", "content": "print(1)"}, asyncio.Event())
        assert (workspace / "src" / "x.py").read_text(encoding="utf-8") == "print(1)"
        assert tool.requires_confirmation and tool.modifies_workspace

    async def test_list_directory_skips_hidden(self, workspace):
        (workspace / "a.py").write_text("", encoding="utf-8")
        (workspace / "b.txt").write_text("", encoding="utf-8")
        (workspace / ".git").mkdir()
        (workspace / ".git" / "c.py").write_text("", encoding="utf-8")

        result = await ListDirectoryTool(str(workspace)).execute("c1", {"pattern": "*.py"}, asyncio.Event())
        assert result.llm_content == "a.py"

    async def test_shell_command_runs_in_workspace(self, workspace):
        (workspace / "marker").write_text("", encoding="utf-8")
        result = await RunShellCommandTool(str(workspace)).execute("c1", {"command": "ls"}, asyncio.Event())
        assert result.llm_content.startswith("Exit code: 0")
        assert "marker" in result.llm_content


class TestToolRegistry:
    """SUT: ToolRegistry"""

    def test_default_tools(self, workspace):
        registry = build_workspace_tools(str(workspace))
        assert registry.names() == ["read_file", "list_directory", "write_file", "run_shell_command"]
        schema = registry.schemas()[0]
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "read_file"
        assert registry.get("nope") is None
