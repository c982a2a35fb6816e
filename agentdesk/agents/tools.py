"""Built-in workspace tools the interactive agent can call.

Every path is resolved against the conversation workspace and rejected
when it escapes it.
"""

import asyncio
import fnmatch
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import ToolExecutionError

MAX_READ_CHARS = 200_000
MAX_LIST_RESULTS = 500
MAX_SHELL_OUTPUT = 50_000


@dataclass
class ToolResult:
    """Result of one tool execution."""

    llm_content: str
    display: str


def _is_within_root(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def resolve_workspace_path(raw: str, root: Path) -> Path:
    """
    Resolve a tool supplied path inside the workspace.

    Raises:
        ValueError: If the path is empty or points outside the workspace
    """
    text = (raw or "").strip()
    if not text:
        raise ValueError("path is required")
    candidate = Path(text).expanduser()
    resolved = candidate.resolve() if candidate.is_absolute() else (root / candidate).resolve()
    if not _is_within_root(resolved, root):
        raise ValueError(f"path is outside the workspace: {text}")
    return resolved


class BaseTool(ABC):
    """A tool exposed to the model as a function."""

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {}
    requires_confirmation: bool = False
    modifies_workspace: bool = False

    def __init__(self, workspace: str):
        self.root = Path(workspace).resolve()

    def describe(self, args: Dict[str, Any]) -> str:
        return self.name

    def confirmation_details(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": "exec", "title": f"Allow {self.name}?", "prompt": self.describe(args)}

    def schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def execute(self, call_id: str, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        """
        Run the tool.

        Raises:
            ToolExecutionError: If the tool cannot complete
        """
        try:
            return await self._run(args, cancel_event)
        except ToolExecutionError:
            raise
        except (OSError, ValueError) as e:
            raise ToolExecutionError(call_id, str(e)) from e

    @abstractmethod
    async def _run(self, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        pass


class ReadFileTool(BaseTool):
    name = "read_file"
    description = "Read a text file from the workspace."
    parameters = {
        "type": "object",
        "properties": {"path": {"type": "string", "description": "File path relative to the workspace"}},
        "required": ["path"],
    }

    def describe(self, args: Dict[str, Any]) -> str:
        return f"Read {args.get('path', '')}"

    async def _run(self, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        path = resolve_workspace_path(str(args.get("path", "")), self.root)
        if not path.is_file():
            raise ValueError(f"not a file: {args.get('path')}")
        text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        if len(text) > MAX_READ_CHARS:
            text = text[:MAX_READ_CHARS] + "\n... truncated ..."
        return ToolResult(llm_content=text, display=f"Read {len(text)} characters")


class ListDirectoryTool(BaseTool):
    name = "list_directory"
    description = "List files under a workspace directory, optionally filtered by a glob pattern."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory relative to the workspace"},
            "pattern": {"type": "string", "description": "Glob pattern, default *"},
        },
        "required": [],
    }

    def describe(self, args: Dict[str, Any]) -> str:
        return f"List {args.get('path') or '.'}"

    def _list(self, base: Path, pattern: str) -> List[str]:
        items: List[str] = []
        for path in sorted(base.rglob("*")):
            if any(part.startswith(".") for part in path.relative_to(base).parts):
                continue
            if path.is_file() and fnmatch.fnmatch(path.name, pattern):
                items.append(str(path.relative_to(self.root)))
                if len(items) >= MAX_LIST_RESULTS:
                    items.append("... truncated ...")
                    break
        return items

    async def _run(self, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        base = resolve_workspace_path(str(args.get("path") or "."), self.root)
        if not base.is_dir():
            raise ValueError(f"not a directory: {args.get('path')}")
        pattern = str(args.get("pattern") or "*").strip() or "*"
        items = await asyncio.to_thread(self._list, base, pattern)
        return ToolResult(llm_content="\n".join(items), display=f"Found {len(items)} file(s)")


class WriteFileTool(BaseTool):
    name = "write_file"
    description = "Create or overwrite a text file in the workspace."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "File path relative to the workspace"},
            "content": {"type": "string", "description": "Full new file content"},
        },
        "required": ["path", "content"],
    }
    requires_confirmation = True
    modifies_workspace = True

    def describe(self, args: Dict[str, Any]) -> str:
        return f"Write {args.get('path', '')}"

    def confirmation_details(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "edit",
            "title": f"Write {args.get('path', '')}",
            "file_name": args.get("path", ""),
            "new_content": args.get("content", ""),
        }

    async def _run(self, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        path = resolve_workspace_path(str(args.get("path", "")), self.root)
        content = str(args.get("content", ""))

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return ToolResult(
            llm_content=f"Wrote {len(content)} characters to {args.get('path')}",
            display=f"Wrote {path.name}",
        )


class RunShellCommandTool(BaseTool):
    name = "run_shell_command"
    description = "Run a shell command in the workspace and return its output."
    parameters = {
        "type": "object",
        "properties": {"command": {"type": "string", "description": "Command line to execute"}},
        "required": ["command"],
    }
    requires_confirmation = True
    modifies_workspace = True

    def describe(self, args: Dict[str, Any]) -> str:
        return str(args.get("command", ""))

    def confirmation_details(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "exec",
            "title": "Run shell command",
            "command": args.get("command", ""),
            "root_command": str(args.get("command", "")).split(" ")[0],
        }

    async def _run(self, args: Dict[str, Any], cancel_event: asyncio.Event) -> ToolResult:
        command = str(args.get("command", "")).strip()
        if not command:
            raise ValueError("command is required")
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(self.root),
        )
        stdout, _ = await process.communicate()
        output = stdout.decode(errors="replace")
        if len(output) > MAX_SHELL_OUTPUT:
            output = output[-MAX_SHELL_OUTPUT:]
        summary = f"Exit code: {process.returncode}\n{output}"
        return ToolResult(llm_content=summary, display=output or f"(exit code {process.returncode})")


class ToolRegistry:
    """Tools available to one conversation."""

    def __init__(self, tools: Optional[List[BaseTool]] = None):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]


def build_workspace_tools(workspace: str) -> ToolRegistry:
    """Default tool set of an interactive conversation."""
    return ToolRegistry([
        ReadFileTool(workspace),
        ListDirectoryTool(workspace),
        WriteFileTool(workspace),
        RunShellCommandTool(workspace),
    ])
