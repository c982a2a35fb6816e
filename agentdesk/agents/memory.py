"""Workspace long-term memory: context files found in the workspace tree."""

import asyncio
import os
from pathlib import Path
from typing import List

from ..models.message import Message, MessagePosition

IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}
MAX_CONTEXT_FILES = 50


def _find_context_files(workspace: Path, file_names: List[str]) -> List[Path]:
    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(workspace):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS and not d.startswith("."))
        for name in file_names:
            if name in filenames:
                found.append(Path(dirpath) / name)
                if len(found) >= MAX_CONTEXT_FILES:
                    return found
    return found


def _read_memory(workspace: str, file_names: List[str]) -> str:
    root = Path(workspace)
    if not root.is_dir():
        return ""
    blocks = []
    for path in _find_context_files(root, file_names):
        try:
            content = path.read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            continue
        if not content:
            continue
        relative = path.relative_to(root)
        blocks.append(
            f"--- Context from: {relative} ---\n{content}\n--- End of Context from: {relative} ---"
        )
    return "\n\n".join(blocks)


async def load_workspace_memory(workspace: str, file_names: List[str]) -> str:
    """
    Concatenate every context file of the workspace tree.

    Args:
        workspace: Workspace root
        file_names: Context file names to look for (e.g. AGENTS.md)

    Returns:
        Memory text, empty when nothing is found
    """
    return await asyncio.to_thread(_read_memory, workspace, file_names)


def build_history_text(messages: List[Message], message_limit: int = 20, char_limit: int = 4000) -> str:
    """
    Render the recent text messages of a conversation for re-injection.

    Only the last ``message_limit`` text messages are kept and the result is
    cut to its last ``char_limit`` characters.
    """
    text_messages = [m for m in messages if m.type == "text"][-message_limit:] if message_limit > 0 else []
    lines = [
        f"{'User' if m.position == MessagePosition.RIGHT else 'Assistant'}: {m.text}"
        for m in text_messages
    ]
    text = "\n".join(lines)
    if char_limit <= 0:
        return ""
    return text[-char_limit:]
