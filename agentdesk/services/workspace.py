"""Workspace directory helpers."""

import asyncio
import shutil
from pathlib import Path
from typing import List

from ..utils.logger import get_app_logger

logger = get_app_logger()


def create_workspace(data_dir: str, conversation_id: str) -> str:
    """Create the default workspace of a conversation under the data directory."""
    path = (Path(data_dir) / "workspaces" / conversation_id).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return str(path)


def _copy_files(directory: str, files: List[str]) -> List[str]:
    target = Path(directory)
    target.mkdir(parents=True, exist_ok=True)
    copied = []
    for file in files:
        source = Path(file).expanduser()
        if not source.exists():
            logger.warning(f"Skipping missing file {file}")
            continue
        destination = target / source.name
        if source.resolve() == destination.resolve():
            continue
        if source.is_dir():
            shutil.copytree(source, destination, dirs_exist_ok=True)
        else:
            shutil.copy2(source, destination)
        copied.append(str(destination))
    return copied


async def copy_files_to_directory(directory: str, files: List[str]) -> List[str]:
    """
    Copy files (or directories) into a workspace.

    Args:
        directory: Destination directory
        files: Source paths; missing ones are skipped

    Returns:
        Destination paths written
    """
    if not files:
        return []
    return await asyncio.to_thread(_copy_files, directory, files)
