"""Stored user configuration (key/value JSON document)."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles

from ..utils.logger import get_app_logger


class ProcessConfig:
    """
    Key/value configuration persisted as one JSON document.

    Keys used by the tasks:
        llm.config: dict merged into the agent client configuration
        tools.imageGenerationModel: secondary capability model, used only when "switch" is true
        mcp.config: list of tool provider descriptors
    """

    def __init__(self, path: str = "./data/process_config.json"):
        self.path = Path(path)
        self.logger = get_app_logger()
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            async with aiofiles.open(self.path, mode="r", encoding="utf-8") as f:
                raw = await f.read()
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to read process config {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    async def get(self, key: str, default: Optional[Any] = None) -> Any:
        """
        Read a key.

        Args:
            key: Configuration key
            default: Returned when the key is missing or the document is unreadable

        Returns:
            Stored value or default
        """
        data = await self._load()
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        """Write a key, keeping the others."""
        async with self._lock:
            data = await self._load()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.path, mode="w", encoding="utf-8") as f:
                await f.write(json.dumps(data, ensure_ascii=False, indent=2))
