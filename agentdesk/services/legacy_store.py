"""Legacy flat record store.

Conversations live in one JSON document, messages in JSON-lines files:
  {base}/chat.history.json
  {base}/messages/{uuid[:2]}/{uuid}.jsonl

Older installs wrote only here; the structured store migrates records
out of it lazily.
"""

import json
from pathlib import Path
from typing import List, Optional

import aiofiles

from ..models.conversation import Conversation
from ..models.message import Message
from ..utils import read_last_records
from ..utils.logger import get_app_logger


class LegacyRecordStore:
    """File-based conversation and message storage."""

    HISTORY_FILE = "chat.history.json"

    def __init__(self, base_path: str = "./data/legacy"):
        self.base_path = Path(base_path)
        self.logger = get_app_logger()

    @property
    def history_path(self) -> Path:
        return self.base_path / self.HISTORY_FILE

    def _get_messages_path(self, conversation_id: str) -> Path:
        """Get the file path for a conversation's messages."""
        prefix = conversation_id[:2]
        return self.base_path / "messages" / prefix / f"{conversation_id}.jsonl"

    def _ensure_dir(self, file_path: Path) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)

    async def _read_history(self) -> List[dict]:
        if not self.history_path.exists():
            return []
        async with aiofiles.open(self.history_path, mode="r", encoding="utf-8") as f:
            raw = await f.read()
        try:
            records = json.loads(raw) if raw.strip() else []
        except json.JSONDecodeError:
            self.logger.error(f"Corrupt legacy history at {self.history_path}")
            return []
        return records if isinstance(records, list) else []

    async def _write_history(self, records: List[dict]) -> None:
        self._ensure_dir(self.history_path)
        async with aiofiles.open(self.history_path, mode="w", encoding="utf-8") as f:
            await f.write(json.dumps(records, ensure_ascii=False, indent=2))

    async def list_conversations(self) -> List[Conversation]:
        """List every conversation record; unreadable records are skipped."""
        conversations = []
        for record in await self._read_history():
            try:
                conversations.append(Conversation.model_validate(record))
            except ValueError as e:
                self.logger.warning(f"Skipping invalid legacy conversation record: {e}")
        return conversations

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in await self.list_conversations():
            if conversation.id == conversation_id:
                return conversation
        return None

    async def save_conversation(self, conversation: Conversation) -> None:
        """Insert or replace a conversation record."""
        records = [r for r in await self._read_history() if r.get("id") != conversation.id]
        records.append(conversation.model_dump(mode="json"))
        await self._write_history(records)

    async def delete_conversation(self, conversation_id: str) -> bool:
        """
        Delete a conversation record and its messages file.

        Returns:
            True if anything was deleted, False if not found
        """
        records = await self._read_history()
        remaining = [r for r in records if r.get("id") != conversation_id]
        deleted = len(remaining) != len(records)
        if deleted:
            await self._write_history(remaining)

        messages_path = self._get_messages_path(conversation_id)
        if messages_path.exists():
            messages_path.unlink()
            deleted = True
        return deleted

    async def add_message(self, message: Message) -> None:
        """Append a message record to the conversation's messages file."""
        file_path = self._get_messages_path(message.conversation_id)
        self._ensure_dir(file_path)
        async with aiofiles.open(file_path, mode="a", encoding="utf-8") as f:
            await f.write(message.model_dump_json() + "\n")

    async def get_messages(self, conversation_id: str, limit: int = 10000) -> List[Message]:
        """
        Get messages of a conversation.

        A message appended several times (streamed updates) is returned once,
        with its latest content, at the position of its first record.

        Returns:
            List of messages (chronological order, oldest first)
        """
        records = read_last_records(self._get_messages_path(conversation_id), limit)
        latest = {}
        for record in records:
            try:
                message = Message.model_validate(record)
            except ValueError:
                continue
            if message.id in latest:
                message.created_at = latest[message.id].created_at
            latest[message.id] = message
        return list(latest.values())
