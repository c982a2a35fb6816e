"""Message repository for database operations."""

from typing import List
from .base import BaseRepository
from ..database_models.message import MessageDO

_COLUMNS = "id, conversation_id, msg_id, type, position, content, status, created_at"


class MessageRepository(BaseRepository):
    """Repository for Message operations. Messages are keyed by id and upserted."""

    def _row_to_do(self, row) -> MessageDO:
        return MessageDO(
            id=row[0],
            conversation_id=row[1],
            msg_id=row[2],
            type=row[3],
            position=row[4],
            content=self._load_json(row[5], {}),
            status=row[6],
            created_at=row[7]
        )

    def upsert(self, message: MessageDO) -> bool:
        """
        Insert a message, or update the one already stored under its id.

        The original insertion order and creation time are kept on update.

        Args:
            message: MessageDO instance

        Returns:
            True if successful, False otherwise
        """
        try:
            self.conn.execute(f"""
                INSERT INTO messages ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    msg_id = excluded.msg_id,
                    type = excluded.type,
                    position = excluded.position,
                    content = excluded.content,
                    status = excluded.status
            """, [
                message.id,
                message.conversation_id,
                message.msg_id,
                message.type,
                message.position,
                self._dump_json(message.content or {}),
                message.status,
                message.created_at
            ])
            self.conn.commit()
            self.logger.debug(f"Upserted message {message.id} in conversation {message.conversation_id}")
            return True
        except Exception as e:
            self.logger.error(f"Failed to upsert message {message.id}: {e}")
            return False

    def get_by_conversation(self, conversation_id: str, limit: int = 10000) -> List[MessageDO]:
        """
        Get the latest messages of a conversation.

        Args:
            conversation_id: Conversation ID
            limit: Maximum number of messages to return

        Returns:
            List of MessageDO instances (chronological order)
        """
        try:
            results = self.conn.execute(f"""
                SELECT {_COLUMNS}
                FROM messages
                WHERE conversation_id = ?
                ORDER BY seq DESC
                LIMIT ?
            """, [conversation_id, limit]).fetchall()

            messages = [self._row_to_do(row) for row in results]
            messages.reverse()
            return messages
        except Exception as e:
            self.logger.error(f"Failed to get conversation messages: {e}")
            return []

    def count_by_conversation(self, conversation_id: str) -> int:
        try:
            result = self.conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", [conversation_id]
            ).fetchone()
            return result[0] if result else 0
        except Exception as e:
            self.logger.error(f"Failed to count messages: {e}")
            return 0

    def delete_by_conversation(self, conversation_id: str) -> bool:
        """
        Delete all messages for a conversation.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.conn.execute("DELETE FROM messages WHERE conversation_id = ?", [conversation_id])
            self.conn.commit()
            return True
        except Exception as e:
            self.logger.error(f"Failed to delete messages: {e}")
            return False
