"""Conversation repository for database operations."""

from typing import Optional, List, Dict, Any
from .base import BaseRepository
from ..database_models.conversation import ConversationDO

_COLUMNS = "id, type, name, workspace, model, extra, status, created_at, modified_at"


class ConversationRepository(BaseRepository):
    """Repository for Conversation CRUD operations."""

    def _row_to_do(self, row) -> ConversationDO:
        return ConversationDO(
            id=row[0],
            type=row[1],
            name=row[2],
            workspace=row[3],
            model=self._load_json(row[4]),
            extra=self._load_json(row[5], {}),
            status=row[6] or "finished",
            created_at=row[7],
            modified_at=row[8]
        )

    def create(self, conversation: ConversationDO) -> bool:
        """
        Create a new conversation record.

        Args:
            conversation: ConversationDO instance

        Returns:
            True if successful, False otherwise
        """
        try:
            self.conn.execute(f"""
                INSERT INTO conversations ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                conversation.id,
                conversation.type,
                conversation.name,
                conversation.workspace,
                self._dump_json(conversation.model),
                self._dump_json(conversation.extra or {}),
                conversation.status,
                conversation.created_at,
                conversation.modified_at
            ])
            self.conn.commit()
            self.logger.info(f"Created conversation record: {conversation.id}")
            return True
        except Exception as e:
            self.logger.error(f"Failed to create conversation {conversation.id}: {e}")
            return False

    def get(self, conversation_id: str) -> Optional[ConversationDO]:
        """
        Get conversation by ID.

        Args:
            conversation_id: Conversation ID

        Returns:
            ConversationDO instance or None
        """
        try:
            result = self.conn.execute(
                f"SELECT {_COLUMNS} FROM conversations WHERE id = ?",
                [conversation_id]
            ).fetchone()
            return self._row_to_do(result) if result else None
        except Exception as e:
            self.logger.error(f"Failed to get conversation {conversation_id}: {e}")
            return None

    def list_all(self) -> List[ConversationDO]:
        """List all conversations, most recently modified first."""
        try:
            results = self.conn.execute(
                f"SELECT {_COLUMNS} FROM conversations ORDER BY modified_at DESC"
            ).fetchall()
            return [self._row_to_do(row) for row in results]
        except Exception as e:
            self.logger.error(f"Failed to list all conversations: {e}")
            return []

    def list_by_workspace(self, workspace: str) -> List[ConversationDO]:
        """
        List conversations sharing a workspace.

        Args:
            workspace: Workspace path

        Returns:
            List of ConversationDO instances
        """
        try:
            results = self.conn.execute(
                f"SELECT {_COLUMNS} FROM conversations WHERE workspace = ? ORDER BY modified_at DESC",
                [workspace]
            ).fetchall()
            return [self._row_to_do(row) for row in results]
        except Exception as e:
            self.logger.error(f"Failed to list conversations for workspace {workspace}: {e}")
            return []

    def update(self, conversation_id: str, updates: Dict[str, Any]) -> bool:
        """
        Update conversation fields.

        Args:
            conversation_id: Conversation ID
            updates: Fields to update (name, workspace, model, extra, status, modified_at)

        Returns:
            True if a row was updated, False otherwise
        """
        try:
            set_clauses = []
            params = []

            for column in ("name", "workspace", "status", "modified_at"):
                if column in updates:
                    set_clauses.append(f"{column} = ?")
                    params.append(updates[column])

            for column in ("model", "extra"):
                if column in updates:
                    set_clauses.append(f"{column} = ?")
                    params.append(self._dump_json(updates[column]))

            if not set_clauses:
                return self.get(conversation_id) is not None

            params.append(conversation_id)
            result = self.conn.execute(
                f"UPDATE conversations SET {', '.join(set_clauses)} WHERE id = ? RETURNING id",
                params
            ).fetchall()
            self.conn.commit()
            return len(result) > 0
        except Exception as e:
            self.logger.error(f"Failed to update conversation {conversation_id}: {e}")
            return False

    def delete(self, conversation_id: str) -> bool:
        """
        Delete conversation by ID.

        Returns:
            True if a row was deleted, False otherwise
        """
        try:
            result = self.conn.execute(
                "DELETE FROM conversations WHERE id = ? RETURNING id", [conversation_id]
            ).fetchall()
            self.conn.commit()
            if result:
                self.logger.info(f"Deleted conversation record: {conversation_id}")
            return len(result) > 0
        except Exception as e:
            self.logger.error(f"Failed to delete conversation {conversation_id}: {e}")
            return False
