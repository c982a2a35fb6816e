"""Message repository tests."""

from agentdesk.db import MessageRepository
from agentdesk.db.database_models import MessageDO


def _message(message_id, conversation_id="c1", text="hi", status=None):
    return MessageDO(
        id=message_id,
        conversation_id=conversation_id,
        msg_id="turn",
        type="text",
        position="left",
        content={"content": text},
        status=status,
    )


class TestMessageRepository:
    """Tests for MessageRepository."""

    class TestUpsert:
        """SUT: MessageRepository.upsert"""

        def test_update_keeps_position(self, db_conn):
            repo = MessageRepository(db_conn.conn)
            repo.upsert(_message("a", text="first"))
            repo.upsert(_message("b"))
            assert repo.upsert(_message("a", text="first, extended", status="done"))

            messages = repo.get_by_conversation("c1")
            assert [m.id for m in messages] == ["a", "b"]
            assert messages[0].content == {"content": "first, extended"}
            assert messages[0].status == "done"
            assert repo.count_by_conversation("c1") == 2

    class TestGetByConversation:
        """SUT: MessageRepository.get_by_conversation"""

        def test_limit_keeps_latest(self, db_conn):
            repo = MessageRepository(db_conn.conn)
            for i in range(5):
                repo.upsert(_message(f"m{i}"))
            assert [m.id for m in repo.get_by_conversation("c1", limit=2)] == ["m3", "m4"]

        def test_scoped_to_conversation(self, db_conn):
            repo = MessageRepository(db_conn.conn)
            repo.upsert(_message("a", conversation_id="c1"))
            repo.upsert(_message("b", conversation_id="c2"))
            assert [m.id for m in repo.get_by_conversation("c2")] == ["b"]

    class TestDeleteByConversation:
        """SUT: MessageRepository.delete_by_conversation"""

        def test_delete(self, db_conn):
            repo = MessageRepository(db_conn.conn)
            repo.upsert(_message("a"))
            assert repo.delete_by_conversation("c1")
            assert repo.get_by_conversation("c1") == []
