"""Conversation store tests, including the lazy legacy migration."""

import pytest

from agentdesk.exceptions import PersistenceError
from agentdesk.models.conversation import Conversation
from agentdesk.models.message import Message


def _conversation(conversation_id="c1", workspace="/w"):
    return Conversation(id=conversation_id, type="llm", name="conv", extra={"workspace": workspace})


class TestConversationStore:
    """Tests for ConversationStore."""

    class TestStructured:
        """Records written through the store."""

        async def test_create_get(self, store):
            await store.create(_conversation())
            stored = await store.get("c1")
            assert stored.name == "conv"
            assert stored.workspace == "/w"

        async def test_create_duplicate_raises(self, store):
            await store.create(_conversation())
            with pytest.raises(PersistenceError):
                await store.create(_conversation())

        async def test_update_keeps_workspace_column_in_sync(self, store):
            await store.create(_conversation())
            assert await store.update("c1", {"extra": {"workspace": "/other"}})
            assert [c.id for c in await store.list_by_workspace("/other")] == ["c1"]
            assert await store.list_by_workspace("/w") == []

        async def test_update_missing(self, store):
            assert await store.update("absent", {"name": "x"}) is False

        async def test_delete_cascades_messages(self, store):
            await store.create(_conversation())
            await store.add_or_update_message(Message(id="m", conversation_id="c1", type="text"))
            assert await store.delete("c1")
            assert await store.get("c1") is None
            assert await store.get_messages("c1") == []
            assert await store.delete("c1") is False

    class TestLazyMigration:
        """Records only present in the legacy store."""

        async def test_get_returns_legacy_and_migrates(self, store, legacy_store):
            await legacy_store.save_conversation(_conversation("old"))
            await legacy_store.add_message(
                Message(id="m1", conversation_id="old", type="text", content={"content": "hi"})
            )

            found = await store.get("old")
            assert found is not None and found.id == "old"

            await store.wait_for_migrations()
            assert store.conversations.get("old") is not None
            assert [m.id for m in store.messages.get_by_conversation("old")] == ["m1"]

        async def test_concurrent_reads_migrate_once(self, store, legacy_store):
            await legacy_store.save_conversation(_conversation("old"))
            await store.get("old")
            await store.get("old")
            assert len(store._migrations) <= 1
            await store.wait_for_migrations()
            assert len(store.conversations.list_all()) == 1

        async def test_list_merges_both_stores(self, store, legacy_store):
            await store.create(_conversation("new"))
            await legacy_store.save_conversation(_conversation("old"))
            await legacy_store.save_conversation(_conversation("new"))

            ids = sorted(c.id for c in await store.list())
            assert ids == ["new", "old"]

        async def test_legacy_messages_served_before_migration(self, store, legacy_store):
            await legacy_store.save_conversation(_conversation("old"))
            await legacy_store.add_message(Message(id="m1", conversation_id="old", type="text"))
            assert [m.id for m in await store.get_messages("old")] == ["m1"]

        async def test_update_migrates_first(self, store, legacy_store):
            await legacy_store.save_conversation(_conversation("old"))
            assert await store.update("old", {"name": "renamed"})
            assert store.conversations.get("old").name == "renamed"

        async def test_delete_removes_legacy_copy(self, store, legacy_store):
            await legacy_store.save_conversation(_conversation("old"))
            assert await store.delete("old")
            assert await legacy_store.get_conversation("old") is None
