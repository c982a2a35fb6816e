"""Message and envelope model tests."""

from agentdesk.models.conversation import Conversation, ConversationType, TaskStatus
from agentdesk.models.message import Message, MessagePosition, StreamEvent
from agentdesk.models.response import BridgeResponse


class TestMessage:
    """SUT: Message"""

    def test_text_of_text_message(self):
        message = Message(id="m1", conversation_id="c1", type="text", content={"content": "hi"})
        assert message.text == "hi"
        assert message.position == MessagePosition.LEFT

    def test_text_of_structured_content_is_empty(self):
        message = Message(id="m1", conversation_id="c1", type="tool_group", content={"content": [1, 2]})
        assert message.text == ""


class TestConversation:
    """SUT: Conversation"""

    def test_workspace_read_from_extra(self):
        conversation = Conversation(id="c1", type="llm", name="n", extra={"workspace": "/w"})
        assert conversation.type == ConversationType.LLM
        assert conversation.workspace == "/w"
        assert conversation.status == TaskStatus.FINISHED

    def test_workspace_absent(self):
        assert Conversation(id="c1", type="cli", name="n").workspace is None


class TestBridgeResponse:
    """SUT: BridgeResponse"""

    def test_ok(self):
        assert BridgeResponse.ok({"a": 1}).model_dump() == {"success": True, "data": {"a": 1}, "message": None}

    def test_fail(self):
        assert BridgeResponse.fail("boom").model_dump() == {"success": False, "data": None, "message": "boom"}


class TestStreamEvent:
    """SUT: StreamEvent"""

    def test_json_dump(self):
        event = StreamEvent(type="content", data="x", msg_id="m", conversation_id="c")
        assert event.model_dump(mode="json") == {
            "type": "content", "data": "x", "msg_id": "m", "conversation_id": "c"
        }
