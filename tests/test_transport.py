from unittest.mock import AsyncMock, MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from writebot.slack.transport import (
    AI_GENERATED_EVENT,
    MESSAGE_NEW,
    SECTION_TEXT_LIMIT,
    STOP_ACTION_ID,
    ConversationEvents,
    IndicatorState,
    MessageRef,
    SlackConversation,
    message_from_event,
)


def make_client(join_response=None):
    client = MagicMock()
    client.chat_postMessage = AsyncMock(return_value={"ts": "1700000000.000001", "channel": "C123"})
    client.chat_update = AsyncMock(return_value={"ok": True})
    client.chat_delete = AsyncMock(return_value={"ok": True})
    client.conversations_join = AsyncMock(return_value=join_response or {"ok": True})
    client.conversations_leave = AsyncMock(return_value={"ok": True})
    return client


def block_types(blocks):
    return [block["type"] for block in blocks]


def last_update(client):
    return client.chat_update.await_args.kwargs


class TestMessageFromEvent:
    def test_user_message(self):
        message = message_from_event({
            "ts": "1.2", "channel": "C123", "text": "hello", "user": "U1",
        })

        assert message.id == "1.2"
        assert message.conversation_id == "C123"
        assert message.text == "hello"
        assert message.user_id == "U1"
        assert not message.ai_generated
        assert message.writing_task is None

    def test_assistant_metadata_marks_ai_generated(self):
        message = message_from_event({
            "ts": "1.2", "channel": "C123", "text": "",
            "metadata": {"event_type": AI_GENERATED_EVENT, "event_payload": {"agent_id": "ai-bot-C123"}},
        })

        assert message.ai_generated
        assert message.custom == {"agent_id": "ai-bot-C123"}

    def test_bot_posts_are_ai_generated(self):
        assert message_from_event({"ts": "1", "channel": "C", "bot_id": "B1"}).ai_generated

    def test_writing_task_comes_from_metadata_payload(self):
        message = message_from_event({
            "ts": "1", "channel": "C", "text": "draft",
            "metadata": {"event_type": "writing_request", "event_payload": {"writing_task": "newsletter"}},
        })

        assert not message.ai_generated
        assert message.writing_task == "newsletter"


class TestConversationEvents:
    @pytest.mark.asyncio
    async def test_emit_reaches_only_the_channel_listeners(self):
        events = ConversationEvents()
        received = []

        async def listener(payload):
            received.append(payload)

        events.on(MESSAGE_NEW, "C1", listener)
        await events.emit(MESSAGE_NEW, "C2", "elsewhere")
        await events.emit(MESSAGE_NEW, "C1", "here")

        assert received == ["here"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self):
        events = ConversationEvents()
        received = []

        async def broken(payload):
            raise RuntimeError("boom")

        async def healthy(payload):
            received.append(payload)

        events.on(MESSAGE_NEW, "C1", broken)
        events.on(MESSAGE_NEW, "C1", healthy)
        await events.emit(MESSAGE_NEW, "C1", "hi")

        assert received == ["hi"]

    def test_off_removes_listener(self):
        events = ConversationEvents()

        async def listener(payload):
            pass

        events.on(MESSAGE_NEW, "C1", listener)
        events.off(MESSAGE_NEW, "C1", listener)
        events.off(MESSAGE_NEW, "C1", listener)

        assert events.listener_count(MESSAGE_NEW, "C1") == 0


class TestSlackConversation:
    @pytest.mark.asyncio
    async def test_assistant_message_is_tagged_and_has_stop_button(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")

        ref = await conversation.send_message("", ai_generated=True)

        assert ref == MessageRef(id="1700000000.000001", conversation_id="C123")
        params = client.chat_postMessage.await_args.kwargs
        assert params["channel"] == "C123"
        assert params["metadata"] == {
            "event_type": AI_GENERATED_EVENT,
            "event_payload": {"agent_id": "ai-bot-C123"},
        }
        (actions,) = params["blocks"]
        assert actions["elements"][0]["action_id"] == STOP_ACTION_ID

    @pytest.mark.asyncio
    async def test_plain_message_has_no_metadata(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")

        await conversation.send_message("hello")

        params = client.chat_postMessage.await_args.kwargs
        assert "metadata" not in params
        assert block_types(params["blocks"]) == ["section"]

    @pytest.mark.asyncio
    async def test_streaming_then_final_update(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)
        await conversation.send_indicator(ref, IndicatorState.THINKING)

        await conversation.partial_update_message(ref.id, "Once upon")
        partial = last_update(client)
        assert partial["ts"] == ref.id
        assert partial["text"] == "Once upon"
        assert block_types(partial["blocks"]) == ["section", "context", "actions"]

        await conversation.update_message(ref.id, "Once upon a time.")
        final = last_update(client)
        assert final["text"] == "Once upon a time."
        assert block_types(final["blocks"]) == ["section"]

    @pytest.mark.asyncio
    async def test_indicator_labels_and_clear(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)

        await conversation.send_indicator(ref, IndicatorState.EXTERNAL_SOURCES)
        context = last_update(client)["blocks"][0]
        assert context["type"] == "context"
        assert "Checking external sources" in context["elements"][0]["text"]

        await conversation.send_indicator(ref, IndicatorState.CLEAR)
        assert last_update(client)["blocks"] == []

        calls = client.chat_update.await_count
        await conversation.send_indicator(ref, IndicatorState.THINKING)
        assert client.chat_update.await_count == calls

    @pytest.mark.asyncio
    async def test_error_indicator_removes_stop_button(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)

        await conversation.send_indicator(ref, IndicatorState.ERROR)

        assert block_types(last_update(client)["blocks"]) == ["context"]

    @pytest.mark.asyncio
    async def test_long_answers_are_split_into_sections(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)

        await conversation.update_message(ref.id, "x" * (SECTION_TEXT_LIMIT * 2 + 1))

        sections = last_update(client)["blocks"]
        assert [len(block["text"]["text"]) for block in sections] == [
            SECTION_TEXT_LIMIT, SECTION_TEXT_LIMIT, 1
        ]

    @pytest.mark.asyncio
    async def test_cleared_message_ignores_late_partial_update(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)
        await conversation.partial_update_message(ref.id, "Half")
        await conversation.send_indicator(ref, IndicatorState.CLEAR)
        calls = client.chat_update.await_count

        await conversation.partial_update_message(ref.id, "Half an answer")

        assert client.chat_update.await_count == calls
        assert block_types(last_update(client)["blocks"]) == ["section"]

    @pytest.mark.asyncio
    async def test_delete_message(self):
        client = make_client()
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
        ref = await conversation.send_message("", ai_generated=True)

        await conversation.delete_message(ref.id)

        client.chat_delete.assert_awaited_once_with(channel="C123", ts=ref.id)
        await conversation.send_indicator(ref, IndicatorState.THINKING)
        client.chat_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connect_joins_and_disconnect_leaves(self):
        client = make_client()
        events = ConversationEvents()
        conversation = SlackConversation(client, events, "C123", "ai-bot-C123")

        async def listener(payload):
            pass

        await conversation.connect()
        conversation.on(MESSAGE_NEW, listener)
        await conversation.disconnect()

        client.conversations_join.assert_awaited_once_with(channel="C123")
        client.conversations_leave.assert_awaited_once_with(channel="C123")
        assert events.listener_count(MESSAGE_NEW, "C123") == 0
        assert not conversation.connected

    @pytest.mark.asyncio
    async def test_disconnect_stays_when_already_a_member(self):
        client = make_client(join_response={"ok": True, "warning": "already_in_channel"})
        conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")

        await conversation.connect()
        await conversation.disconnect()

        client.conversations_leave.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_join_still_connects(self):
        client = make_client()
        client.conversations_join.side_effect = SlackApiError(
            "method_not_supported_for_channel_type",
            {"ok": False, "error": "method_not_supported_for_channel_type"},
        )
        conversation = SlackConversation(client, ConversationEvents(), "D123", "ai-bot-D123")

        await conversation.connect()
        await conversation.disconnect()

        assert client.conversations_leave.await_count == 0
