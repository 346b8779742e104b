import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeConversation, FakeRuns, make_config, wait_until
from writebot.agent.core import Agent
from writebot.agent.events import MessageCompleted, MessageDelta, RunCompleted, RunCreated
from writebot.agent.factory import create_agent
from writebot.agent.response_handler import HandlerState
from writebot.slack.transport import (
    MESSAGE_NEW,
    STOP_GENERATING,
    ChatMessage,
    ConversationEvents,
    IndicatorState,
    SlackConversation,
)
from writebot.utils.config import ConfigurationError


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def user_message(text, ai_generated=False, custom=None):
    return ChatMessage(
        id="1699999999.000100",
        conversation_id="C123",
        text=text,
        user_id="U1",
        ai_generated=ai_generated,
        custom=custom or {},
    )


async def make_agent(runs, conversation=None, clock=None):
    agent = Agent(
        conversation or FakeConversation(),
        make_config(),
        runs=runs,
        clock=clock or datetime.now,
    )
    await agent.init()
    return agent


@pytest.mark.asyncio
async def test_init_requires_openai_key():
    conversation = FakeConversation()
    agent = Agent(conversation, make_config(openai_key=None))

    with pytest.raises(ConfigurationError, match="OpenAI API key is required"):
        await agent.init()

    assert not agent.is_initialized
    assert conversation.events.listener_count(MESSAGE_NEW, "C123") == 0


@pytest.mark.asyncio
async def test_init_creates_assistant_thread_and_listens():
    runs = FakeRuns()
    conversation = FakeConversation()

    agent = await make_agent(runs, conversation)

    assert agent.assistant_id == "asst_1"
    assert agent.thread_id == "thread_1"
    assert conversation.events.listener_count(MESSAGE_NEW, "C123") == 1

    params = runs.assistant_params
    assert params["model"] == "gpt-4o"
    assert params["temperature"] == 0.7
    assert {"type": "code_interpreter"} in params["tools"]
    function_names = [tool["function"]["name"] for tool in params["tools"] if tool["type"] == "function"]
    assert function_names == ["web_search"]


@pytest.mark.asyncio
async def test_message_starts_a_streaming_answer():
    runs = FakeRuns([
        RunCreated(run_id="run_1"),
        MessageDelta(text="Hi"),
        MessageDelta(text=" there"),
        MessageCompleted(text="Hi there!"),
        RunCompleted(run_id="run_1"),
    ])
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)

    await agent.handle_message(user_message("hello"))

    assert runs.user_messages == [("thread_1", "hello")]
    (placeholder, text, ai_generated), = conversation.sent
    assert text == "" and ai_generated
    assert conversation.indicator_states(placeholder.id)[0] is IndicatorState.THINKING

    handler = agent.handlers[placeholder.id]
    await asyncio.gather(handler.task)

    assert handler.state is HandlerState.COMPLETED
    assert conversation.updates == [(placeholder.id, "Hi there!")]
    assert conversation.indicator_states(placeholder.id)[-1] is IndicatorState.CLEAR
    assert agent.handlers == {}


@pytest.mark.asyncio
async def test_channel_messages_reach_the_agent():
    runs = FakeRuns([RunCompleted(run_id="run_1")])
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)

    await conversation.events.emit(MESSAGE_NEW, "C123", user_message("hello"))
    await wait_until(lambda: conversation.updates and not agent.handlers)

    assert runs.user_messages == [("thread_1", "hello")]


@pytest.mark.asyncio
async def test_writing_task_reaches_run_instructions():
    runs = FakeRuns([RunCompleted(run_id="run_1")])
    agent = await make_agent(runs)

    await agent.handle_message(user_message("tighten this", custom={"writing_task": "blog intro"}))

    (_, assistant_id, instructions), = runs.start_calls
    assert assistant_id == "asst_1"
    assert "Writing Task: blog intro" in instructions


@pytest.mark.asyncio
@pytest.mark.parametrize("message", [
    user_message(""),
    user_message("generated answer", ai_generated=True),
])
async def test_ignored_messages(message):
    runs = FakeRuns()
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)

    await agent.handle_message(message)

    assert runs.user_messages == []
    assert conversation.sent == []
    assert agent.handlers == {}


@pytest.mark.asyncio
async def test_messages_before_init_are_ignored():
    runs = FakeRuns()
    conversation = FakeConversation()
    agent = Agent(conversation, make_config(), runs=runs)

    await agent.handle_message(user_message("hello"))

    assert conversation.sent == []


@pytest.mark.asyncio
async def test_message_refreshes_last_interaction():
    start = datetime(2026, 10, 18, 9, 0)
    clock = Clock(start)
    runs = FakeRuns([RunCompleted(run_id="run_1")])
    agent = await make_agent(runs, clock=clock)
    assert agent.get_last_interaction() == start

    clock.now = start + timedelta(minutes=5)
    await agent.handle_message(user_message("hello"))

    assert agent.get_last_interaction() == start + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_concurrent_messages_get_independent_handlers():
    gate = asyncio.Event()
    runs = FakeRuns(
        [RunCreated(run_id="run_1"), gate, MessageDelta(text="first"), RunCompleted(run_id="run_1")],
        [RunCreated(run_id="run_2"), MessageDelta(text="second"), RunCompleted(run_id="run_2")],
    )
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)

    await agent.handle_message(user_message("one"))
    await agent.handle_message(user_message("two"))
    assert len(agent.handlers) == 2

    first, second = conversation.sent[0][0], conversation.sent[1][0]
    await wait_until(lambda: second.id not in agent.handlers)
    assert first.id in agent.handlers

    gate.set()
    await wait_until(lambda: agent.handlers == {})

    assert (second.id, "second") in conversation.updates
    assert (first.id, "first") in conversation.updates


@pytest.mark.asyncio
async def test_dispose_releases_everything():
    never = asyncio.Event()
    runs = FakeRuns([RunCreated(run_id="run_1"), never])
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)
    await agent.handle_message(user_message("hello"))
    (handler,) = agent.handlers.values()
    await wait_until(lambda: handler.run_id == "run_1")

    await agent.dispose()

    assert agent.handlers == {}
    assert handler.is_done
    assert handler.state is HandlerState.CANCELLED
    assert handler.task.done()
    assert runs.cancel_calls == [("thread_1", "run_1")]
    assert conversation.indicator_states(handler.message.id)[-1] is IndicatorState.CLEAR
    assert conversation.events.listener_count(MESSAGE_NEW, "C123") == 0
    assert conversation.events.listener_count(STOP_GENERATING, "C123") == 0
    assert conversation.disconnected
    assert ("thread", "thread_1") in runs.deleted
    assert ("assistant", "asst_1") in runs.deleted

    await agent.dispose()
    assert runs.deleted.count(("assistant", "asst_1")) == 1


@pytest.mark.asyncio
async def test_disposed_agent_ignores_messages():
    runs = FakeRuns()
    conversation = FakeConversation()
    agent = await make_agent(runs, conversation)
    await agent.dispose()

    await agent.handle_message(user_message("hello"))

    assert conversation.sent == []


@pytest.mark.asyncio
async def test_create_agent_connects_channel_transport():
    client = MagicMock()
    client.conversations_join = AsyncMock(return_value={"ok": True})

    agent = await create_agent("C123", client=client, events=ConversationEvents(), config=make_config())

    assert agent.user_id == "ai-bot-C123"
    assert agent.conversation.connected
    assert not agent.is_initialized
    client.conversations_join.assert_awaited_once_with(channel="C123")


def make_slack_client():
    client = MagicMock()
    client.chat_postMessage = AsyncMock(return_value={"ts": "1700000000.000001", "channel": "C123"})
    client.chat_update = AsyncMock(return_value={"ok": True})
    client.chat_delete = AsyncMock(return_value={"ok": True})
    return client


@pytest.mark.asyncio
async def test_dispose_clears_in_flight_answer_on_slack():
    never = asyncio.Event()
    runs = FakeRuns([RunCreated(run_id="run_1"), MessageDelta(text="Half an ans"), never])
    client = make_slack_client()
    conversation = SlackConversation(client, ConversationEvents(), "C123", "ai-bot-C123")
    agent = await make_agent(runs, conversation)

    await agent.handle_message(user_message("hello"))
    (handler,) = agent.handlers.values()
    await wait_until(lambda: handler.message_text == "Half an ans" and client.chat_update.await_count >= 2)

    await agent.dispose()

    last = client.chat_update.await_args.kwargs
    assert last["text"] == "Half an ans"
    assert [block["type"] for block in last["blocks"]] == ["section"]
    assert runs.cancel_calls == [("thread_1", "run_1")]


@pytest.mark.asyncio
async def test_second_dispose_waits_for_the_first():
    conversation = FakeConversation()
    conversation.disconnect_gate = asyncio.Event()
    agent = await make_agent(FakeRuns(), conversation)

    first = asyncio.create_task(agent.dispose())
    await wait_until(lambda: ("assistant", "asst_1") in agent.runs.deleted)
    second = asyncio.create_task(agent.dispose())
    await asyncio.sleep(0)

    assert not second.done()

    conversation.disconnect_gate.set()
    await asyncio.gather(first, second)

    assert conversation.disconnected


@pytest.mark.asyncio
async def test_placeholder_posted_during_dispose_is_deleted():
    runs = FakeRuns([RunCompleted(run_id="run_1")])
    conversation = FakeConversation()
    conversation.send_gate = asyncio.Event()
    agent = await make_agent(runs, conversation)

    pending = asyncio.create_task(agent.handle_message(user_message("hello")))
    await wait_until(lambda: runs.user_messages)
    await agent.dispose()

    conversation.send_gate.set()
    await pending

    (placeholder, _, _), = conversation.sent
    assert conversation.deleted == [placeholder.id]
    assert runs.start_calls == []
    assert agent.handlers == {}
