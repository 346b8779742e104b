import asyncio

import pytest

from writebot.agent.tools_executor import ToolOutput
from writebot.slack.transport import ConversationEvents, MessageRef
from writebot.utils.config import (
    AgentConfig,
    Config,
    OpenAIConfig,
    SlackConfig,
    TavilyConfig,
)


def make_config(openai_key="sk-test", tavily_key=None, max_tool_rounds=10, flush_interval_ms=1000):
    return Config(
        slack=SlackConfig(bot_token="xoxb-test", app_token="xapp-test", signing_secret="secret"),
        openai=OpenAIConfig(api_key=openai_key, model="gpt-4o", temperature=0.7),
        tavily=TavilyConfig(api_key=tavily_key, max_results=5, search_depth="advanced"),
        agent=AgentConfig(
            inactivity_minutes=480,
            sweep_interval_seconds=5,
            flush_interval_ms=flush_interval_ms,
            max_tool_rounds=max_tool_rounds,
        ),
        log_level="error",
    )


class FakeConversation:
    """In-memory stand-in for SlackConversation that records every write."""

    def __init__(self, conversation_id="C123", user_id="ai-bot-C123"):
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.events = ConversationEvents()
        self.sent = []
        self.partial_updates = []
        self.updates = []
        self.indicators = []
        self.deleted = []
        self.disconnected = False
        self.fail_indicators = False
        # Optional gates holding send_message / disconnect until set
        self.send_gate = None
        self.disconnect_gate = None
        self._counter = 0

    def on(self, event_type, listener):
        self.events.on(event_type, self.conversation_id, listener)

    def off(self, event_type, listener):
        self.events.off(event_type, self.conversation_id, listener)

    async def send_message(self, text, ai_generated=False):
        self._counter += 1
        if self.send_gate is not None:
            await self.send_gate.wait()
        ref = MessageRef(id=f"1700000000.{self._counter:06d}", conversation_id=self.conversation_id)
        self.sent.append((ref, text, ai_generated))
        return ref

    async def partial_update_message(self, message_id, text):
        self.partial_updates.append((message_id, text))

    async def update_message(self, message_id, text):
        self.updates.append((message_id, text))

    async def send_indicator(self, message, state):
        if self.fail_indicators:
            raise RuntimeError("slack is down")
        self.indicators.append((message.id, state))

    async def delete_message(self, message_id):
        self.deleted.append(message_id)

    async def disconnect(self):
        if self.disconnect_gate is not None:
            await self.disconnect_gate.wait()
        self.disconnected = True

    def indicator_states(self, message_id):
        return [state for mid, state in self.indicators if mid == message_id]


class ScriptedStream:
    """
    Event stream replaying a script of run events.

    Script items may also be an asyncio.Event (wait for it before going on)
    or an exception instance (raised at that point).
    """

    def __init__(self, items):
        self.items = list(items)
        self.closed = False
        self.iterated = False

    def __aiter__(self):
        assert not self.iterated, "stream consumed twice"
        self.iterated = True
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, Exception):
                raise item
            yield item

    async def aclose(self):
        self.closed = True


class FakeRuns:
    """Assistant engine double handing out scripted streams in order."""

    def __init__(self, *scripts):
        self.streams = [ScriptedStream(script) for script in scripts]
        self._next = 0
        self.start_calls = []
        self.resume_calls = []
        self.cancel_calls = []
        self.user_messages = []
        self.assistant_params = None
        self.deleted = []
        self.cancel_error = None

    def add_script(self, script):
        self.streams.append(ScriptedStream(script))

    def _next_stream(self):
        stream = self.streams[self._next]
        self._next += 1
        return stream

    async def create_assistant(self, **params):
        self.assistant_params = params
        return "asst_1"

    async def create_thread(self):
        return "thread_1"

    async def add_user_message(self, thread_id, text):
        self.user_messages.append((thread_id, text))

    def start_run(self, thread_id, assistant_id, instructions=None):
        self.start_calls.append((thread_id, assistant_id, instructions))
        return self._next_stream()

    def resume_with_tool_outputs(self, thread_id, run_id, outputs):
        assert all(isinstance(output, ToolOutput) for output in outputs)
        self.resume_calls.append((thread_id, run_id, list(outputs)))
        return self._next_stream()

    async def cancel_run(self, thread_id, run_id):
        self.cancel_calls.append((thread_id, run_id))
        if self.cancel_error is not None:
            raise self.cancel_error

    async def delete_thread(self, thread_id):
        self.deleted.append(("thread", thread_id))

    async def delete_assistant(self, assistant_id):
        self.deleted.append(("assistant", assistant_id))


async def wait_until(predicate, timeout=1.0):
    """Yield to the event loop until predicate() is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def conversation():
    return FakeConversation()
