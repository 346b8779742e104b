"""
Agent Core
==========

One writing assistant bound to one Slack channel.

The agent owns:
- an OpenAI assistant (instructions + tool schema) and a thread holding
  the channel's conversation
- a SlackConversation handle for posting and listening in the channel
- the set of ResponseHandlers currently generating answers

Message flow:

    message.new in the channel
         │
         ▼
    Ignore? (not initialized, empty, posted by an assistant)
         │
         ▼
    Add user text to the thread
         │
         ▼
    Post empty placeholder ──► "thinking" indicator
         │
         ▼
    Start a streaming run ──► ResponseHandler task (not awaited)

Several handlers can be active at once, e.g. when a user sends two
messages in quick succession; each owns its own run and placeholder.
"""

import asyncio
from datetime import datetime
from typing import Callable

from openai import AsyncOpenAI

from writebot.agent.instructions import (
    ASSISTANT_NAME,
    build_instructions,
    writing_task_context,
)
from writebot.agent.response_handler import ResponseHandler
from writebot.agent.run_stream import RunStreamAdapter
from writebot.agent.tools_executor import ToolExecutor
from writebot.slack.transport import (
    MESSAGE_NEW,
    ChatMessage,
    IndicatorState,
    MessageRef,
    SlackConversation,
)
from writebot.tools import ToolRegistry, build_tool_registry
from writebot.utils.config import Config, ConfigurationError
from writebot.utils.logger import Logger

logger = Logger("Agent")

# Engine-side tool: runs inside OpenAI, no local execution needed
CODE_INTERPRETER_TOOL = {"type": "code_interpreter"}


class Agent:
    """
    The writing assistant of one Slack channel.

    Example:
        agent = Agent(conversation, config)
        await agent.init()          # creates assistant + thread, starts listening

        ...                         # messages in the channel are answered

        agent.get_last_interaction()
        await agent.dispose()
    """

    def __init__(
        self,
        conversation: SlackConversation,
        config: Config,
        runs: RunStreamAdapter | None = None,
        tools: ToolRegistry | None = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            conversation: Transport handle for the agent's channel
            config: Application configuration
            runs: Engine adapter; built from the OpenAI key on init if omitted
            tools: Tool registry; built from config if omitted
            clock: Time source for the liveness timestamp
        """
        self.conversation = conversation
        self.config = config
        self.runs = runs
        self.tools = tools or build_tool_registry(config.tavily)
        self.tool_executor = ToolExecutor(self.tools)

        self.assistant_id: str | None = None
        self.thread_id: str | None = None

        self.handlers: dict[str, ResponseHandler] = {}

        self._clock = clock
        self._last_interaction = clock()
        self._disposed = False
        self._dispose_done = asyncio.Event()

        self.logger = logger.child(conversation.conversation_id)

    @property
    def user_id(self) -> str:
        return self.conversation.user_id

    @property
    def is_initialized(self) -> bool:
        return self.assistant_id is not None and self.thread_id is not None

    def get_last_interaction(self) -> datetime:
        return self._last_interaction

    async def init(self) -> None:
        """
        Create the assistant and thread, then start listening.

        Raises:
            ConfigurationError: If the OpenAI API key is not configured
        """
        if self.runs is None:
            api_key = self.config.openai.api_key
            if not api_key:
                raise ConfigurationError("OpenAI API key is required")
            self.runs = RunStreamAdapter(AsyncOpenAI(api_key=api_key))

        self.assistant_id = await self.runs.create_assistant(
            name=ASSISTANT_NAME,
            instructions=build_instructions(),
            model=self.config.openai.model,
            tools=[CODE_INTERPRETER_TOOL, *self.tools.get_openai_tools()],
            temperature=self.config.openai.temperature
        )
        self.thread_id = await self.runs.create_thread()

        self.conversation.on(MESSAGE_NEW, self.handle_message)
        self.logger.info(f"Agent {self.user_id} ready (assistant {self.assistant_id})")

    async def handle_message(self, message: ChatMessage) -> None:
        """
        Start answering an inbound channel message.

        Returns once the run is launched; the ResponseHandler finishes
        the answer in its own task.
        """
        if not self.is_initialized or self._disposed:
            self.logger.warning("Agent not initialized, ignoring message")
            return

        # Skip our own answers and empty posts (joins, file-only shares)
        if message.ai_generated or not message.text:
            return

        self._last_interaction = self._clock()
        self.logger.info(f"Message from {message.user_id}: {message.text[:50]}...")

        instructions = build_instructions(writing_task_context(message.writing_task))

        # 1. Add the user turn to the thread
        await self.runs.add_user_message(self.thread_id, message.text)
        if self._disposed:
            return

        # 2. Post the placeholder the answer streams into
        placeholder = await self.conversation.send_message("", ai_generated=True)

        try:
            await self.conversation.send_indicator(placeholder, IndicatorState.THINKING)
        except Exception as e:
            self.logger.error("Failed to send thinking indicator", e)

        if self._disposed:
            await self._discard_placeholder(placeholder)
            return

        # 3. Start the run and hand it to a response handler
        stream = self.runs.start_run(
            self.thread_id,
            self.assistant_id,
            instructions=instructions
        )

        handler = ResponseHandler(
            runs=self.runs,
            thread_id=self.thread_id,
            stream=stream,
            conversation=self.conversation,
            message=placeholder,
            tool_executor=self.tool_executor,
            on_dispose=self.remove_handler,
            flush_interval=self.config.agent.flush_interval_ms / 1000,
            max_tool_rounds=self.config.agent.max_tool_rounds
        )
        self.handlers[placeholder.id] = handler
        handler.start()

    async def _discard_placeholder(self, placeholder: MessageRef) -> None:
        """Remove a placeholder posted while the agent was being disposed."""
        try:
            await self.conversation.delete_message(placeholder.id)
        except Exception as e:
            self.logger.error("Failed to delete placeholder", e)

    def remove_handler(self, handler: ResponseHandler) -> None:
        """Forget a handler once it has disposed."""
        if self.handlers.get(handler.message.id) is handler:
            del self.handlers[handler.message.id]

    async def dispose(self) -> None:
        """
        Stop listening, cancel every active handler, release the engine
        resources and disconnect from the channel.

        A second call waits until the first one has finished.
        """
        if self._disposed:
            await self._dispose_done.wait()
            return
        self._disposed = True

        try:
            self.conversation.off(MESSAGE_NEW, self.handle_message)

            # 1. Cancel in-flight answers: engine run, indicator, stop button
            handlers = list(self.handlers.values())
            tasks = [handler.task for handler in handlers if handler.task is not None]
            await asyncio.gather(
                *(handler.cancel(f"Agent {self.user_id} disposed") for handler in handlers),
                return_exceptions=True
            )

            # 2. Wait for their consumption tasks to wind down
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            for handler in handlers:
                handler.dispose()
            self.handlers.clear()

            # 3. Engine cleanup, then leave the channel
            await self._release_engine_resources()
            await self.conversation.disconnect()

            self.logger.info(f"Agent {self.user_id} disposed")
        finally:
            self._dispose_done.set()

    async def _release_engine_resources(self) -> None:
        if self.runs is None:
            return

        if self.thread_id:
            try:
                await self.runs.delete_thread(self.thread_id)
            except Exception as e:
                self.logger.error("Failed to delete thread", e)

        if self.assistant_id:
            try:
                await self.runs.delete_assistant(self.assistant_id)
            except Exception as e:
                self.logger.error("Failed to delete assistant", e)
