"""
Response Handler
================

Drives one assistant run to completion and streams it into one Slack
message.

A handler is created per user turn. It owns the placeholder message the
answer is written into, consumes the run's event stream, executes tool
calls when the run asks for them, resumes the run with the outputs, and
finishes in exactly one terminal state.

States:

    STREAMING ──► AWAITING_TOOL_OUTPUTS ──► STREAMING ──► ...
        │
        ├──► COMPLETED   final text written, indicator cleared
        ├──► FAILED      error indicator, error text written
        └──► CANCELLED   stop button, engine-side cancel, or agent disposal

Text streaming:
    Deltas are appended to a buffer. The message is partially updated at
    most once per flush interval (1 second by default), so a fast stream
    does not turn into one Slack API call per token. On completion the
    full text is written once more: the engine's completed message content
    if it sent one, otherwise the buffer.

Cancellation:
    A "stop generating" signal for this message, or the owning agent going
    away (`cancel()`), can arrive while the consumption task is parked on
    any await. The first terminal transition wins; whatever loses the race
    becomes a no-op.

Disposal:
    Happens exactly once whatever the outcome: the stop listener is
    removed, a still-running consumption task is cancelled, and the owner
    is told to forget this handler.
"""

import asyncio
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable

from writebot.agent.events import (
    MessageCompleted,
    MessageDelta,
    RunCancelled,
    RunCompleted,
    RunCreated,
    RunEvent,
    RunFailed,
    RunRequiresAction,
    RunStepCreated,
)
from writebot.agent.run_stream import EventStream, RunStreamAdapter, RunStreamError
from writebot.agent.tools_executor import ToolExecutor, ToolOutput
from writebot.slack.transport import (
    STOP_GENERATING,
    IndicatorState,
    MessageRef,
    StopSignal,
)
from writebot.utils.logger import Logger

if TYPE_CHECKING:
    from writebot.slack.transport import SlackConversation

logger = Logger("ResponseHandler")

ERROR_TEXT = "Error generating the message"


class HandlerState(str, Enum):
    STREAMING = "streaming"
    AWAITING_TOOL_OUTPUTS = "awaiting_tool_outputs"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    HandlerState.COMPLETED,
    HandlerState.FAILED,
    HandlerState.CANCELLED,
})


class ResponseHandler:
    """
    Consumes one assistant run and renders it into a Slack message.

    Example:
        handler = ResponseHandler(
            runs=runs,
            thread_id=thread_id,
            stream=runs.start_run(thread_id, assistant_id),
            conversation=conversation,
            message=placeholder,
            tool_executor=executor,
            on_dispose=agent.remove_handler,
        )
        handler.start()   # runs in its own task
    """

    def __init__(
        self,
        runs: RunStreamAdapter,
        thread_id: str,
        stream: EventStream,
        conversation: "SlackConversation",
        message: MessageRef,
        tool_executor: ToolExecutor,
        on_dispose: Callable[["ResponseHandler"], None],
        flush_interval: float = 1.0,
        max_tool_rounds: int = 10,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            runs: Engine adapter used to resume and cancel the run
            thread_id: Thread the run belongs to
            stream: Event stream of the freshly started run
            conversation: Channel transport of the owning agent
            message: Placeholder message the answer is written into
            tool_executor: Executes tool calls the run asks for
            on_dispose: Called once with this handler when it is done
            flush_interval: Minimum seconds between partial updates
            max_tool_rounds: Tool call round trips allowed, 0 for no limit
            clock: Monotonic time source in seconds
        """
        self.runs = runs
        self.thread_id = thread_id
        self.conversation = conversation
        self.message = message
        self.tool_executor = tool_executor
        self.flush_interval = flush_interval
        self.max_tool_rounds = max_tool_rounds

        self._stream = stream
        self._on_dispose = on_dispose
        self._clock = clock

        self.state = HandlerState.STREAMING
        self.run_id: str | None = None
        self.message_text = ""
        self.error_message: str | None = None

        self._final_text: str | None = None
        self._last_flush: float | None = None
        self._tool_rounds = 0
        self._stop_requested = False
        self._disposed = False
        self._task: asyncio.Task | None = None

        self.logger = logger.child(f"{message.conversation_id}:{message.id}")

        self.conversation.on(STOP_GENERATING, self.handle_stop_generating)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_done(self) -> bool:
        return self._disposed

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        """Launch the consumption loop as a task and return it."""
        if self._task is None:
            self._task = asyncio.create_task(
                self.run(), name=f"response-{self.message.id}"
            )
        return self._task

    # ------------------------------------------------------------------
    # Consumption loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Consume the run until it reaches a terminal state.

        Every suspension for tool outputs yields a new stream from the
        adapter; the loop continues on it with the same event handling.
        """
        stream: EventStream | None = self._stream

        try:
            while stream is not None:
                outputs = await self._consume(stream)
                stream = None

                if self.is_terminal:
                    break

                if outputs is None:
                    raise RunStreamError("Run stream ended without a terminal event")

                stream = self._resume(outputs)

        except Exception as e:
            self.logger.error("An error occurred during the run", e)
            await self._fail(str(e) or type(e).__name__)

        finally:
            # A stop request disposes from its own listener once the engine
            # cancel and the indicator update are done.
            if not self._stop_requested:
                self.dispose()

    async def _consume(self, stream: EventStream) -> list[ToolOutput] | None:
        """
        Process one stream.

        Returns:
            The tool outputs to resubmit if the run suspended, else None
        """
        try:
            async for event in stream:
                if self.is_terminal:
                    break

                if isinstance(event, RunRequiresAction):
                    return await self._handle_requires_action(event)

                await self._handle_event(event)

                if self.is_terminal:
                    break
        finally:
            await stream.aclose()

        return None

    async def _handle_event(self, event: RunEvent) -> None:
        if isinstance(event, RunCreated):
            self._record_run_id(event.run_id)
            self.logger.debug(f"Run created: {event.run_id}")

        elif isinstance(event, MessageDelta):
            await self._append_delta(event.text)

        elif isinstance(event, MessageCompleted):
            if event.text is not None:
                self._final_text = event.text

        elif isinstance(event, RunStepCreated):
            if event.step_type == "message_creation":
                await self._send_indicator(IndicatorState.GENERATING)

        elif isinstance(event, RunCompleted):
            self._record_run_id(event.run_id)
            await self._complete()

        elif isinstance(event, RunFailed):
            await self._fail(event.message)

        elif isinstance(event, RunCancelled):
            await self._cancelled_by_engine()

    def _record_run_id(self, run_id: str) -> None:
        if self.run_id is None:
            self.run_id = run_id
        elif run_id != self.run_id:
            self.logger.warning(f"Ignoring run id {run_id}, already bound to {self.run_id}")

    async def _append_delta(self, text: str) -> None:
        self.message_text += text

        now = self._clock()
        if self._last_flush is not None and now - self._last_flush < self.flush_interval:
            return

        self._last_flush = now
        try:
            await self.conversation.partial_update_message(self.message.id, self.message_text)
        except Exception as e:
            self.logger.error("Failed to send partial update", e)

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _handle_requires_action(self, event: RunRequiresAction) -> list[ToolOutput] | None:
        self._record_run_id(event.run_id)

        self._tool_rounds += 1
        if self.max_tool_rounds and self._tool_rounds > self.max_tool_rounds:
            self.logger.warning(f"Run exceeded {self.max_tool_rounds} tool call rounds")
            await self._cancel_engine_run()
            await self._fail(f"Stopped after {self.max_tool_rounds} rounds of tool calls")
            return None

        await self._send_indicator(IndicatorState.EXTERNAL_SOURCES)

        self.logger.info(f"Run requested {len(event.tool_calls)} tool call(s)")
        outputs = await self.tool_executor.execute_all(event.tool_calls)

        if self.is_terminal:
            return None

        self.state = HandlerState.AWAITING_TOOL_OUTPUTS
        return outputs

    def _resume(self, outputs: list[ToolOutput]) -> EventStream:
        if not outputs:
            raise RunStreamError("Run requested tool outputs without any tool calls")

        self.state = HandlerState.STREAMING
        self.logger.debug(f"Submitting {len(outputs)} tool output(s) to run {self.run_id}")
        return self.runs.resume_with_tool_outputs(self.thread_id, self.run_id, outputs)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _enter_terminal(self, state: HandlerState) -> bool:
        """Move to a terminal state; False if another one was reached first."""
        if self.is_terminal:
            return False
        self.state = state
        return True

    async def _complete(self) -> None:
        if not self._enter_terminal(HandlerState.COMPLETED):
            return

        text = self._final_text if self._final_text is not None else self.message_text
        await self._write_final_text(text)
        await self._send_indicator(IndicatorState.CLEAR)
        self.logger.info(f"Run completed ({len(text)} chars)")

    async def _fail(self, detail: str | None) -> None:
        """Show the failure in the message. Never raises."""
        if not self._enter_terminal(HandlerState.FAILED):
            return

        self.error_message = detail or ERROR_TEXT
        self.logger.warning(f"Run failed: {self.error_message}")

        await self._send_indicator(IndicatorState.ERROR)
        text = f"{ERROR_TEXT}: {detail}" if detail else ERROR_TEXT
        await self._write_final_text(text)

    async def _cancelled_by_engine(self) -> None:
        if not self._enter_terminal(HandlerState.CANCELLED):
            return

        self.logger.info("Run was cancelled by the engine")
        await self._send_indicator(IndicatorState.CLEAR)

    async def handle_stop_generating(self, signal: StopSignal) -> None:
        """
        Handle a "stop generating" request for this handler's message.

        Requests for other messages, or arriving after the handler
        finished, are ignored.
        """
        if signal.message_id != self.message.id:
            return

        await self.cancel(f"Stop generating for message {self.message.id}")

    async def cancel(self, reason: str = "Cancelled") -> None:
        """
        Cancel the answer in flight and release the handler.

        Cancels the engine run (best effort), clears the indicator so the
        message loses its stop button, then disposes. A handler that
        already reached a terminal state is left to finish its own task.
        """
        if self._disposed:
            return
        if not self._enter_terminal(HandlerState.CANCELLED):
            return

        self._stop_requested = True
        self.logger.info(reason)

        try:
            await self._cancel_engine_run()
            await self._send_indicator(IndicatorState.CLEAR)
        finally:
            self.dispose()

    async def _cancel_engine_run(self) -> None:
        if not self.run_id:
            return
        try:
            await self.runs.cancel_run(self.thread_id, self.run_id)
        except Exception as e:
            self.logger.error("Error cancelling run", e)

    # ------------------------------------------------------------------
    # Transport writes (best effort)
    # ------------------------------------------------------------------

    async def _send_indicator(self, state: IndicatorState) -> None:
        try:
            await self.conversation.send_indicator(self.message, state)
        except Exception as e:
            self.logger.error(f"Failed to send {state.value} indicator", e)

    async def _write_final_text(self, text: str) -> None:
        try:
            await self.conversation.update_message(self.message.id, text)
        except Exception as e:
            self.logger.error("Failed to update message", e)

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """
        Release the handler. Safe to call any number of times.
        """
        if self._disposed:
            return
        self._disposed = True

        if not self.is_terminal:
            self.state = HandlerState.CANCELLED

        self.conversation.off(STOP_GENERATING, self.handle_stop_generating)

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self.logger.debug(f"Disposed in state {self.state.value}")
        self._on_dispose(self)
