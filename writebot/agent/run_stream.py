"""
Run Stream Adapter
==================

Wraps the OpenAI Assistants API so the rest of the bot deals with one
kind of object: an EventStream of typed run events.

A run is started with `start_run` and, after every `requires_action`
suspension, continued with `resume_with_tool_outputs`. Both return the
same EventStream type, so the response handler's loop does not care
whether it is reading a fresh run or a resumed one.

EventStream properties:
- Lazy: no request is made until iteration starts
- Single pass: iterating twice raises RunStreamError
- Finite: stops after a terminal or action-required event, or when the
  connection closes
- No retries: a broken connection surfaces as an exception or as a stream
  that ends early, and the response handler treats both as failures

The adapter also exposes the other engine calls an agent needs (assistant
and thread creation, adding user messages, cancelling and cleanup).
"""

from typing import Any, AsyncIterator, Awaitable, Callable

from openai import AsyncOpenAI

from writebot.agent.events import (
    STREAM_ENDING_EVENTS,
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
from writebot.agent.tools_executor import ToolCall, ToolOutput
from writebot.utils.logger import Logger

logger = Logger("RunStream")


class RunStreamError(RuntimeError):
    """Raised when a run stream is misused or ends without a terminal event."""


def _text_parts(content: Any) -> list[str]:
    parts = []
    for part in content or []:
        if getattr(part, "type", None) != "text":
            continue
        text = getattr(part, "text", None)
        value = getattr(text, "value", None) if text is not None else None
        if value:
            parts.append(value)
    return parts


def translate_event(raw: Any) -> RunEvent | None:
    """
    Translate one Assistants stream event into a RunEvent.

    Returns None for events the bot does not act on.
    """
    name = getattr(raw, "event", None)
    data = getattr(raw, "data", None)

    if name == "thread.run.created":
        return RunCreated(run_id=data.id)

    if name == "thread.message.delta":
        parts = _text_parts(data.delta.content)
        if not parts:
            return None
        return MessageDelta(text="".join(parts))

    if name == "thread.message.completed":
        parts = _text_parts(data.content)
        return MessageCompleted(text=parts[0] if parts else None)

    if name == "thread.run.step.created":
        return RunStepCreated(step_type=data.step_details.type)

    if name == "thread.run.requires_action":
        action = data.required_action
        if action is None or action.type != "submit_tool_outputs":
            return None
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments
            )
            for call in action.submit_tool_outputs.tool_calls
        ]
        return RunRequiresAction(run_id=data.id, tool_calls=tool_calls)

    if name == "thread.run.completed":
        return RunCompleted(run_id=data.id)

    if name == "thread.run.failed":
        last_error = getattr(data, "last_error", None)
        message = getattr(last_error, "message", None) or "Run failed"
        return RunFailed(run_id=data.id, message=message)

    if name == "thread.run.expired":
        return RunFailed(run_id=data.id, message="Run expired")

    if name == "thread.run.incomplete":
        details = getattr(data, "incomplete_details", None)
        reason = getattr(details, "reason", None)
        message = f"Run incomplete: {reason}" if reason else "Run incomplete"
        return RunFailed(run_id=data.id, message=message)

    if name == "thread.run.cancelled":
        return RunCancelled(run_id=data.id)

    if name == "error":
        return RunFailed(run_id=None, message=getattr(data, "message", None) or "Stream error")

    return None


class EventStream:
    """
    A lazy, single-pass sequence of RunEvents.

    Example:
        stream = runs.start_run(thread_id, assistant_id)
        try:
            async for event in stream:
                ...
        finally:
            await stream.aclose()
    """

    def __init__(self, open_stream: Callable[[], Awaitable[Any]], label: str = "run"):
        """
        Args:
            open_stream: Coroutine function returning the raw async stream
            label: Short description used in log lines
        """
        self._open_stream = open_stream
        self.label = label
        self._raw: Any = None
        self._events: AsyncIterator[RunEvent] | None = None
        self._raw_closed = False

    def __aiter__(self) -> AsyncIterator[RunEvent]:
        if self._events is not None:
            raise RunStreamError(f"Event stream for {self.label} can only be consumed once")
        self._events = self._iterate()
        return self._events

    async def _iterate(self) -> AsyncIterator[RunEvent]:
        try:
            self._raw = await self._open_stream()
            async for raw_event in self._raw:
                event = translate_event(raw_event)
                if event is None:
                    continue
                yield event
                if isinstance(event, STREAM_ENDING_EVENTS):
                    break
        finally:
            await self._close_raw()

    async def _close_raw(self) -> None:
        if self._raw_closed or self._raw is None:
            return
        self._raw_closed = True
        try:
            await self._raw.close()
        except Exception as e:
            logger.warning(f"Error closing {self.label} stream: {e}")

    async def aclose(self) -> None:
        """Stop iteration and release the underlying connection."""
        if self._events is not None:
            await self._events.aclose()
        await self._close_raw()


class RunStreamAdapter:
    """
    Assistant engine facade over `AsyncOpenAI().beta`.

    Example:
        runs = RunStreamAdapter(AsyncOpenAI(api_key=key))
        assistant_id = await runs.create_assistant(name, instructions, model, tools)
        thread_id = await runs.create_thread()

        await runs.add_user_message(thread_id, "Draft an intro")
        stream = runs.start_run(thread_id, assistant_id)
    """

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    async def create_assistant(
        self,
        name: str,
        instructions: str,
        model: str,
        tools: list[dict],
        temperature: float | None = None
    ) -> str:
        params: dict[str, Any] = {
            "name": name,
            "instructions": instructions,
            "model": model,
            "tools": tools,
        }
        if temperature is not None:
            params["temperature"] = temperature

        assistant = await self.client.beta.assistants.create(**params)
        logger.info(f"Created assistant {assistant.id} ({model})")
        return assistant.id

    async def create_thread(self) -> str:
        thread = await self.client.beta.threads.create()
        logger.debug(f"Created thread {thread.id}")
        return thread.id

    async def add_user_message(self, thread_id: str, text: str) -> None:
        await self.client.beta.threads.messages.create(
            thread_id=thread_id,
            role="user",
            content=text
        )

    def start_run(
        self,
        thread_id: str,
        assistant_id: str,
        instructions: str | None = None
    ) -> EventStream:
        """
        Create a run on the thread and stream its events.

        Args:
            thread_id: The thread holding the conversation
            assistant_id: The assistant to run
            instructions: Optional per-run instructions overriding the
                assistant's defaults
        """
        params: dict[str, Any] = {
            "thread_id": thread_id,
            "assistant_id": assistant_id,
            "stream": True,
        }
        if instructions is not None:
            params["instructions"] = instructions

        async def _open():
            return await self.client.beta.threads.runs.create(**params)

        return EventStream(_open, label=f"run on {thread_id}")

    def resume_with_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: list[ToolOutput]
    ) -> EventStream:
        """Submit a complete batch of tool outputs and stream the continued run."""
        tool_outputs = [output.to_openai() for output in outputs]

        async def _open():
            return await self.client.beta.threads.runs.submit_tool_outputs(
                run_id=run_id,
                thread_id=thread_id,
                tool_outputs=tool_outputs,
                stream=True
            )

        return EventStream(_open, label=f"run {run_id}")

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        await self.client.beta.threads.runs.cancel(run_id=run_id, thread_id=thread_id)
        logger.info(f"Cancelled run {run_id}")

    async def delete_assistant(self, assistant_id: str) -> None:
        await self.client.beta.assistants.delete(assistant_id)

    async def delete_thread(self, thread_id: str) -> None:
        await self.client.beta.threads.delete(thread_id)
