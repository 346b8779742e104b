"""
Run Events
==========

The closed set of events a streaming assistant run produces.

The OpenAI Assistants stream tags each event with a string such as
"thread.message.delta". The run stream adapter translates those into the
dataclasses below so the response handler can dispatch on type. Anything
outside this set is dropped by the adapter.

Lifecycle of one run:

    RunCreated
        │
        ├── RunStepCreated / MessageDelta* / MessageCompleted
        │
        ├── RunRequiresAction ── (tool outputs submitted, new stream) ──┐
        │                                                                │
        │   ◄────────────────────────────────────────────────────────────┘
        ▼
    RunCompleted | RunFailed | RunCancelled
"""

from dataclasses import dataclass, field
from typing import Union

from writebot.agent.tools_executor import ToolCall


@dataclass(frozen=True)
class RunCreated:
    run_id: str


@dataclass(frozen=True)
class MessageDelta:
    """A fragment of assistant text."""
    text: str


@dataclass(frozen=True)
class MessageCompleted:
    """
    An assistant message finished.

    `text` is the full message content when the engine provides it; it
    replaces whatever was accumulated from deltas.
    """
    text: str | None = None


@dataclass(frozen=True)
class RunStepCreated:
    """A run step started; `step_type` is "message_creation" or "tool_calls"."""
    step_type: str


@dataclass(frozen=True)
class RunRequiresAction:
    """The run is suspended until outputs for every tool call are submitted."""
    run_id: str
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class RunCompleted:
    run_id: str


@dataclass(frozen=True)
class RunFailed:
    run_id: str | None
    message: str = "Run failed"


@dataclass(frozen=True)
class RunCancelled:
    run_id: str


RunEvent = Union[
    RunCreated,
    MessageDelta,
    MessageCompleted,
    RunStepCreated,
    RunRequiresAction,
    RunCompleted,
    RunFailed,
    RunCancelled,
]

# Events after which the engine sends nothing more on the current stream.
STREAM_ENDING_EVENTS = (RunRequiresAction, RunCompleted, RunFailed, RunCancelled)
