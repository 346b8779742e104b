"""
Tool Executor
=============

Runs the batch of tool calls an assistant run is suspended on.

When a run reaches `requires_action`, the engine hands over every pending
call at once and will only continue after receiving an output for each of
them. The executor therefore:

1. Runs every call in the batch, in order
2. Turns any failure into an error output for that call
3. Returns exactly one output per call, keyed by the original call id

A batch is never partially resubmitted; the response handler submits the
whole list in a single resume call.
"""

import json
from dataclasses import dataclass

from writebot.tools import TOOL_CALL_FAILED, ToolRegistry
from writebot.utils.logger import Logger

logger = Logger("ToolExecutor")


@dataclass(frozen=True)
class ToolCall:
    """
    A pending tool call from the assistant engine.

    Attributes:
        id: The tool call ID (outputs are matched on it)
        name: The tool name
        arguments: The raw JSON argument payload, unparsed
    """
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolOutput:
    """
    Output for one tool call, ready for submission.

    Attributes:
        tool_call_id: The original tool call ID
        output: JSON string returned to the assistant
    """
    tool_call_id: str
    output: str

    def to_openai(self) -> dict:
        """Format as an entry of the `tool_outputs` submission."""
        return {"tool_call_id": self.tool_call_id, "output": self.output}


class ToolExecutor:
    """
    Executes pending tool calls against a tool registry.

    Example:
        executor = ToolExecutor(registry)
        outputs = await executor.execute_all(event.tool_calls)
        stream = runs.resume_with_tool_outputs(thread_id, run_id, outputs)
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute_one(self, tool_call: ToolCall) -> ToolOutput:
        """
        Execute a single tool call. Never raises.
        """
        logger.info(f"Executing tool call {tool_call.id}: {tool_call.name}")

        try:
            output = await self.registry.execute(tool_call.name, tool_call.arguments)
        except Exception as e:
            logger.error(f"Error performing tool call {tool_call.id}", e)
            output = json.dumps(TOOL_CALL_FAILED)

        return ToolOutput(tool_call_id=tool_call.id, output=output)

    async def execute_all(self, tool_calls: list[ToolCall]) -> list[ToolOutput]:
        """
        Execute a batch of tool calls sequentially.

        Returns:
            One ToolOutput per call, in the same order
        """
        outputs = []

        for tool_call in tool_calls:
            outputs.append(await self.execute_one(tool_call))

        logger.debug(f"Collected {len(outputs)} tool outputs")
        return outputs

    def get_available_tools(self) -> list[str]:
        return self.registry.list_names()
