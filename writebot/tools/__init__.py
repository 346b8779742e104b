"""
Assistant Tools
===============

Function tools the assistant can call mid-run.

The assistant engine describes a tool call as a name plus a raw JSON
argument string. The registry turns that into a JSON string output the
engine can read back, and never raises: a bad argument payload, an
unknown tool or a crashing tool all become `{"error": ...}` payloads, so
a failed tool never aborts the run. The assistant can react to the error
in its answer instead.

This module provides:
- ToolResult: outcome of a tool execution
- AssistantTool: a named function tool with a JSON schema
- ToolRegistry: lookup and safe execution by name
- build_tool_registry: the registry with every configured tool
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from writebot.utils.logger import Logger

if TYPE_CHECKING:
    from writebot.utils.config import TavilyConfig

logger = Logger("Tools")

# Output returned whenever the arguments cannot be understood or the tool
# raises unexpectedly.
TOOL_CALL_FAILED = {"error": "failed to call tool"}


@dataclass
class ToolResult:
    """
    Outcome of a tool execution.

    Attributes:
        success: Whether the tool produced a usable result
        data: Result payload. Strings are passed through untouched so
            provider JSON reaches the assistant verbatim.
        error: Error message if success is False
        extra: Additional error fields, e.g. "details" or "message"
    """
    success: bool
    data: Any = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_output(self) -> str:
        """Serialize for submission back to the assistant engine."""
        if self.success:
            if isinstance(self.data, str):
                return self.data
            return json.dumps(self.data, default=str)
        return json.dumps({"error": self.error, **self.extra}, default=str)


@dataclass
class AssistantTool:
    """
    A function tool exposed to the assistant.

    Attributes:
        name: Unique identifier for the tool
        description: What the tool does (shown to the assistant)
        parameters: JSON Schema for the arguments
        execute: Async function that runs the tool
    """
    name: str
    description: str
    parameters: dict
    execute: Callable[[dict], Awaitable[ToolResult]]

    def to_openai_tool(self) -> dict:
        """Convert to the Assistants API tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class ToolRegistry:
    """
    Registry of the tools an assistant may call.

    Example:
        registry = ToolRegistry()
        registry.register(web_search_tool)

        output = await registry.execute("web_search", '{"query": "news"}')
        # output is always a JSON string
    """

    def __init__(self):
        self._tools: dict[str, AssistantTool] = {}

    def register(self, tool: AssistantTool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> AssistantTool | None:
        return self._tools.get(name)

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_openai_tools(self) -> list[dict]:
        """All registered tools in Assistants API format."""
        return [tool.to_openai_tool() for tool in self._tools.values()]

    async def execute(self, name: str, raw_args: str) -> str:
        """
        Execute a tool by name with its raw JSON arguments.

        Args:
            name: The tool name requested by the assistant
            raw_args: The argument payload exactly as the engine sent it

        Returns:
            A JSON string: the tool output or an error payload
        """
        tool = self.get(name)
        if tool is None:
            logger.warning(f"Assistant requested unknown tool: {name}")
            return json.dumps({"error": f"Unknown tool: {name}"})

        try:
            params = json.loads(raw_args) if raw_args else {}
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse arguments for {name}", e)
            return json.dumps(TOOL_CALL_FAILED)

        if not isinstance(params, dict):
            logger.error(f"Arguments for {name} are not an object")
            return json.dumps(TOOL_CALL_FAILED)

        try:
            logger.info(f"Executing tool: {name}")
            result = await tool.execute(params)
        except Exception as e:
            logger.error(f"Tool execution failed: {name}", e)
            return json.dumps(TOOL_CALL_FAILED)

        return result.to_output()


def build_tool_registry(tavily: "TavilyConfig") -> ToolRegistry:
    """Create a registry holding every tool the writing assistant offers."""
    from writebot.tools.web_search import create_web_search_tool

    registry = ToolRegistry()
    registry.register(create_web_search_tool(tavily))

    logger.info(f"Registered {len(registry.list_names())} tools")
    return registry


__all__ = [
    "AssistantTool",
    "ToolResult",
    "ToolRegistry",
    "TOOL_CALL_FAILED",
    "build_tool_registry",
]
