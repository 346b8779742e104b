"""
Agent System
============

Per-channel orchestration of streaming assistant runs.

This module provides:
- Agent: the writing assistant of one channel
- ResponseHandler: drives one run into one Slack message
- RunStreamAdapter: typed event streams over the Assistants API
- ToolExecutor: executes the tool calls a run is waiting on
- AgentRegistry: active agents per channel with idle eviction
- create_agent: builds the agent for a channel
"""

from writebot.agent.core import Agent
from writebot.agent.factory import create_agent
from writebot.agent.registry import AgentRegistry, AgentStatus
from writebot.agent.response_handler import HandlerState, ResponseHandler
from writebot.agent.run_stream import EventStream, RunStreamAdapter, RunStreamError
from writebot.agent.tools_executor import ToolCall, ToolExecutor, ToolOutput

__all__ = [
    "Agent",
    "AgentRegistry",
    "AgentStatus",
    "EventStream",
    "HandlerState",
    "ResponseHandler",
    "RunStreamAdapter",
    "RunStreamError",
    "ToolCall",
    "ToolExecutor",
    "ToolOutput",
    "create_agent",
]
