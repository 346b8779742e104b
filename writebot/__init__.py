"""
WriteBot - AI Writing Assistant for Slack
=========================================

Bridges Slack channels with OpenAI assistants. Each channel where the bot
is started gets its own agent, which answers messages by streaming an
assistant run into a Slack message, running web searches when the
assistant asks for them.

This package provides:
- Agent system: per-channel agents, streaming response handlers, registry
- Tools: web search for the assistant
- Slack integration: Bolt app, event routing, channel transport
"""

__version__ = "1.0.0"
