"""
Slack Integration
=================

- Bolt app and Socket Mode handler
- Event handlers (messages, stop button, slash command)
- Per-channel transport used by the agents
"""

from writebot.slack.app import create_slack_app, create_socket_handler
from writebot.slack.handlers import register_handlers
from writebot.slack.transport import ConversationEvents, SlackConversation

__all__ = [
    "ConversationEvents",
    "SlackConversation",
    "create_slack_app",
    "create_socket_handler",
    "register_handlers",
]
