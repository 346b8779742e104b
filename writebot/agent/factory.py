"""
Agent Factory
=============

Creates the agent for a Slack channel.

Each channel gets its own participant id, derived from the channel id,
which tags every message the agent posts. Creating the agent connects
its transport handle (joining the channel when possible); disposing the
agent reverses that.
"""

from slack_sdk.web.async_client import AsyncWebClient

from writebot.agent.core import Agent
from writebot.slack.transport import ConversationEvents, SlackConversation
from writebot.utils.config import Config
from writebot.utils.logger import Logger

logger = Logger("AgentFactory")


def agent_user_id(conversation_id: str) -> str:
    """Participant id of the agent bound to a channel."""
    return f"ai-bot-{conversation_id.replace('!', '')}"


async def create_agent(
    conversation_id: str,
    client: AsyncWebClient,
    events: ConversationEvents,
    config: Config
) -> Agent:
    """
    Create (but do not initialize) the agent for a channel.

    Args:
        conversation_id: The Slack channel ID
        client: Slack Web API client
        events: Shared Slack event fan-out
        config: Application configuration

    Returns:
        An Agent whose transport is connected; call `init()` next
    """
    conversation = SlackConversation(
        client=client,
        events=events,
        conversation_id=conversation_id,
        user_id=agent_user_id(conversation_id)
    )
    await conversation.connect()

    logger.info(f"Created agent {conversation.user_id} for {conversation_id}")
    return Agent(conversation, config)
