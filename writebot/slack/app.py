"""
Slack Bolt App
==============

Creates and configures the Slack Bolt application.

The bot connects over Socket Mode, so no public URL is needed. Required
bot scopes: chat:write, channels:history, groups:history, im:history,
channels:join, commands. Message metadata must be enabled in the app
settings for assistant messages to be recognised as such.
"""

from slack_bolt.async_app import AsyncApp
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

from writebot.utils.config import Config
from writebot.utils.logger import Logger

logger = Logger("SlackApp")


def create_slack_app(config: Config) -> AsyncApp:
    """Create the Bolt app with the bot credentials."""
    app = AsyncApp(
        token=config.slack.bot_token,
        signing_secret=config.slack.signing_secret,
    )

    logger.info("Slack Bolt app created")
    return app


def create_socket_handler(app: AsyncApp, config: Config) -> AsyncSocketModeHandler:
    """Create the Socket Mode handler that feeds Slack events to the app."""
    handler = AsyncSocketModeHandler(
        app=app,
        app_token=config.slack.app_token
    )

    logger.info("Socket Mode handler created")
    return handler
