"""
Slack Event Handlers
====================

Routes Slack events to the agents.

Event Types:
- message: new channel/DM messages, fanned out to the channel's agent
- block action `stop_generating`: the stop button on an assistant message
- /writebot command: start, stop or inspect the agent of a channel

Slack sends every event once per app. The handlers only translate the
payload and publish it on the ConversationEvents fan-out; the agent (or
response handler) listening on that channel decides what to do with it.
Edits, deletions and other message subtypes are not new messages and are
dropped here.
"""

from slack_bolt.async_app import AsyncAck, AsyncApp, AsyncRespond

from writebot.agent.registry import AgentRegistry, AgentStatus
from writebot.slack.transport import (
    MESSAGE_NEW,
    STOP_ACTION_ID,
    STOP_GENERATING,
    ConversationEvents,
    StopSignal,
    message_from_event,
)
from writebot.utils.logger import Logger

logger = Logger("Handlers")

COMMAND = "/writebot"

# Message subtypes that still represent a newly posted message
_NEW_MESSAGE_SUBTYPES = {None, "bot_message", "file_share", "thread_broadcast"}

HELP_TEXT = """*AI Writing Assistant*

*Commands:*
- `/writebot start` - Start the assistant in this channel
- `/writebot stop` - Stop the assistant in this channel
- `/writebot status` - Show whether the assistant is running here

Once started, the assistant answers every message in the channel.
Use the *Stop generating* button on an answer to interrupt it."""

# Set during registration
_registry: AgentRegistry | None = None
_events: ConversationEvents | None = None


def register_handlers(
    app: AsyncApp,
    registry: AgentRegistry,
    events: ConversationEvents
) -> None:
    """
    Register all event handlers with the Slack app.

    Args:
        app: The Bolt app instance
        registry: Agents by channel
        events: Fan-out the agents listen on
    """
    global _registry, _events
    _registry = registry
    _events = events

    app.event("message")(_handle_message)
    app.action(STOP_ACTION_ID)(_handle_stop_generating)
    app.command(COMMAND)(_handle_command)

    logger.info("Registered Slack event handlers")


async def _handle_message(event: dict) -> None:
    """Publish a new channel message to the channel's listeners."""
    if _events is None:
        logger.error("Handlers not registered")
        return

    if event.get("subtype") not in _NEW_MESSAGE_SUBTYPES:
        return

    message = message_from_event(event)
    if not message.conversation_id:
        return

    logger.debug(f"Message in {message.conversation_id} (ai_generated={message.ai_generated})")
    await _events.emit(MESSAGE_NEW, message.conversation_id, message)


async def _handle_stop_generating(ack: AsyncAck, body: dict) -> None:
    """Publish a stop request for the message whose button was clicked."""
    await ack()

    if _events is None:
        logger.error("Handlers not registered")
        return

    channel_id = (body.get("channel") or {}).get("id")
    message_ts = (body.get("message") or {}).get("ts")
    if not channel_id or not message_ts:
        logger.warning("Stop action without channel or message")
        return

    signal = StopSignal(
        conversation_id=channel_id,
        message_id=message_ts,
        user_id=(body.get("user") or {}).get("id")
    )
    logger.info(f"Stop generating requested for {message_ts} in {channel_id}")
    await _events.emit(STOP_GENERATING, channel_id, signal)


async def _handle_command(ack: AsyncAck, command: dict, respond: AsyncRespond) -> None:
    """
    Handle the /writebot slash command.

    - /writebot start  - start the channel's agent
    - /writebot stop   - stop it
    - /writebot status - connected / connecting / disconnected
    """
    await ack()

    if _registry is None:
        await respond("Sorry, I'm still starting up.")
        return

    channel_id = command.get("channel_id", "")
    action = command.get("text", "").strip().lower()
    logger.info(f"{COMMAND} {action or 'help'} in {channel_id}")

    if action == "start":
        try:
            status = await _registry.start(channel_id)
        except Exception as e:
            logger.error("Failed to start AI Agent", e)
            await respond(f"Failed to start AI Agent: {e}")
            return
        if status is AgentStatus.DISCONNECTED:
            await respond("AI Agent is shutting down in this channel, try again in a moment.")
            return
        await respond(f"AI Agent started ({status.value}).")

    elif action == "stop":
        try:
            stopped = await _registry.stop(channel_id)
        except Exception as e:
            logger.error("Failed to stop AI Agent", e)
            await respond(f"Failed to stop AI Agent: {e}")
            return
        await respond("AI Agent stopped." if stopped else "No AI Agent is running in this channel.")

    elif action == "status":
        await respond(f"AI Agent status: {_registry.status(channel_id).value}")

    elif action in ("", "help"):
        await respond(HELP_TEXT)

    else:
        await respond(f"Unknown command: `{action}`. Try `{COMMAND} help`")
