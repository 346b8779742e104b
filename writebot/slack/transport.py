"""
Slack Conversation Transport
============================

Everything the agents need from Slack, behind a small per-channel handle.

An agent talks to its channel through a SlackConversation:
- post messages (the placeholder the assistant answer streams into)
- update messages, partially while streaming and once at the end
- delete messages (a placeholder whose agent went away)
- show status indicators on a message (thinking, writing, searching...)
- subscribe to channel events: new messages and "stop generating" clicks

Slack delivers events once per app, not per agent, so Bolt handlers feed
them into a ConversationEvents fan-out keyed by channel, and each
SlackConversation registers its listeners there. Disconnecting a
conversation removes every listener it registered.

Rendering:
    Slack only displays a message's `text` when it has no blocks, and the
    stop button needs blocks, so assistant messages are rendered as:

        section(s)  the answer text, split into 3000-character chunks
        context     the current status indicator, if any
        actions     a "Stop generating" button while the answer is in flight
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from writebot.utils.logger import Logger

logger = Logger("SlackTransport")

# Event types published on ConversationEvents
MESSAGE_NEW = "message.new"
STOP_GENERATING = "ai_indicator.stop"

# Slack message metadata event type marking assistant output
AI_GENERATED_EVENT = "ai_generated"

STOP_ACTION_ID = "stop_generating"

# Slack limit for the text of a single section block
SECTION_TEXT_LIMIT = 3000


class IndicatorState(str, Enum):
    """Status indicators shown on an assistant message."""
    THINKING = "AI_STATE_THINKING"
    GENERATING = "AI_STATE_GENERATING"
    EXTERNAL_SOURCES = "AI_STATE_EXTERNAL_SOURCES"
    ERROR = "AI_STATE_ERROR"
    CLEAR = "AI_STATE_CLEAR"


INDICATOR_LABELS = {
    IndicatorState.THINKING: ":thought_balloon: Thinking...",
    IndicatorState.GENERATING: ":writing_hand: Writing...",
    IndicatorState.EXTERNAL_SOURCES: ":mag: Checking external sources...",
    IndicatorState.ERROR: ":warning: Something went wrong",
}


@dataclass(frozen=True)
class MessageRef:
    """
    A posted Slack message.

    Attributes:
        id: The message timestamp (Slack's message id within a channel)
        conversation_id: The channel ID
    """
    id: str
    conversation_id: str


@dataclass
class ChatMessage:
    """
    An inbound channel message.

    Attributes:
        id: Message timestamp
        conversation_id: The channel ID
        text: Message text (may be empty)
        user_id: Author, if a user posted it
        ai_generated: True for assistant output and other bot posts
        custom: Metadata payload attached to the message
    """
    id: str
    conversation_id: str
    text: str = ""
    user_id: str | None = None
    ai_generated: bool = False
    custom: dict[str, Any] = field(default_factory=dict)

    @property
    def writing_task(self) -> str | None:
        task = self.custom.get("writing_task")
        return task if isinstance(task, str) and task else None


@dataclass(frozen=True)
class StopSignal:
    """A request to stop generating the answer in a message."""
    conversation_id: str
    message_id: str
    user_id: str | None = None


def message_from_event(event: dict) -> ChatMessage:
    """Build a ChatMessage from a Slack `message` event payload."""
    metadata = event.get("metadata") or {}
    ai_generated = (
        metadata.get("event_type") == AI_GENERATED_EVENT
        or bool(event.get("bot_id"))
    )

    return ChatMessage(
        id=event.get("ts", ""),
        conversation_id=event.get("channel", ""),
        text=event.get("text") or "",
        user_id=event.get("user"),
        ai_generated=ai_generated,
        custom=dict(metadata.get("event_payload") or {}),
    )


Listener = Callable[[Any], Awaitable[None]]


class ConversationEvents:
    """
    In-process fan-out of Slack events to per-channel listeners.

    Example:
        events = ConversationEvents()
        events.on(MESSAGE_NEW, "C123", agent.handle_message)

        await events.emit(MESSAGE_NEW, "C123", message)
    """

    def __init__(self):
        self._listeners: dict[tuple[str, str], list[Listener]] = defaultdict(list)

    def on(self, event_type: str, conversation_id: str, listener: Listener) -> None:
        self._listeners[(event_type, conversation_id)].append(listener)

    def off(self, event_type: str, conversation_id: str, listener: Listener) -> None:
        key = (event_type, conversation_id)
        listeners = self._listeners.get(key)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[key]

    def listener_count(self, event_type: str, conversation_id: str) -> int:
        return len(self._listeners.get((event_type, conversation_id), []))

    async def emit(self, event_type: str, conversation_id: str, payload: Any) -> None:
        """
        Deliver an event to every listener of the channel.

        Listeners run concurrently; a failing listener is logged and does
        not affect the others.
        """
        listeners = list(self._listeners.get((event_type, conversation_id), []))
        if not listeners:
            return

        results = await asyncio.gather(
            *(listener(payload) for listener in listeners),
            return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Listener for {event_type} in {conversation_id} failed", result)


@dataclass
class _MessageView:
    """What an assistant message currently shows."""
    text: str = ""
    indicator: IndicatorState | None = None
    active: bool = False

    def blocks(self) -> list[dict]:
        blocks: list[dict] = []

        for start in range(0, len(self.text), SECTION_TEXT_LIMIT):
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": self.text[start:start + SECTION_TEXT_LIMIT]}
            })

        label = INDICATOR_LABELS.get(self.indicator) if self.indicator else None
        if label and (self.active or self.indicator is IndicatorState.ERROR):
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": label}]
            })

        if self.active:
            blocks.append({
                "type": "actions",
                "elements": [{
                    "type": "button",
                    "action_id": STOP_ACTION_ID,
                    "text": {"type": "plain_text", "text": "Stop generating"},
                    "style": "danger"
                }]
            })

        return blocks

    def fallback_text(self) -> str:
        if self.text:
            return self.text
        return INDICATOR_LABELS.get(self.indicator, "...") if self.indicator else "..."


class SlackConversation:
    """
    Transport handle for one Slack channel, owned by one agent.

    Example:
        conversation = SlackConversation(client, events, "C123", "ai-bot-C123")
        await conversation.connect()

        placeholder = await conversation.send_message("", ai_generated=True)
        await conversation.send_indicator(placeholder, IndicatorState.THINKING)
        await conversation.partial_update_message(placeholder.id, "Once upon")
        await conversation.update_message(placeholder.id, "Once upon a time.")
        await conversation.send_indicator(placeholder, IndicatorState.CLEAR)
    """

    def __init__(
        self,
        client: AsyncWebClient,
        events: ConversationEvents,
        conversation_id: str,
        user_id: str
    ):
        """
        Args:
            client: Slack Web API client
            events: Shared event fan-out
            conversation_id: The Slack channel ID
            user_id: The agent's participant id, stamped on its messages
        """
        self.client = client
        self.events = events
        self.conversation_id = conversation_id
        self.user_id = user_id

        self._listeners: list[tuple[str, Listener]] = []
        self._views: dict[str, _MessageView] = {}
        self._joined = False
        self.connected = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Make sure the bot is a member of the channel.

        Joining only works for public channels; DMs and private channels
        need the bot invited, so a failed join is logged and ignored.
        """
        try:
            response = await self.client.conversations_join(channel=self.conversation_id)
            self._joined = response.get("warning") != "already_in_channel"
        except SlackApiError as e:
            logger.warning(f"Could not join {self.conversation_id}: {e.response.get('error')}")

        self.connected = True
        logger.info(f"Connected {self.user_id} to {self.conversation_id}")

    async def disconnect(self) -> None:
        """Remove every listener and leave the channel if connect() joined it."""
        for event_type, listener in self._listeners:
            self.events.off(event_type, self.conversation_id, listener)
        self._listeners.clear()
        self._views.clear()

        if self._joined:
            self._joined = False
            try:
                await self.client.conversations_leave(channel=self.conversation_id)
            except SlackApiError as e:
                logger.warning(f"Could not leave {self.conversation_id}: {e.response.get('error')}")

        self.connected = False
        logger.info(f"Disconnected {self.user_id} from {self.conversation_id}")

    def on(self, event_type: str, listener: Listener) -> None:
        self.events.on(event_type, self.conversation_id, listener)
        self._listeners.append((event_type, listener))

    def off(self, event_type: str, listener: Listener) -> None:
        self.events.off(event_type, self.conversation_id, listener)
        if (event_type, listener) in self._listeners:
            self._listeners.remove((event_type, listener))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, text: str, ai_generated: bool = False) -> MessageRef:
        """
        Post a message to the channel.

        Assistant messages (`ai_generated=True`) are tagged with message
        metadata and start out with a stop button.
        """
        view = _MessageView(text=text, active=ai_generated)
        params: dict[str, Any] = {
            "channel": self.conversation_id,
            "text": view.fallback_text(),
            "blocks": view.blocks(),
        }
        if ai_generated:
            params["metadata"] = {
                "event_type": AI_GENERATED_EVENT,
                "event_payload": {"agent_id": self.user_id}
            }

        response = await self.client.chat_postMessage(**params)
        message = MessageRef(
            id=response["ts"],
            conversation_id=response.get("channel", self.conversation_id)
        )

        if ai_generated:
            self._views[message.id] = view
        return message

    async def partial_update_message(self, message_id: str, text: str) -> None:
        """Replace the text of an in-flight assistant message."""
        view = self._views.get(message_id)
        if view is None:
            # Finished or cleared messages keep their last rendering
            logger.debug(f"No live view for {message_id}, skipping partial update")
            return
        view.text = text
        await self._render(message_id, view)

    async def update_message(self, message_id: str, text: str) -> None:
        """Write the final text of an assistant message and drop its stop button."""
        view = self._views.pop(message_id, None) or _MessageView()
        view.text = text
        view.active = False
        await self._render(message_id, view)

    async def delete_message(self, message_id: str) -> None:
        """Delete a message the agent posted."""
        self._views.pop(message_id, None)
        await self.client.chat_delete(channel=self.conversation_id, ts=message_id)

    async def send_indicator(self, message: MessageRef, state: IndicatorState) -> None:
        """Show (or with CLEAR remove) a status indicator on a message."""
        view = self._views.get(message.id)
        if view is None:
            logger.debug(f"No live view for {message.id}, skipping {state.value}")
            return

        if state is IndicatorState.CLEAR:
            view.indicator = None
            view.active = False
            del self._views[message.id]
        else:
            view.indicator = state
            if state is IndicatorState.ERROR:
                view.active = False

        await self._render(message.id, view)

    async def _render(self, message_id: str, view: _MessageView) -> None:
        await self.client.chat_update(
            channel=self.conversation_id,
            ts=message_id,
            text=view.fallback_text(),
            blocks=view.blocks()
        )
