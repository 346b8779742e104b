"""
Agent Registry
==============

Keeps track of the active agent of every channel.

Each channel is in one of four states:

    absent    no entry, no agent
    pending   an agent is being created and initialized
    active    the agent is running
    stopping  the agent is being disposed

Starting an agent claims the channel (absent → pending) before the first
await, so two concurrent start requests for the same channel can never
both create an agent. If creation fails, the claim is removed and nothing
is left registered.

Stopping claims the slot the same way (active → stopping), so overlapping
stops (a sweep and a /writebot stop) dispose the agent once, and the
channel cannot be restarted until the old agent has left it.

Idle agents are evicted by a periodic sweep, scheduled with APScheduler.
Eviction disposes the agent (and with it every active response handler)
before the record is removed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from writebot.utils.logger import Logger

if TYPE_CHECKING:
    from writebot.agent.core import Agent

logger = Logger("AgentRegistry")

SWEEP_JOB_ID = "agent-idle-sweep"


class SlotState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    STOPPING = "stopping"


class AgentStatus(str, Enum):
    """Externally visible status of a channel's agent."""
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"


@dataclass
class AgentSlot:
    state: SlotState
    agent: "Agent | None" = None


class AgentRegistry:
    """
    Registry of agents by channel ID.

    Example:
        registry = AgentRegistry(factory, inactivity=timedelta(hours=8))
        registry.start_sweeper(interval_seconds=5)

        await registry.start("C123")
        registry.status("C123")      # AgentStatus.CONNECTED
        await registry.stop("C123")

        await registry.shutdown()
    """

    def __init__(
        self,
        factory: Callable[[str], Awaitable["Agent"]],
        inactivity: timedelta = timedelta(hours=8),
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            factory: Creates the (uninitialized) agent for a channel
            inactivity: Idle time after which an agent is evicted
            clock: Time source compared with agent liveness timestamps
        """
        self.factory = factory
        self.inactivity = inactivity
        self._clock = clock
        self._slots: dict[str, AgentSlot] = {}
        self._scheduler: AsyncIOScheduler | None = None

    def __len__(self) -> int:
        return sum(1 for slot in self._slots.values() if slot.state is SlotState.ACTIVE)

    def get(self, conversation_id: str) -> "Agent | None":
        slot = self._slots.get(conversation_id)
        if slot is None or slot.state is not SlotState.ACTIVE:
            return None
        return slot.agent

    def status(self, conversation_id: str) -> AgentStatus:
        slot = self._slots.get(conversation_id)
        if slot is None:
            return AgentStatus.DISCONNECTED
        if slot.state is SlotState.PENDING:
            return AgentStatus.CONNECTING
        if slot.state is SlotState.STOPPING:
            return AgentStatus.DISCONNECTED
        return AgentStatus.CONNECTED

    async def start(self, conversation_id: str) -> AgentStatus:
        """
        Start the agent of a channel unless one exists or is starting.

        Raises:
            Exception: Whatever agent creation or initialization raised;
                the channel is left without an agent
        """
        existing = self._slots.get(conversation_id)
        if existing is not None:
            logger.info(f"Agent for {conversation_id} is {existing.state.value}")
            return self.status(conversation_id)

        # Claim the channel before the first await
        slot = AgentSlot(state=SlotState.PENDING)
        self._slots[conversation_id] = slot
        logger.info(f"Creating agent for {conversation_id}")

        # Create, then initialize (assistant, thread, listeners)
        agent = None
        try:
            agent = await self.factory(conversation_id)
            await agent.init()
        except Exception as e:
            logger.error(f"Failed to start agent for {conversation_id}", e)
            if self._slots.get(conversation_id) is slot:
                del self._slots[conversation_id]
            if agent is not None:
                await self._dispose_quietly(conversation_id, agent)
            raise

        if self._slots.get(conversation_id) is not slot:
            # The registry was shut down while this agent was starting.
            await self._dispose_quietly(conversation_id, agent)
            return AgentStatus.DISCONNECTED

        slot.agent = agent
        slot.state = SlotState.ACTIVE
        logger.info(f"Agent for {conversation_id} is active")
        return AgentStatus.CONNECTED

    async def stop(self, conversation_id: str) -> bool:
        """
        Dispose the agent of a channel, then drop its record.

        Returns:
            True if an active agent was stopped
        """
        slot = self._slots.get(conversation_id)
        if slot is None or slot.state is not SlotState.ACTIVE:
            logger.info(f"No active agent for {conversation_id}")
            return False

        # Claim the slot so an overlapping stop or sweep backs off
        slot.state = SlotState.STOPPING
        try:
            await slot.agent.dispose()
        finally:
            # Drop the record only once the agent has left the channel
            if self._slots.get(conversation_id) is slot:
                del self._slots[conversation_id]
        logger.info(f"Agent for {conversation_id} stopped")
        return True

    async def sweep(self) -> list[str]:
        """
        Evict agents idle for longer than the inactivity threshold.

        Returns:
            The channel IDs whose agents were evicted
        """
        now = self._clock()
        idle = [
            conversation_id
            for conversation_id, slot in self._slots.items()
            if slot.state is SlotState.ACTIVE
            and now - slot.agent.get_last_interaction() > self.inactivity
        ]

        evicted = []
        for conversation_id in idle:
            logger.info(f"Disposing agent due to inactivity: {conversation_id}")
            try:
                if await self.stop(conversation_id):
                    evicted.append(conversation_id)
            except Exception as e:
                logger.error(f"Failed to dispose idle agent {conversation_id}", e)

        return evicted

    def start_sweeper(self, interval_seconds: int) -> None:
        """Run `sweep` periodically on the running event loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=interval_seconds),
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True
        )
        self._scheduler.start()
        logger.info(f"Idle sweep every {interval_seconds}s (threshold {self.inactivity})")

    async def shutdown(self) -> None:
        """Stop the sweeper and dispose every agent."""
        # 1. No more sweeps
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        # 2. Forget every slot, then release the agents behind them
        slots = list(self._slots.items())
        self._slots.clear()

        for conversation_id, slot in slots:
            if slot.agent is not None:
                await self._dispose_quietly(conversation_id, slot.agent)

        logger.info(f"Registry shut down ({len(slots)} agents released)")

    async def _dispose_quietly(self, conversation_id: str, agent: "Agent") -> None:
        try:
            await agent.dispose()
        except Exception as e:
            logger.error(f"Error disposing agent for {conversation_id}", e)
