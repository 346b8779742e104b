"""
WriteBot - Main Entry Point
===========================

Starts the Slack writing assistant:
1. Loads configuration
2. Creates the Slack app and the event fan-out
3. Creates the agent registry and its idle sweep
4. Registers Slack handlers
5. Runs Socket Mode until SIGINT / SIGTERM, then shuts down

Run with:
    python -m writebot.main

Or after installing:
    writebot
"""

import asyncio
import signal
import sys
from datetime import timedelta
from functools import partial

from writebot.utils.config import get_config
from writebot.utils.logger import Logger

main_logger = Logger("Main")


async def main():
    """Initialize all components and run the bot."""
    main_logger.info("Starting WriteBot...")

    try:
        # 1. Load configuration
        # This validates that the Slack credentials are set
        main_logger.info("Loading configuration...")
        config = get_config()

        # 2. Create Slack app and the per-channel event fan-out
        main_logger.info("Creating Slack app...")
        from writebot.slack.app import create_slack_app, create_socket_handler
        from writebot.slack.transport import ConversationEvents
        app = create_slack_app(config)
        events = ConversationEvents()

        # 3. Create the agent registry and start the idle sweep
        main_logger.info("Creating agent registry...")
        from writebot.agent import AgentRegistry, create_agent
        registry = AgentRegistry(
            factory=partial(create_agent, client=app.client, events=events, config=config),
            inactivity=timedelta(minutes=config.agent.inactivity_minutes)
        )
        registry.start_sweeper(config.agent.sweep_interval_seconds)

        # 4. Register event handlers
        main_logger.info("Registering event handlers...")
        from writebot.slack.handlers import register_handlers
        register_handlers(app, registry, events)

        # 5. Run Socket Mode until a shutdown signal arrives
        handler = create_socket_handler(app, config)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await serve(handler, registry, stop_event)

    except KeyboardInterrupt:
        main_logger.info("Received interrupt signal")
    except Exception as e:
        main_logger.error("Failed to start bot", e)
        sys.exit(1)


async def serve(handler, registry, stop_event: asyncio.Event) -> None:
    """
    Hold the Socket Mode connection open until `stop_event` is set,
    then shut down.

    Args:
        handler: The Socket Mode handler
        registry: The agent registry
        stop_event: Set by the signal handlers
    """
    main_logger.info("Starting Socket Mode connection...")
    await handler.connect_async()
    main_logger.info("WriteBot is running! Press Ctrl+C to stop.")

    try:
        await stop_event.wait()
    finally:
        await _shutdown(handler, registry)


async def _shutdown(handler, registry):
    """
    Graceful shutdown: release every agent, then close the socket.

    Args:
        handler: The Socket Mode handler
        registry: The agent registry
    """
    main_logger.info("Shutting down...")

    await registry.shutdown()
    await handler.close_async()

    main_logger.info("Shutdown complete")


def run():
    """Synchronous entry point for the `writebot` command."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
