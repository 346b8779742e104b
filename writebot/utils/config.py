"""
Configuration Management
========================

Centralized configuration for the assistant bridge. Every environment
variable the bot reads is declared, typed and defaulted here.

Required at startup:
- SLACK_BOT_TOKEN, SLACK_APP_TOKEN, SLACK_SIGNING_SECRET

Required per agent (checked when an agent is initialized, so the bot can
still start and report the problem in Slack):
- OPENAI_API_KEY

Optional:
- OPENAI_MODEL, OPENAI_TEMPERATURE
- TAVILY_API_KEY (web search is reported as unavailable without it)
- TAVILY_MAX_RESULTS, TAVILY_SEARCH_DEPTH
- AGENT_INACTIVITY_MINUTES, AGENT_SWEEP_INTERVAL_SECONDS
- STREAM_FLUSH_INTERVAL_MS, MAX_TOOL_ROUNDS
- LOG_LEVEL

Usage:
    from writebot.utils.config import get_config

    config = get_config()
    print(config.openai.model)
    print(config.agent.inactivity_minutes)
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


class ConfigurationError(ValueError):
    """Raised when a credential or setting needed at runtime is missing."""


def _required(name: str) -> str:
    """
    Get a required environment variable.

    Raises:
        ConfigurationError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(
            f"Missing required environment variable: {name}\n"
            f"Please ensure {name} is set in your .env file."
        )
    return value


def _optional(name: str, default: str) -> str:
    return os.getenv(name, default)


def _optional_int(name: str, default: int) -> int:
    """
    Get an optional integer environment variable.

    Invalid values fall back to the default with a warning.
    """
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class SlackConfig:
    """Slack API configuration."""
    bot_token: str      # xoxb-... token for bot operations
    app_token: str      # xapp-... token for Socket Mode
    signing_secret: str # For verifying Slack requests


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI Assistants configuration."""
    api_key: str | None    # sk-... checked when an agent starts
    model: str             # Model the assistant runs on
    temperature: float     # Sampling temperature for the assistant


@dataclass(frozen=True)
class TavilyConfig:
    """Tavily web search configuration (optional)."""
    api_key: str | None   # tvly-... key; web search disabled without it
    max_results: int      # Upper bound on results per query
    search_depth: str     # "basic" or "advanced"


@dataclass(frozen=True)
class AgentConfig:
    """Agent lifecycle and streaming behaviour."""
    inactivity_minutes: int      # Idle time before an agent is evicted
    sweep_interval_seconds: int  # How often the idle sweep runs
    flush_interval_ms: int       # Minimum gap between partial message updates
    max_tool_rounds: int         # Tool call round trips per run, 0 = unbounded


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

    Access via:
        config = get_config()
        config.slack.bot_token
        config.tavily.max_results
    """
    slack: SlackConfig
    openai: OpenAIConfig
    tavily: TavilyConfig
    agent: AgentConfig
    log_level: str


def load_config() -> Config:
    """
    Load and validate all configuration from the environment.

    Returns:
        Config: The validated configuration

    Raises:
        ConfigurationError: If required Slack configuration is missing
    """
    load_dotenv()

    return Config(
        slack=SlackConfig(
            bot_token=_required("SLACK_BOT_TOKEN"),
            app_token=_required("SLACK_APP_TOKEN"),
            signing_secret=_required("SLACK_SIGNING_SECRET"),
        ),
        openai=OpenAIConfig(
            api_key=os.getenv("OPENAI_API_KEY"),
            model=_optional("OPENAI_MODEL", "gpt-4o"),
            temperature=_optional_float("OPENAI_TEMPERATURE", 0.7),
        ),
        tavily=TavilyConfig(
            api_key=os.getenv("TAVILY_API_KEY"),
            max_results=_optional_int("TAVILY_MAX_RESULTS", 5),
            search_depth=_optional("TAVILY_SEARCH_DEPTH", "advanced"),
        ),
        agent=AgentConfig(
            inactivity_minutes=_optional_int("AGENT_INACTIVITY_MINUTES", 480),
            sweep_interval_seconds=_optional_int("AGENT_SWEEP_INTERVAL_SECONDS", 5),
            flush_interval_ms=_optional_int("STREAM_FLUSH_INTERVAL_MS", 1000),
            max_tool_rounds=_optional_int("MAX_TOOL_ROUNDS", 10),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """
    Get the singleton configuration instance.

    Loaded on first access and cached for subsequent calls.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance
