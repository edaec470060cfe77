"""Factory for creating the web tools orchestrator from environment configuration."""

import os

from config.config import ConfigLoader, get_config_path
from utils.logger import get_logger

from .session_state import InMemorySessionHistory, JsonlSessionHistory, SessionContext, SessionHistory

logger = get_logger(__name__)

HISTORY_FILE_NAME = "history.jsonl"


def default_history_path():
    return get_config_path().parent / HISTORY_FILE_NAME


def create_orchestrator_from_env(history: SessionHistory | None = None, persistent: bool = False):
    """
    Create a WebToolsOrchestrator from environment variables.

    Environment variables:
        WEB_TOOLS_CONFIG: Config file path (default: ~/.web-tools/config.json)
        WEB_TOOLS_OFFLOAD_DIR: Parent directory for offload scratch files (default: system temp)
        EXA_API_KEY: Exa API key (overrides the config file)

    Args:
        history: Session history to record results in
        persistent: Use a JSON-lines history beside the config file when no history is given

    Returns:
        Configured WebToolsOrchestrator with a fresh session context
    """
    from orchestrator.core import WebToolsOrchestrator

    if history is None:
        history = JsonlSessionHistory(default_history_path()) if persistent else InMemorySessionHistory()

    session = SessionContext.create(offload_dir=os.getenv("WEB_TOOLS_OFFLOAD_DIR") or None)
    config_loader = ConfigLoader()

    config = config_loader.get()
    if not config.exa_api_key:
        logger.warning("Exa API key not configured: web_search and code_search will fail")

    logger.info(
        "Web tools orchestrator created",
        extra={"extra_fields": {"enabled_tools": config.tools.enabled(), "history": type(history).__name__}},
    )
    return WebToolsOrchestrator(session=session, config_loader=config_loader, history=history)
