"""Web content acquisition tools: search, fetch, repository views and stored results."""

from .cancellation import CancellationToken
from .errors import (
    ConfigurationError,
    MalformedResponseError,
    OperationAborted,
    ProviderRequestError,
    ResultNotFoundError,
    ToolInputError,
    WebToolsError,
)
from .factory import create_orchestrator_from_env
from .result_store import ResultStore
from .session_state import SessionContext

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "MalformedResponseError",
    "OperationAborted",
    "ProviderRequestError",
    "ResultNotFoundError",
    "ResultStore",
    "SessionContext",
    "ToolInputError",
    "WebToolsError",
    "create_orchestrator_from_env",
]
