"""Exa code-context client: one markdown blob of code examples and docs per query."""

from typing import Any

import httpx

from models.content import ContextResultData
from utils.logger import get_logger

from .cancellation import CancellationToken
from .errors import MalformedResponseError
from .exa_search import post_exa, require_api_key

logger = get_logger(__name__)

EXA_CONTEXT_URL = "https://api.exa.ai/context"
MIN_TOKENS = 50
MAX_TOKENS = 100_000


def clamp_tokens(tokens_num: float | None) -> int | None:
    if tokens_num is None:
        return None
    return int(min(MAX_TOKENS, max(MIN_TOKENS, tokens_num)))


async def search_context(
    query: str,
    *,
    api_key: str | None,
    tokens_num: int | None = None,
    client: httpx.AsyncClient | None = None,
    signal: CancellationToken | None = None,
) -> ContextResultData:
    """
    Fetch code context for a query.

    Args:
        query: What to look up (API, library, error message, ...)
        api_key: Exa API key
        tokens_num: Token budget; None lets the provider decide ("dynamic")
        client: Shared httpx client
        signal: Cancellation token

    Raises:
        ConfigurationError: no API key
        ProviderRequestError: transport failure or non-2xx status
        MalformedResponseError: empty or non-string response field
    """
    key = require_api_key(api_key)

    body: dict[str, Any] = {
        "query": query,
        "tokensNum": tokens_num if tokens_num is not None else "dynamic",
    }

    data = await post_exa(
        EXA_CONTEXT_URL,
        body,
        api_key=key,
        query=query,
        client=client,
        signal=signal,
        failure_prefix="Context request failed",
        error_prefix="Exa Context API error",
    )

    content = data.get("response") if isinstance(data, dict) else None
    if not isinstance(content, str) or not content:
        raise MalformedResponseError(
            f'Exa Context API returned empty or non-string response for query "{query}"'
        )

    logger.info(
        "Code context retrieved",
        extra={"extra_fields": {"query": query, "chars": len(content), "tokens_num": body["tokensNum"]}},
    )
    return ContextResultData(query=query, content=content, error=None)
