"""Exa web search client."""

import asyncio
from typing import Any

import httpx

from models.content import SearchResult
from utils.logger import get_logger

from .cancellation import CancellationToken, run_with_cancellation
from .errors import ConfigurationError, MalformedResponseError, ProviderRequestError

logger = get_logger(__name__)

EXA_SEARCH_URL = "https://api.exa.ai/search"
DEFAULT_NUM_RESULTS = 5
REQUEST_TIMEOUT_S = 30.0
ERROR_BODY_PREVIEW = 300
SNIPPET_PREVIEW_CHARS = 200

MISSING_KEY_MESSAGE = (
    "Exa API key not configured. Set the EXA_API_KEY environment variable "
    'or add "exaApiKey" to ~/.web-tools/config.json'
)


def require_api_key(api_key: str | None) -> str:
    if not api_key:
        raise ConfigurationError(MISSING_KEY_MESSAGE)
    return api_key


def _snippet(entry: dict[str, Any]) -> str:
    highlights = entry.get("highlights")
    if isinstance(highlights, list):
        parts = [h for h in highlights if isinstance(h, str)]
        if parts:
            return " ".join(parts)
    text = entry.get("text")
    return text if isinstance(text, str) else ""


def parse_exa_results(data: Any) -> list[SearchResult]:
    """
    Convert an Exa /search response body into SearchResult objects.

    Raises:
        MalformedResponseError: body is not an object, results is not a list,
            or a result entry is not an object
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Malformed Exa API response: expected object")

    raw = data.get("results")
    if not isinstance(raw, list):
        raise MalformedResponseError("Malformed Exa API response: results must be an array")

    results = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise MalformedResponseError(
                f"Malformed Exa API response: results[{index}] must be an object"
            )
        published = entry.get("publishedDate")
        results.append(
            SearchResult(
                title=entry["title"] if isinstance(entry.get("title"), str) else "",
                url=entry["url"] if isinstance(entry.get("url"), str) else "",
                snippet=_snippet(entry),
                published_date=published if isinstance(published, str) else None,
            )
        )
    return results


async def post_exa(
    endpoint: str,
    body: dict[str, Any],
    *,
    api_key: str,
    query: str,
    client: httpx.AsyncClient | None,
    signal: CancellationToken | None,
    failure_prefix: str,
    error_prefix: str,
) -> Any:
    """
    POST a JSON body to an Exa endpoint and decode the JSON answer.

    Raises:
        OperationAborted: the caller's token fired
        ProviderRequestError: transport failure, timeout or non-2xx status
        MalformedResponseError: the body is not JSON
    """
    headers = {"x-api-key": api_key, "Content-Type": "application/json"}

    async def _post(http: httpx.AsyncClient) -> httpx.Response:
        return await http.post(endpoint, json=body, headers=headers)

    try:
        if client is not None:
            response = await run_with_cancellation(
                _post(client), signal=signal, timeout=REQUEST_TIMEOUT_S
            )
        else:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_S) as owned:
                response = await run_with_cancellation(
                    _post(owned), signal=signal, timeout=REQUEST_TIMEOUT_S
                )
    except asyncio.TimeoutError:
        raise ProviderRequestError(
            f'{failure_prefix} for query "{query}": timed out after {REQUEST_TIMEOUT_S:g}s'
        ) from None
    except httpx.HTTPError as e:
        raise ProviderRequestError(
            f'{failure_prefix} for query "{query}": {str(e) or type(e).__name__}'
        ) from e

    if not response.is_success:
        raise ProviderRequestError(
            f"{error_prefix} ({response.status_code}): {response.text[:ERROR_BODY_PREVIEW]}",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"Malformed Exa API response: {e}") from e


async def search_exa(
    query: str,
    *,
    api_key: str | None,
    num_results: int | None = None,
    type: str | None = None,
    category: str | None = None,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
    signal: CancellationToken | None = None,
) -> list[SearchResult]:
    """
    Run one Exa search.

    Args:
        query: Search query
        api_key: Exa API key (ConfigurationError when missing)
        num_results: Results to request (default: 5)
        type: "auto", "instant" or "deep"; "auto" is the provider default and is omitted
        category: Optional result category filter
        include_domains: Only return results from these domains
        exclude_domains: Never return results from these domains
        client: Shared httpx client
        signal: Cancellation token

    Returns:
        Search results in provider ranking order
    """
    key = require_api_key(api_key)

    body: dict[str, Any] = {
        "query": query,
        "numResults": num_results if num_results is not None else DEFAULT_NUM_RESULTS,
        "contents": {"highlights": {"numSentences": 3, "highlightsPerUrl": 3}},
    }
    if type and type != "auto":
        body["type"] = type
    if category:
        body["category"] = category
    if include_domains:
        body["includeDomains"] = include_domains
    if exclude_domains:
        body["excludeDomains"] = exclude_domains

    logger.debug(
        "Exa search request",
        extra={"extra_fields": {"query": query, "num_results": body["numResults"], "type": type}},
    )

    data = await post_exa(
        EXA_SEARCH_URL,
        body,
        api_key=key,
        query=query,
        client=client,
        signal=signal,
        failure_prefix="Exa request failed",
        error_prefix="Exa API error",
    )
    results = parse_exa_results(data)

    logger.info(
        f"Exa returned {len(results)} results",
        extra={"extra_fields": {"query": query, "results": len(results)}},
    )
    return results


def format_search_results(results: list[SearchResult]) -> str:
    if not results:
        return "No results found."

    blocks = []
    for i, r in enumerate(results, start=1):
        parts = [f"{i}. **{r.title}**"]
        if r.published_date:
            parts.append(f"   Date: {r.published_date}")
        parts.append(f"   {r.url}")
        preview = (
            r.snippet[:SNIPPET_PREVIEW_CHARS] + "…"
            if len(r.snippet) > SNIPPET_PREVIEW_CHARS
            else r.snippet
        )
        parts.append(f"   {preview}")
        blocks.append("\n".join(parts))
    return "\n\n".join(blocks)
