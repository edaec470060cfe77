"""
Boundary validation for loosely typed tool parameters.

Hosts send camelCase keys (numResults, forceClone, responseId, ...); callers
inside Python may use snake_case. Wrong-typed optional fields are dropped,
never rejected. A missing required field raises ToolInputError naming it.
"""

import math
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ToolInputError

SearchType = Literal["auto", "instant", "deep"]

VALID_SEARCH_TYPES = frozenset({"auto", "instant", "deep"})
VALID_CATEGORIES = frozenset({
    "company", "research paper", "news", "tweet",
    "people", "personal site", "financial report", "pdf",
})

MIN_TOKENS_NUM = 50
MAX_TOKENS_NUM = 100_000


def dedupe_urls(urls: list[str]) -> list[str]:
    """Drop repeated URLs, keeping first occurrences in order."""
    return list(dict.fromkeys(urls))


def _pick(data: dict[str, Any], snake: str, camel: str) -> Any:
    return data[snake] if snake in data else data.get(camel)


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str)]


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def _index(value: Any) -> int | None:
    number = _finite_number(value)
    return int(number) if number is not None else None


class _ToolParams(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    missing_message: ClassVar[str] = "Invalid tool parameters."

    @classmethod
    def parse(cls, params: dict[str, Any] | None):
        """Validate raw host parameters, raising ToolInputError when a required field is absent."""
        try:
            return cls.model_validate(params if isinstance(params, dict) else {})
        except ValidationError as e:
            raise ToolInputError(cls.missing_message) from e


class WebSearchParams(_ToolParams):
    missing_message: ClassVar[str] = "Either 'query' or 'queries' must be provided."

    queries: list[str] = Field(..., min_length=1)
    num_results: float | None = None
    type: SearchType | None = None
    category: str | None = None
    include_domains: list[str] | None = None
    exclude_domains: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        queries = [q for q in (_string_list(data.get("queries")) or []) if q]
        if not queries:
            query = _string(data.get("query"))
            queries = [query] if query else []

        search_type = _string(data.get("type"))
        category = _string(data.get("category"))

        normalized: dict[str, Any] = {
            "num_results": _finite_number(_pick(data, "num_results", "numResults")),
            "type": search_type if search_type in VALID_SEARCH_TYPES else None,
            "category": category if category in VALID_CATEGORIES else None,
            "include_domains": _string_list(_pick(data, "include_domains", "includeDomains")),
            "exclude_domains": _string_list(_pick(data, "exclude_domains", "excludeDomains")),
        }
        if queries:
            normalized["queries"] = queries
        return normalized


class FetchContentParams(_ToolParams):
    missing_message: ClassVar[str] = "Either 'url' or 'urls' must be provided."

    urls: list[str] = Field(..., min_length=1)
    force_clone: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        urls = [u for u in (_string_list(data.get("urls")) or []) if u]
        if not urls:
            url = _string(data.get("url"))
            urls = [url] if url else []

        force_clone = _pick(data, "force_clone", "forceClone")
        normalized: dict[str, Any] = {
            "force_clone": force_clone if isinstance(force_clone, bool) else False,
        }
        if urls:
            normalized["urls"] = dedupe_urls(urls)
        return normalized


class CodeSearchParams(_ToolParams):
    missing_message: ClassVar[str] = "'query' must be provided."

    query: str = Field(..., min_length=1)
    tokens_num: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        tokens = _finite_number(_pick(data, "tokens_num", "tokensNum"))
        normalized: dict[str, Any] = {
            "tokens_num": (
                int(min(MAX_TOKENS_NUM, max(MIN_TOKENS_NUM, tokens))) if tokens is not None else None
            ),
        }
        query = _string(data.get("query"))
        if query and query.strip():
            normalized["query"] = query
        return normalized


class GetSearchContentParams(_ToolParams):
    missing_message: ClassVar[str] = "'responseId' must be provided."

    response_id: str = Field(..., min_length=1)
    query: str | None = None
    query_index: int | None = None
    url: str | None = None
    url_index: int | None = None
    max_chars: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        normalized: dict[str, Any] = {
            "query": _string(data.get("query")),
            "query_index": _index(_pick(data, "query_index", "queryIndex")),
            "url": _string(data.get("url")),
            "url_index": _index(_pick(data, "url_index", "urlIndex")),
            "max_chars": _index(_pick(data, "max_chars", "maxChars")),
        }
        response_id = _string(_pick(data, "response_id", "responseId"))
        if response_id:
            normalized["response_id"] = response_id
        return normalized


def normalize_web_search_input(params: dict[str, Any] | None) -> WebSearchParams:
    return WebSearchParams.parse(params)


def normalize_fetch_content_input(params: dict[str, Any] | None) -> FetchContentParams:
    return FetchContentParams.parse(params)


def normalize_code_search_input(params: dict[str, Any] | None) -> CodeSearchParams:
    return CodeSearchParams.parse(params)


def normalize_get_search_content_input(params: dict[str, Any] | None) -> GetSearchContentParams:
    return GetSearchContentParams.parse(params)
