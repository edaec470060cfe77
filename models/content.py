"""Data contracts for fetched, searched and stored content."""

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

ResultType = Literal["search", "fetch", "context"]


@dataclass(frozen=True)
class ExtractedContent:
    """Normalized outcome of fetching one URL. error is None on success."""

    url: str
    title: str = ""
    content: str = ""
    error: str | None = None

    @classmethod
    def failure(cls, url: str, error: str) -> "ExtractedContent":
        return cls(url=url, title="", content="", error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_partial(self) -> bool:
        """Flagged but usable: an error is set and content was still produced."""
        return self.error is not None and bool(self.content)


@dataclass(frozen=True)
class SearchResult:
    """Result from the search provider."""

    title: str
    url: str
    snippet: str = ""
    published_date: str | None = None


@dataclass(frozen=True)
class QueryResultData:
    """One executed query of a web_search batch."""

    query: str
    answer: str = ""
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class ContextResultData:
    """Result of a code-context search."""

    query: str
    content: str = ""
    error: str | None = None


@dataclass(frozen=True)
class StoredResultData:
    """
    Unit held by the result store.

    Exactly one of queries/urls/context is populated, selected by type.
    timestamp is epoch milliseconds.
    """

    id: str
    type: ResultType
    timestamp: int
    queries: list[QueryResultData] | None = None
    urls: list[ExtractedContent] | None = None
    context: ContextResultData | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the session history (camelCase keys, None fields dropped)."""
        data: dict[str, Any] = {"id": self.id, "type": self.type, "timestamp": self.timestamp}
        if self.queries is not None:
            data["queries"] = [
                {
                    "query": q.query,
                    "answer": q.answer,
                    "results": [_search_result_to_dict(r) for r in q.results],
                    "error": q.error,
                }
                for q in self.queries
            ]
        if self.urls is not None:
            data["urls"] = [asdict(u) for u in self.urls]
        if self.context is not None:
            data["context"] = asdict(self.context)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoredResultData | None":
        """
        Rebuild an entry from session history.

        Returns None when the type-specific shape does not hold (a "search"
        entry without a queries list, a "context" entry without a string
        query, and so on).
        """
        if not isinstance(data, dict):
            return None
        result_id = data.get("id")
        result_type = data.get("type")
        if not result_id or not isinstance(result_id, str) or not result_type:
            return None

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            timestamp = 0

        try:
            if result_type == "search":
                queries = data.get("queries")
                if not isinstance(queries, list):
                    return None
                return cls(
                    id=result_id,
                    type="search",
                    timestamp=int(timestamp),
                    queries=[_query_from_dict(q) for q in queries],
                )
            if result_type == "fetch":
                urls = data.get("urls")
                if not isinstance(urls, list):
                    return None
                return cls(
                    id=result_id,
                    type="fetch",
                    timestamp=int(timestamp),
                    urls=[_extracted_from_dict(u) for u in urls],
                )
            if result_type == "context":
                context = data.get("context")
                if not isinstance(context, dict) or not isinstance(context.get("query"), str):
                    return None
                return cls(
                    id=result_id,
                    type="context",
                    timestamp=int(timestamp),
                    context=ContextResultData(
                        query=context["query"],
                        content=_str(context.get("content")),
                        error=_optional_str(context.get("error")),
                    ),
                )
        except (AttributeError, TypeError):
            return None
        return None


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _search_result_to_dict(result: SearchResult) -> dict[str, Any]:
    data = {"title": result.title, "url": result.url, "snippet": result.snippet}
    if result.published_date is not None:
        data["publishedDate"] = result.published_date
    return data


def _query_from_dict(data: dict[str, Any]) -> QueryResultData:
    raw_results = data.get("results")
    results = [
        SearchResult(
            title=_str(r.get("title")),
            url=_str(r.get("url")),
            snippet=_str(r.get("snippet")),
            published_date=_optional_str(r.get("publishedDate")),
        )
        for r in (raw_results if isinstance(raw_results, list) else [])
        if isinstance(r, dict)
    ]
    return QueryResultData(
        query=_str(data.get("query")),
        answer=_str(data.get("answer")),
        results=results,
        error=_optional_str(data.get("error")),
    )


def _extracted_from_dict(data: dict[str, Any]) -> ExtractedContent:
    return ExtractedContent(
        url=_str(data.get("url")),
        title=_str(data.get("title")),
        content=_str(data.get("content")),
        error=_optional_str(data.get("error")),
    )
