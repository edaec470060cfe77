"""
WebToolsOrchestrator - tool-level layer for the web tools.

Key guarantees:
- Host layers stay thin: parameters arrive loosely typed and are validated here
- Per-item failures (one query, one URL) never abort sibling items
- Every completed call is stored in the result store and appended to session history
- Every call registers a cancellation token so a session boundary can abort it
"""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from config.config import ConfigLoader, WebToolsConfig
from models.content import (
    ContextResultData,
    ExtractedContent,
    QueryResultData,
    StoredResultData,
)
from models.tool_response import ToolResponse
from orchestrator.resolvers import ExtractionResolver, RepositoryResolver, ResolverChain
from tools.web.cancellation import CancellationToken
from tools.web.errors import ResultNotFoundError, WebToolsError
from tools.web.exa_context import search_context
from tools.web.exa_search import format_search_results, search_exa
from tools.web.extract import READER_BASE_URL, ContentExtractor
from tools.web.github_extract import CommandRunner, GitHubExtractor, run_command
from tools.web.offload import FILE_OFFLOAD_THRESHOLD
from tools.web.result_store import generate_id
from tools.web.session_state import (
    InMemorySessionHistory,
    SessionContext,
    SessionHistory,
    append_result,
)
from tools.web.tool_params import (
    normalize_code_search_input,
    normalize_fetch_content_input,
    normalize_get_search_content_input,
    normalize_web_search_input,
)
from utils.logger import get_logger
from utils.truncation import truncate_content

logger = get_logger(__name__)

DEFAULT_NUM_RESULTS = 5
MAX_NUM_RESULTS = 20


def _now_ms() -> int:
    return int(time.time() * 1000)


class WebToolsOrchestrator:
    def __init__(
        self,
        session: SessionContext | None = None,
        config_loader: ConfigLoader | None = None,
        history: SessionHistory | None = None,
        http_client: httpx.AsyncClient | None = None,
        runner: CommandRunner = run_command,
        reader_base_url: str = READER_BASE_URL,
    ):
        """
        Args:
            session: Result store, clone cache, pending registry and offload files
            config_loader: Time-cached configuration source
            history: Durable session event log
            http_client: Shared httpx client (per-call clients when None)
            runner: Executes gh / git for the repository resolver
            reader_base_url: Reader-service prefix for the extraction fallback
        """
        self.session = session or SessionContext.create()
        self.config_loader = config_loader or ConfigLoader()
        self.history: SessionHistory = history if history is not None else InMemorySessionHistory()
        self.http_client = http_client

        self._extractor = ContentExtractor(client=http_client, reader_base_url=reader_base_url)
        self._github = GitHubExtractor(
            self.session.clones, config_provider=self.config_loader.get, runner=runner
        )
        self.resolvers = ResolverChain(
            [RepositoryResolver(self._github), ExtractionResolver(self._extractor)]
        )

    # ---------- helpers ----------

    @property
    def config(self) -> WebToolsConfig:
        return self.config_loader.get()

    def enabled_tools(self) -> list[str]:
        return self.config.tools.enabled()

    @asynccontextmanager
    async def _pending_call(
        self, signal: CancellationToken | None
    ) -> AsyncIterator[CancellationToken]:
        token = CancellationToken.linked(signal)
        key = self.session.pending.register(token)
        try:
            yield token
        finally:
            self.session.pending.deregister(key)
            token.release()

    def _store(self, data: StoredResultData) -> None:
        self.session.results.store(data.id, data)
        append_result(self.history, data.to_dict())

    def _offload_or_truncate(self, text: str, response_id: str) -> tuple[str, str | None, bool]:
        """
        Keep text inline when small, else offload it to a scratch file.

        Returns:
            (display_text, offload_path, truncated)
        """
        try:
            display, path = self.session.offload.offload(text)
        except OSError as e:
            logger.warning(
                f"Offload failed, truncating inline: {e}",
                extra={"extra_fields": {"response_id": response_id}},
            )
            display = (
                text[:FILE_OFFLOAD_THRESHOLD]
                + f"\n\n[Content truncated at {FILE_OFFLOAD_THRESHOLD} chars. Use get_search_content "
                f'with responseId "{response_id}" to retrieve full content.]'
            )
            return display, None, True
        if path is None:
            return display, None, False
        return display, str(path), True

    # ---------- web_search ----------

    async def web_search(
        self, params: dict[str, Any], signal: CancellationToken | None = None
    ) -> ToolResponse:
        """
        Run one or more searches and store the batch.

        Args:
            params: query/queries, numResults, type, category, includeDomains, excludeDomains
            signal: Host cancellation token

        Raises:
            ToolInputError: neither query nor queries given
        """
        p = normalize_web_search_input(params)
        config = self.config
        num_results = (
            max(1, min(int(p.num_results), MAX_NUM_RESULTS))
            if p.num_results is not None
            else DEFAULT_NUM_RESULTS
        )

        start = time.perf_counter()
        async with self._pending_call(signal) as token:
            results: list[QueryResultData] = []
            successful = 0
            total_results = 0

            for query in p.queries:
                try:
                    search_results = await search_exa(
                        query,
                        api_key=config.exa_api_key,
                        num_results=num_results,
                        type=p.type,
                        category=p.category,
                        include_domains=p.include_domains,
                        exclude_domains=p.exclude_domains,
                        client=self.http_client,
                        signal=token,
                    )
                except WebToolsError as e:
                    logger.warning(
                        f"Search query failed: {e}",
                        extra={"extra_fields": {"query": query, "error_type": type(e).__name__}},
                    )
                    results.append(QueryResultData(query=query, answer="", results=[], error=str(e)))
                    continue

                results.append(
                    QueryResultData(
                        query=query,
                        answer=format_search_results(search_results),
                        results=search_results,
                        error=None,
                    )
                )
                successful += 1
                total_results += len(search_results)

        search_id = generate_id()
        self._store(
            StoredResultData(id=search_id, type="search", timestamp=_now_ms(), queries=results)
        )

        lines: list[str] = []
        for r in results:
            lines.append(f"## Query: {r.query}")
            lines.append(f"Error: {r.error}" if r.error else r.answer)
            lines.append("")
        lines.append(
            f'Use get_search_content with responseId "{search_id}" and query/queryIndex '
            "to retrieve full content."
        )

        logger.info(
            f"web_search completed: {successful}/{len(p.queries)} queries succeeded",
            extra={
                "extra_fields": {
                    "response_id": search_id,
                    "queries": len(p.queries),
                    "results": total_results,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                }
            },
        )
        return ToolResponse(
            text="\n".join(lines),
            details={
                "queryCount": len(p.queries),
                "successfulQueries": successful,
                "totalResults": total_results,
                "searchId": search_id,
            },
        )

    # ---------- fetch_content ----------

    async def fetch_content(
        self, params: dict[str, Any], signal: CancellationToken | None = None
    ) -> ToolResponse:
        """
        Fetch URL(s) through the resolver chain and store the results.

        Args:
            params: url/urls, forceClone
            signal: Host cancellation token

        Raises:
            ToolInputError: neither url nor urls given
        """
        p = normalize_fetch_content_input(params)

        start = time.perf_counter()
        async with self._pending_call(signal) as token:
            if len(p.urls) == 1:
                results = [await self.resolvers.resolve(p.urls[0], token, p.force_clone)]
            else:
                results = await self.resolvers.resolve_all(p.urls, token, p.force_clone)

        response_id = generate_id()
        self._store(StoredResultData(id=response_id, type="fetch", timestamp=_now_ms(), urls=results))

        logger.info(
            f"fetch_content completed: {sum(r.ok for r in results)}/{len(results)} URLs",
            extra={
                "extra_fields": {
                    "response_id": response_id,
                    "urls": len(results),
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                }
            },
        )

        if len(results) == 1:
            return self._single_fetch_response(results[0], response_id)
        return self._multi_fetch_response(results, response_id)

    def _single_fetch_response(self, r: ExtractedContent, response_id: str) -> ToolResponse:
        if r.error and not r.is_partial:
            return ToolResponse(
                text=f"Error fetching {r.url}: {r.error}",
                details={"responseId": response_id, "url": r.url, "error": r.error},
                is_error=True,
            )

        text = f"# {r.title}\n\n{r.content}"
        if r.is_partial:
            text = f"Warning: {r.error}. Treat the content below with caution.\n\n{text}"

        display, offload_path, truncated = self._offload_or_truncate(text, response_id)
        details: dict[str, Any] = {
            "responseId": response_id,
            "url": r.url,
            "title": r.title,
            "charCount": len(r.content),
            "truncated": truncated,
            "offloadPath": offload_path,
        }
        if r.is_partial:
            details["partial"] = True
            details["error"] = r.error
        return ToolResponse(text=display, details=details)

    def _multi_fetch_response(self, results: list[ExtractedContent], response_id: str) -> ToolResponse:
        success_count = sum(1 for r in results if r.ok)
        lines = [f"Fetched {success_count}/{len(results)} URLs. Response ID: {response_id}", ""]

        for i, r in enumerate(results, start=1):
            if r.ok:
                lines.append(f"{i}. ✅ {r.title} ({len(r.content)} chars)")
                lines.append(f"   {r.url}")
            elif r.is_partial:
                lines.append(f"{i}. ⚠️ {r.title} ({len(r.content)} chars, {r.error})")
                lines.append(f"   {r.url}")
            else:
                lines.append(f"{i}. ❌ {r.url}: {r.error}")

        lines.append("")
        lines.append(
            f'Use get_search_content with responseId "{response_id}" and url/urlIndex to retrieve content.'
        )
        return ToolResponse(
            text="\n".join(lines),
            details={
                "responseId": response_id,
                "successCount": success_count,
                "partialCount": sum(1 for r in results if r.is_partial),
                "totalCount": len(results),
            },
        )

    # ---------- code_search ----------

    async def code_search(
        self, params: dict[str, Any], signal: CancellationToken | None = None
    ) -> ToolResponse:
        """
        Look up code context for a query.

        Provider failures become an error payload rather than an exception.

        Raises:
            ToolInputError: query missing
        """
        p = normalize_code_search_input(params)
        config = self.config

        async with self._pending_call(signal) as token:
            try:
                result = await search_context(
                    p.query,
                    api_key=config.exa_api_key,
                    tokens_num=p.tokens_num,
                    client=self.http_client,
                    signal=token,
                )
            except WebToolsError as e:
                logger.warning(
                    f"code_search failed: {e}",
                    extra={"extra_fields": {"query": p.query, "error_type": type(e).__name__}},
                )
                return ToolResponse(
                    text=f"Error: {e}",
                    details={"query": p.query, "error": str(e)},
                    is_error=True,
                )

        response_id = generate_id()
        self._store(
            StoredResultData(id=response_id, type="context", timestamp=_now_ms(), context=result)
        )

        display, offload_path, truncated = self._offload_or_truncate(result.content, response_id)
        return ToolResponse(
            text=display,
            details={
                "responseId": response_id,
                "query": result.query,
                "charCount": len(result.content),
                "truncated": truncated,
                "offloadPath": offload_path,
            },
        )

    # ---------- get_search_content ----------

    def get_search_content(self, params: dict[str, Any]) -> ToolResponse:
        """
        Retrieve stored content by response id.

        Raises:
            ToolInputError: responseId missing
            ResultNotFoundError: unknown id, query, URL, or an out-of-range index
        """
        p = normalize_get_search_content_input(params)

        stored = self.session.results.get(p.response_id)
        if stored is None:
            raise ResultNotFoundError(
                f'No result found for responseId "{p.response_id}". '
                "Results may have expired or been cleared."
            )

        if stored.type == "search" and stored.queries is not None:
            response = self._search_content(stored.queries, p.query, p.query_index)
        elif stored.type == "fetch" and stored.urls is not None:
            response = self._fetch_content(stored.urls, p.url, p.url_index)
        elif stored.type == "context" and stored.context is not None:
            response = self._context_content(stored.context)
        else:
            raise ResultNotFoundError(f'Invalid stored result type for responseId "{p.response_id}".')

        text = truncate_content(response.text, p.max_chars)
        details = dict(response.details)
        details["truncated"] = len(text) != len(response.text)
        return ToolResponse(text=text, details=details, is_error=response.is_error)

    def _search_content(
        self, queries: list[QueryResultData], query: str | None, query_index: int | None
    ) -> ToolResponse:
        if query is not None:
            target = next((q for q in queries if q.query == query), None)
            if target is None:
                available = ", ".join(q.query for q in queries)
                raise ResultNotFoundError(f'Query "{query}" not found. Available queries: {available}')
        elif query_index is not None:
            if query_index < 0 or query_index >= len(queries):
                raise ResultNotFoundError(
                    f"queryIndex {query_index} out of range. Valid: 0-{len(queries) - 1}"
                )
            target = queries[query_index]
        else:
            lines: list[str] = []
            for q in queries:
                lines.append(f"## Query: {q.query}")
                lines.append(f"Error: {q.error}" if q.error else q.answer)
                lines.append("")
            return ToolResponse(
                text="\n".join(lines), details={"type": "search", "queryCount": len(queries)}
            )

        body = f"Error: {target.error}" if target.error else target.answer
        return ToolResponse(
            text=f"## Query: {target.query}\n\n{body}",
            details={"type": "search", "query": target.query, "resultCount": len(target.results)},
        )

    def _fetch_content(
        self, urls: list[ExtractedContent], url: str | None, url_index: int | None
    ) -> ToolResponse:
        if url is not None:
            target = next((u for u in urls if u.url == url), None)
            if target is None:
                available = "\n  ".join(u.url for u in urls)
                raise ResultNotFoundError(f'URL "{url}" not found. Available URLs:\n  {available}')
        elif url_index is not None:
            if url_index < 0 or url_index >= len(urls):
                raise ResultNotFoundError(
                    f"urlIndex {url_index} out of range. Valid: 0-{len(urls) - 1}"
                )
            target = urls[url_index]
        else:
            lines = [f"Fetch result contains {len(urls)} URLs:", ""]
            for i, u in enumerate(urls):
                if u.error and not u.is_partial:
                    lines.append(f"{i}. ❌ {u.url}: {u.error}")
                else:
                    lines.append(f"{i}. ✅ {u.title} ({len(u.content)} chars)")
                    lines.append(f"   {u.url}")
            lines.append("")
            lines.append("Specify url or urlIndex to retrieve full content.")
            return ToolResponse(
                text="\n".join(lines), details={"type": "fetch", "urlCount": len(urls)}
            )

        if target.error and not target.is_partial:
            return ToolResponse(
                text=f"Error: {target.error}",
                details={"type": "fetch", "url": target.url, "error": target.error},
                is_error=True,
            )

        text = f"# {target.title}\n\n{target.content}"
        details: dict[str, Any] = {
            "type": "fetch",
            "url": target.url,
            "title": target.title,
            "charCount": len(target.content),
        }
        if target.is_partial:
            text = f"Warning: {target.error}. Treat the content below with caution.\n\n{text}"
            details["partial"] = True
        return ToolResponse(text=text, details=details)

    def _context_content(self, ctx: ContextResultData) -> ToolResponse:
        if ctx.error:
            return ToolResponse(
                text=f"Error: {ctx.error}",
                details={"type": "context", "query": ctx.query, "error": ctx.error},
                is_error=True,
            )
        return ToolResponse(
            text=ctx.content,
            details={"type": "context", "query": ctx.query, "charCount": len(ctx.content)},
        )

    # ---------- session events ----------

    def abort_all_pending(self) -> int:
        return self.session.pending.abort_all()

    def _begin_session(self, history: SessionHistory | None) -> int:
        if history is not None:
            self.history = history
        self.abort_all_pending()
        self.session.clones.clear()
        self.session.results.clear()
        return self.session.results.restore_from_session(self.history)

    def on_session_start(self, history: SessionHistory | None = None) -> int:
        """Abort pending calls, drop clones, and restore results from history."""
        return self._begin_session(history)

    def on_session_switch(self, history: SessionHistory | None = None) -> int:
        return self._begin_session(history)

    def on_session_fork(self, history: SessionHistory | None = None) -> int:
        return self._begin_session(history)

    def on_session_tree(self, history: SessionHistory | None = None) -> int:
        return self._begin_session(history)

    def on_session_shutdown(self) -> None:
        self.abort_all_pending()
        self.session.clones.clear()
        self.session.results.clear()
        self.session.offload.cleanup()
        self.config_loader.reset()
        logger.info("Web tools session shut down")
