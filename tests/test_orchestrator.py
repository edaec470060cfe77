import asyncio
import json
from pathlib import Path

import httpx
import pytest

from orchestrator.core import WebToolsOrchestrator
from tools.web.cancellation import CancellationToken
from tools.web.errors import ResultNotFoundError, ToolInputError
from tools.web.github_extract import CommandResult
from tools.web.result_store import RESULTS_ENTRY_TYPE
from tools.web.session_state import InMemorySessionHistory

LONG_TEXT = "# Big Document\n" + ("lorem ipsum dolor sit amet " * 1600)


def exa_and_pages(request: httpx.Request) -> httpx.Response:
    host, path = request.url.host, request.url.path
    if host == "api.exa.ai" and path == "/search":
        query = json.loads(request.content)["query"]
        if query == "broken":
            return httpx.Response(500, text="upstream exploded")
        return httpx.Response(
            200,
            json={"results": [{"title": f"About {query}", "url": f"https://r.example/{query}", "text": "snippet"}]},
        )
    if host == "api.exa.ai" and path == "/context":
        return httpx.Response(200, json={"response": "```python\nasyncio.run(main())\n```"})
    if host == "r.jina.ai":
        return httpx.Response(503)
    if path == "/missing":
        return httpx.Response(404)
    if path == "/big":
        return httpx.Response(200, headers={"content-type": "text/plain"}, text=LONG_TEXT)
    if path == "/bogus-charset":
        return httpx.Response(
            200, headers={"content-type": "text/plain; charset=bogus-cs"}, content=b"# Odd charset\n\nstill readable"
        )
    if path == "/slow":
        return httpx.Response(200, text="never used")
    return httpx.Response(200, headers={"content-type": "text/markdown"}, text=f"# Page {path}\n\nhello")


class CloneRunner:
    def __init__(self):
        self.clones = 0

    async def __call__(self, args, timeout_s, signal):
        if args[:2] == ["gh", "api"]:
            return CommandResult(returncode=0, stdout="10")
        self.clones += 1
        target = Path(args[4])
        target.mkdir(parents=True, exist_ok=True)
        (target / "README.md").write_text("# Cloned readme")
        return CommandResult(returncode=0)


@pytest.fixture
def orchestrator(session, config_loader, history):
    client = httpx.AsyncClient(transport=httpx.MockTransport(exa_and_pages))
    return WebToolsOrchestrator(
        session=session,
        config_loader=config_loader,
        history=history,
        http_client=client,
        runner=CloneRunner(),
    )


# ---------- web_search ----------


def test_web_search_isolates_failed_queries(orchestrator, history):
    response = asyncio.run(orchestrator.web_search({"queries": ["python", "broken"], "numResults": 99}))

    assert response.is_success
    assert "## Query: python\n1. **About python**" in response.text
    assert "## Query: broken\nError: Exa API error (500): upstream exploded" in response.text
    search_id = response.details["searchId"]
    assert f'responseId "{search_id}"' in response.text
    assert response.details == {
        "queryCount": 2,
        "successfulQueries": 1,
        "totalResults": 1,
        "searchId": search_id,
    }

    entries = history.get_entries()
    assert entries[-1]["customType"] == RESULTS_ENTRY_TYPE
    assert entries[-1]["data"]["id"] == search_id


def test_web_search_requires_query(orchestrator):
    with pytest.raises(ToolInputError):
        asyncio.run(orchestrator.web_search({}))


def test_web_search_without_key_reports_per_query(orchestrator, config_file):
    config_file({})
    response = asyncio.run(orchestrator.web_search({"query": "python"}))
    assert "EXA_API_KEY" in response.text
    assert response.details["successfulQueries"] == 0


# ---------- fetch_content ----------


def test_fetch_single_inline(orchestrator):
    response = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/doc"}))

    assert response.text == "# Page /doc\n\n# Page /doc\n\nhello"
    assert response.details["truncated"] is False
    assert response.details["offloadPath"] is None


def test_fetch_single_large_is_offloaded(orchestrator):
    response = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/big"}))

    path = Path(response.details["offloadPath"])
    assert response.details["truncated"] is True
    assert path.read_text(encoding="utf-8") == f"# Big Document\n\n{LONG_TEXT}"
    assert f"Full content saved to {path}" in response.text
    assert len(response.text) < 3000

    full = orchestrator.get_search_content({"responseId": response.details["responseId"], "urlIndex": 0, "maxChars": 100000})
    assert full.text.endswith(LONG_TEXT)


def test_fetch_single_failure_is_error_payload(orchestrator):
    response = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/missing"}))
    assert response.is_error
    assert response.text.startswith("Error fetching https://example.com/missing: HTTP 404")
    assert "Reader fallback also failed" in response.text


def test_fetch_multi_summary(orchestrator):
    response = asyncio.run(
        orchestrator.fetch_content(
            {"urls": ["https://example.com/a", "https://example.com/missing", "https://example.com/a"]}
        )
    )
    response_id = response.details["responseId"]

    assert response.text.startswith(f"Fetched 1/2 URLs. Response ID: {response_id}")
    assert "1. ✅ Page /a (" in response.text
    assert "2. ❌ https://example.com/missing: HTTP 404" in response.text
    assert response.details["totalCount"] == 2


def test_fetch_multi_survives_unknown_charset(orchestrator):
    response = asyncio.run(
        orchestrator.fetch_content({"urls": ["https://example.com/bogus-charset", "https://example.com/a"]})
    )

    assert response.text.startswith("Fetched 2/2 URLs.")
    assert "1. ✅ Odd charset (" in response.text


def test_fetch_github_goes_through_repository_resolver(orchestrator):
    response = asyncio.run(orchestrator.fetch_content({"url": "https://github.com/o/r"}))

    assert response.details["title"] == "o/r"
    assert "Repository cloned to:" in response.text
    assert "# Cloned readme" in response.text
    assert orchestrator.resolvers.resolvers[0].extractor.runner.clones == 1


def test_fetch_github_issue_falls_through_to_extraction(orchestrator):
    response = asyncio.run(orchestrator.fetch_content({"url": "https://github.com/o/r/issues/1"}))
    assert response.details["title"] == "Page /o/r/issues/1"
    assert orchestrator.resolvers.resolvers[0].extractor.runner.clones == 0


def test_abort_all_pending_cancels_inflight_fetch(session, config_loader, history):
    async def slow_handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, text="late")

    orch = WebToolsOrchestrator(
        session=session,
        config_loader=config_loader,
        history=history,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)),
    )

    async def run():
        task = asyncio.create_task(orch.fetch_content({"url": "https://example.com/slow"}))
        await asyncio.sleep(0.05)
        assert orch.abort_all_pending() == 1
        return await task

    response = asyncio.run(run())
    assert response.text == "Error fetching https://example.com/slow: Aborted"
    assert len(session.pending) == 0


# ---------- code_search ----------


def test_code_search_stores_context(orchestrator):
    response = asyncio.run(orchestrator.code_search({"query": "asyncio run", "tokensNum": 10}))

    assert response.text == "```python\nasyncio.run(main())\n```"
    stored = orchestrator.get_search_content({"responseId": response.details["responseId"]})
    assert stored.text == response.text
    assert stored.details["type"] == "context"


def test_code_search_failure_is_error_payload(orchestrator, config_file):
    config_file({})
    response = asyncio.run(orchestrator.code_search({"query": "asyncio run"}))
    assert response.is_error
    assert response.text.startswith("Error: Exa API key not configured")


# ---------- get_search_content ----------


def test_get_search_content_search_selection(orchestrator):
    search = asyncio.run(orchestrator.web_search({"queries": ["alpha", "beta"]}))
    rid = search.details["searchId"]

    overview = orchestrator.get_search_content({"responseId": rid})
    assert "## Query: alpha" in overview.text and "## Query: beta" in overview.text

    by_text = orchestrator.get_search_content({"responseId": rid, "query": "beta"})
    assert by_text.text.startswith("## Query: beta\n\n1. **About beta**")

    by_index = orchestrator.get_search_content({"responseId": rid, "queryIndex": 0})
    assert by_index.details["query"] == "alpha"

    with pytest.raises(ResultNotFoundError, match='Query "gamma" not found. Available queries: alpha, beta'):
        orchestrator.get_search_content({"responseId": rid, "query": "gamma"})
    with pytest.raises(ResultNotFoundError, match="queryIndex 5 out of range. Valid: 0-1"):
        orchestrator.get_search_content({"responseId": rid, "queryIndex": 5})


def test_get_search_content_fetch_selection(orchestrator):
    fetch = asyncio.run(
        orchestrator.fetch_content({"urls": ["https://example.com/a", "https://example.com/missing"]})
    )
    rid = fetch.details["responseId"]

    overview = orchestrator.get_search_content({"responseId": rid})
    assert overview.text.startswith("Fetch result contains 2 URLs:")
    assert overview.text.endswith("Specify url or urlIndex to retrieve full content.")

    failed = orchestrator.get_search_content({"responseId": rid, "url": "https://example.com/missing"})
    assert failed.is_error
    assert failed.text.startswith("Error: HTTP 404")

    truncated = orchestrator.get_search_content({"responseId": rid, "urlIndex": 0, "maxChars": 5})
    assert truncated.text.startswith("# Pag\n\n[Content truncated at 5 chars.")
    assert truncated.details["truncated"] is True

    with pytest.raises(ResultNotFoundError, match="Available URLs"):
        orchestrator.get_search_content({"responseId": rid, "url": "https://nope"})
    with pytest.raises(ResultNotFoundError, match="urlIndex -1 out of range. Valid: 0-1"):
        orchestrator.get_search_content({"responseId": rid, "urlIndex": -1})


def test_get_search_content_unknown_id(orchestrator):
    with pytest.raises(ResultNotFoundError, match='No result found for responseId "zzz"'):
        orchestrator.get_search_content({"responseId": "zzz"})
    with pytest.raises(ToolInputError):
        orchestrator.get_search_content({})


# ---------- session events ----------


def test_session_start_restores_from_history(orchestrator, session, config_loader, history):
    fetch = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/a"}))
    rid = fetch.details["responseId"]

    fresh = WebToolsOrchestrator(config_loader=config_loader, history=history)
    assert fresh.on_session_start() == 1
    assert "hello" in fresh.get_search_content({"responseId": rid, "urlIndex": 0}).text


def test_session_switch_replaces_results(orchestrator):
    fetch = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/a"}))
    rid = fetch.details["responseId"]

    assert orchestrator.on_session_switch(InMemorySessionHistory()) == 0
    with pytest.raises(ResultNotFoundError):
        orchestrator.get_search_content({"responseId": rid})


def test_session_shutdown_clears_everything(orchestrator, session):
    big = asyncio.run(orchestrator.fetch_content({"url": "https://example.com/big"}))
    asyncio.run(orchestrator.fetch_content({"url": "https://github.com/o/r"}))
    offload_path = Path(big.details["offloadPath"])
    assert offload_path.exists()
    assert len(session.clones) == 1

    orchestrator.on_session_shutdown()

    assert not offload_path.exists()
    assert len(session.results) == 0
    assert len(session.clones) == 0


def test_enabled_tools_follow_config(orchestrator, config_file):
    config_file({"tools": {"code_search": False}})
    assert orchestrator.enabled_tools() == ["web_search", "fetch_content", "get_search_content"]


def test_host_signal_does_not_accumulate_finished_calls(orchestrator):
    host_signal = CancellationToken()

    for _ in range(3):
        asyncio.run(orchestrator.fetch_content({"url": "https://example.com/a"}, signal=host_signal))

    assert host_signal._children == set()
    host_signal.cancel()
    assert len(orchestrator.session.pending) == 0
