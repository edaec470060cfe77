import asyncio

import httpx

from tools.web.cancellation import CancellationToken
from tools.web.extract import (
    ABORTED_ERROR,
    INCOMPLETE_ERROR,
    INVALID_URL_ERROR,
    TOO_LARGE_ERROR,
    UNSUPPORTED_TYPE_ERROR,
    ContentExtractor,
    html_to_markdown,
    title_from_url,
)

READER_HOST = "r.jina.ai"

PARAGRAPH = (
    "Structured concurrency keeps the lifetime of every task bounded by its parent, "
    "so cancellation, error propagation, and resource cleanup follow the shape of the code, "
    "which makes asynchronous programs far easier to reason about in practice."
)

ARTICLE_HTML = f"""
<html>
  <head><title>Structured Concurrency Explained</title></head>
  <body>
    <nav><a href="/">Home</a> | <a href="/blog">Blog</a></nav>
    <article>
      <h1>Structured Concurrency Explained</h1>
      {"".join(f"<p>{PARAGRAPH}</p>" for _ in range(6))}
      <pre><code>async with TaskGroup() as tg:
    tg.create_task(work())</code></pre>
    </article>
    <footer>Copyright</footer>
  </body>
</html>
"""

SHORT_HTML = """
<html><head><title>Stub</title></head>
<body><article><p>Only a short teaser paragraph lives here, with little else.</p></article></body>
</html>
"""

READER_BODY = (
    "Title: Rendered\n\nURL Source: https://example.com/spa\n\nMarkdown Content:\n"
    "# Rendered Heading\n\n" + PARAGRAPH
)


class CountingHandler:
    """MockTransport handler that records every request and answers per host."""

    def __init__(self, primary, reader=None):
        self.primary = primary
        self.reader = reader or (lambda request: httpx.Response(500, text="reader down"))
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == READER_HOST:
            return self.reader(request)
        return self.primary(request)

    @property
    def reader_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.host == READER_HOST)


def _extract(handler, url, signal=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ContentExtractor(client=client).extract(url, signal)

    return asyncio.run(run())


def test_binary_content_type_never_calls_fallback():
    handler = CountingHandler(
        lambda request: httpx.Response(200, headers={"content-type": "image/png"}, content=b"\x89PNG")
    )
    result = _extract(handler, "https://example.com/logo.png")

    assert result.error == UNSUPPORTED_TYPE_ERROR
    assert result.content == ""
    assert len(handler.requests) == 1


def test_oversized_content_length_is_final():
    handler = CountingHandler(
        lambda request: httpx.Response(
            200,
            headers={"content-type": "text/html", "content-length": str(6 * 1024 * 1024)},
            content=b"<html></html>",
        )
    )
    result = _extract(handler, "https://example.com/huge")

    assert result.error == TOO_LARGE_ERROR
    assert handler.reader_calls == 0


def test_http_404_with_failing_fallback_reports_both():
    handler = CountingHandler(lambda request: httpx.Response(404, text="nope"))
    result = _extract(handler, "https://example.com/missing")

    assert "404" in result.error
    assert "Reader fallback also failed" in result.error
    assert result.content == ""
    assert handler.reader_calls == 1


def test_http_error_recovered_by_reader():
    handler = CountingHandler(
        lambda request: httpx.Response(403, text="blocked"),
        reader=lambda request: httpx.Response(200, text=READER_BODY),
    )
    result = _extract(handler, "https://example.com/spa")

    assert result.error is None
    assert result.title == "Rendered Heading"
    assert result.content.startswith("# Rendered Heading")
    assert "Markdown Content:" not in result.content
    reader_request = handler.requests[-1]
    assert str(reader_request.url).endswith("example.com/spa")
    assert reader_request.headers["accept"] == "text/markdown"


def test_reader_placeholder_counts_as_failure():
    handler = CountingHandler(
        lambda request: httpx.Response(500, text="oops"),
        reader=lambda request: httpx.Response(
            200, text="Markdown Content:\nLoading..." + " " * 10 + "x" * 200
        ),
    )
    result = _extract(handler, "https://example.com/app")

    assert result.error.startswith("HTTP 500")
    assert result.error.endswith("Reader fallback also failed.")


def test_article_extracted_to_markdown():
    handler = CountingHandler(
        lambda request: httpx.Response(
            200, headers={"content-type": "text/html; charset=utf-8"}, text=ARTICLE_HTML
        )
    )
    result = _extract(handler, "https://example.com/blog/structured-concurrency")

    assert result.error is None
    assert result.title == "Structured Concurrency Explained"
    assert "cancellation, error propagation" in result.content
    assert "Copyright" not in result.content
    assert handler.reader_calls == 0


def test_short_article_kept_when_fallback_fails():
    handler = CountingHandler(
        lambda request: httpx.Response(200, headers={"content-type": "text/html"}, text=SHORT_HTML)
    )
    result = _extract(handler, "https://example.com/teaser")

    assert result.error.startswith(INCOMPLETE_ERROR)
    assert "Reader fallback also failed" in result.error
    assert "short teaser paragraph" in result.content
    assert result.is_partial
    assert handler.reader_calls == 1


def test_non_html_passthrough_uses_heading_then_url_for_title():
    handler = CountingHandler(
        lambda request: httpx.Response(
            200, headers={"content-type": "text/plain"}, text="intro\n# Release Notes\nfixed things"
        )
    )
    result = _extract(handler, "https://example.com/notes.txt")
    assert result.error is None
    assert result.title == "Release Notes"
    assert result.content == "intro\n# Release Notes\nfixed things"

    handler = CountingHandler(
        lambda request: httpx.Response(200, headers={"content-type": "application/json"}, text='{"a": 1}')
    )
    result = _extract(handler, "https://example.com/api/my-data_file")
    assert result.title == "my data file"
    assert result.content == '{"a": 1}'


def test_invalid_url_and_aborted_do_no_io():
    handler = CountingHandler(lambda request: httpx.Response(200, text="unreachable"))

    assert _extract(handler, "not a url").error == INVALID_URL_ERROR

    async def run_cancelled():
        token = CancellationToken()
        token.cancel()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ContentExtractor(client=client).extract("https://example.com", token)

    assert asyncio.run(run_cancelled()).error == ABORTED_ERROR
    assert handler.requests == []


def test_fetch_all_preserves_input_order():
    delays = {"/slow": 0.05, "/medium": 0.02, "/fast": 0.0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == READER_HOST:
            return httpx.Response(500)
        if request.url.path == "/broken":
            return httpx.Response(200, headers={"content-type": "video/mp4"}, content=b"\x00")
        await asyncio.sleep(delays[request.url.path])
        return httpx.Response(
            200, headers={"content-type": "text/plain"}, text=f"# {request.url.path}\nbody"
        )

    urls = [
        "https://example.com/slow",
        "https://example.com/broken",
        "https://example.com/medium",
        "https://example.com/fast",
    ]

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ContentExtractor(client=client).fetch_all(urls)

    results = asyncio.run(run())

    assert [r.url for r in results] == urls
    assert results[1].error == UNSUPPORTED_TYPE_ERROR
    assert [r.title for r in results if r.ok] == ["/slow", "/medium", "/fast"]


def test_html_to_markdown_fences_code_and_uses_atx_headings():
    markdown = html_to_markdown("<h2>Setup</h2><pre><code>pip install x\n</code></pre>")
    assert "## Setup" in markdown
    assert "```\npip install x\n```" in markdown


def test_title_from_url_falls_back_to_host():
    assert title_from_url("https://example.com/") == "example.com"
    assert title_from_url("https://example.com/a/hello%20world-page") == "hello world page"


def test_unknown_charset_decodes_as_utf8_without_breaking_the_batch():
    def primary(request):
        if request.url.path == "/bogus":
            return httpx.Response(
                200,
                headers={"content-type": "text/plain; charset=bogus-cs"},
                content="# Café notes\n\nbody".encode("utf-8"),
            )
        return httpx.Response(200, headers={"content-type": "text/plain"}, text="# Plain\n\nok")

    handler = CountingHandler(primary)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ContentExtractor(client=client).fetch_all(
                ["https://example.com/bogus", "https://example.com/plain"]
            )

    bogus, plain = asyncio.run(run())

    assert bogus.ok
    assert bogus.title == "Café notes"
    assert plain.ok
    assert handler.reader_calls == 0


class RecordingClient(httpx.AsyncClient):
    """AsyncClient that remembers its constructor options and serves canned responses."""

    options: dict = {}

    def __init__(self, **kwargs):
        RecordingClient.options = dict(kwargs)
        super().__init__(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, headers={"content-type": "text/plain"}, text="# Slow\n\nok")
            ),
            **kwargs,
        )


def test_owned_client_uses_configured_timeout(monkeypatch):
    monkeypatch.setattr(httpx, "AsyncClient", RecordingClient)

    result = asyncio.run(ContentExtractor(timeout_s=30).extract("https://example.com/slow"))

    assert result.ok
    assert RecordingClient.options["timeout"] == 30
    assert RecordingClient.options["follow_redirects"] is True
