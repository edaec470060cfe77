"""
URL → readable text extraction pipeline.

Stages per URL, strictly in order:
1. abort / URL validation (no network I/O)
2. primary HTTP GET with a browser-like user agent (30s, cancellable)
3. status check (non-2xx is recoverable)
4. media-type and size guard (binary or > 5 MiB is final, no fallback)
5. non-HTML passthrough
6. readability extraction + HTML → Markdown
7. reader-service fallback for recoverable failures
8. fallback resolution
"""

import asyncio
import re
import textwrap
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import unquote, urlparse

import html2text
import httpx
from bs4 import BeautifulSoup
from readability import Document
from readability.readability import Unparseable

from models.content import ExtractedContent
from utils.logger import get_logger

from .cancellation import CancellationToken, run_with_cancellation
from .errors import OperationAborted

logger = get_logger(__name__)

MAX_RESPONSE_BYTES = 5 * 1024 * 1024
HTTP_TIMEOUT_S = 30.0
MIN_ARTICLE_CHARS = 500
MIN_READER_CHARS = 100
FETCH_CONCURRENCY = 3

READER_BASE_URL = "https://r.jina.ai/"
READER_MARKER = "Markdown Content:"
READER_PLACEHOLDERS = ("Loading...", "Please enable JavaScript")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

ABORTED_ERROR = "Aborted"
INVALID_URL_ERROR = "Invalid URL"
UNSUPPORTED_TYPE_ERROR = "Unsupported content type"
TOO_LARGE_ERROR = "Response too large"
NO_ARTICLE_ERROR = "Could not extract readable content"
INCOMPLETE_ERROR = "Extracted content appears incomplete"
FALLBACK_FAILED_NOTE = "Reader fallback also failed."

# Errors that re-rendering through the reader service cannot fix
NON_RECOVERABLE_ERRORS = frozenset({UNSUPPORTED_TYPE_ERROR, TOO_LARGE_ERROR, ABORTED_ERROR})

_HEADING_RE = re.compile(r"^#{1,2}\s+(.+)", re.MULTILINE)
_CODE_BLOCK_RE = re.compile(r"\[code\]\n?(.*?)\[/code\]", re.DOTALL)
_EXTRA_BLANK_LINES_RE = re.compile(r"\n{3,}")


def extract_heading_title(text: str) -> str | None:
    """First level-1 or level-2 markdown heading, if any."""
    match = _HEADING_RE.search(text)
    return match.group(1).strip() if match else None


def title_from_url(url: str) -> str:
    """Last path segment (URL-decoded, dashes/underscores → spaces), else the hostname."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    last = parsed.path.rstrip("/").split("/")[-1]
    if last:
        return re.sub(r"[-_]", " ", unquote(last))
    return parsed.hostname or url


def is_absolute_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def is_html(content_type: str) -> bool:
    return "text/html" in content_type or "application/xhtml" in content_type


def is_binary_type(content_type: str) -> bool:
    ct = content_type.lower()
    return (
        ct.startswith("image/")
        or ct.startswith("audio/")
        or ct.startswith("video/")
        or "application/zip" in ct
        or "application/octet-stream" in ct
    )


def html_to_markdown(html: str) -> str:
    """Convert an HTML fragment to Markdown with ATX headings and fenced code blocks."""
    converter = html2text.HTML2Text()
    converter.body_width = 0
    converter.ignore_images = True
    converter.ignore_emphasis = False
    converter.ignore_links = False
    converter.unicode_snob = True
    converter.mark_code = True

    markdown = converter.handle(html)

    def _fence(match: re.Match) -> str:
        code = textwrap.dedent(match.group(1)).strip("\n")
        return f"```\n{code}\n```"

    markdown = _CODE_BLOCK_RE.sub(_fence, markdown)
    markdown = "\n".join(line.rstrip() for line in markdown.split("\n"))
    return _EXTRA_BLANK_LINES_RE.sub("\n\n", markdown).strip()


def extract_article(html: str, url: str) -> ExtractedContent:
    """
    Run readability over a full HTML document and convert the article to Markdown.

    Returns an ExtractedContent whose error is NO_ARTICLE_ERROR when no body
    was found, or INCOMPLETE_ERROR (content kept) when the Markdown is short.
    """
    try:
        document = Document(html, url=url)
        article_html = document.summary(html_partial=True)
    except Unparseable:
        return ExtractedContent.failure(url, NO_ARTICLE_ERROR)

    if not BeautifulSoup(article_html, "html.parser").get_text(strip=True):
        return ExtractedContent.failure(url, NO_ARTICLE_ERROR)

    title = (document.short_title() or "").strip()
    if not title or title == "[no-title]":
        title = title_from_url(url)

    markdown = html_to_markdown(article_html)
    if len(markdown) < MIN_ARTICLE_CHARS:
        return ExtractedContent(url=url, title=title, content=markdown, error=INCOMPLETE_ERROR)
    return ExtractedContent(url=url, title=title, content=markdown, error=None)


class ContentExtractor:
    """
    Fetches URLs and returns normalized ExtractedContent.

    Never raises for per-URL failures: every outcome is encoded in
    ExtractedContent.error so batch callers get one result per input.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        reader_base_url: str = READER_BASE_URL,
        timeout_s: float = HTTP_TIMEOUT_S,
        concurrency: int = FETCH_CONCURRENCY,
    ):
        """
        Args:
            client: Shared httpx client (a short-lived one is created per call if None)
            reader_base_url: URL-to-markdown proxy; the target URL is appended
            timeout_s: Per-request timeout, raced with the caller's token
            concurrency: Maximum in-flight URLs for fetch_all
        """
        self.client = client
        self.reader_base_url = reader_base_url
        self.timeout_s = timeout_s
        self.concurrency = concurrency

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s, follow_redirects=True) as client:
            yield client

    async def extract(
        self, url: str, signal: CancellationToken | None = None
    ) -> ExtractedContent:
        """
        Extract readable content from one URL, falling back to the reader service
        on recoverable failures.
        """
        if signal is not None and signal.cancelled:
            return ExtractedContent.failure(url, ABORTED_ERROR)
        if not is_absolute_url(url):
            return ExtractedContent.failure(url, INVALID_URL_ERROR)

        async with self._client_scope() as client:
            primary = await self._fetch_via_http(client, url, signal)
            if primary.ok or primary.error in NON_RECOVERABLE_ERRORS:
                return primary

            logger.warning(
                f"Primary extraction failed, trying reader fallback: {primary.error}",
                extra={"extra_fields": {"url": url, "stage": "fallback", "error": primary.error}},
            )
            fallback = await self._fetch_via_reader(client, url, signal)

        if fallback is not None:
            return fallback

        error = f"{primary.error}. {FALLBACK_FAILED_NOTE}"
        if primary.error == INCOMPLETE_ERROR:
            # Keep the short extraction; the caller flags it as partial
            return ExtractedContent(url=url, title=primary.title, content=primary.content, error=error)
        return ExtractedContent.failure(url, error)

    async def fetch_all(
        self, urls: list[str], signal: CancellationToken | None = None
    ) -> list[ExtractedContent]:
        """Extract many URLs with bounded parallelism; output order matches input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(target: str) -> ExtractedContent:
            async with semaphore:
                return await self.extract(target, signal)

        return list(await asyncio.gather(*(_one(u) for u in urls)))

    async def _fetch_via_http(
        self,
        client: httpx.AsyncClient,
        url: str,
        signal: CancellationToken | None,
    ) -> ExtractedContent:
        request = client.build_request("GET", url, headers={"User-Agent": USER_AGENT})
        try:
            response = await run_with_cancellation(
                client.send(request, stream=True, follow_redirects=True),
                signal=signal,
                timeout=self.timeout_s,
            )
        except OperationAborted:
            return ExtractedContent.failure(url, ABORTED_ERROR)
        except asyncio.TimeoutError:
            return ExtractedContent.failure(
                url, f"Fetch failed: timed out after {self.timeout_s:g}s"
            )
        except httpx.HTTPError as e:
            return ExtractedContent.failure(url, f"Fetch failed: {str(e) or type(e).__name__}")

        try:
            if not response.is_success:
                return ExtractedContent.failure(
                    url, f"HTTP {response.status_code} {response.reason_phrase or ''}".strip()
                )

            content_type = response.headers.get("content-type", "")
            if is_binary_type(content_type):
                return ExtractedContent.failure(url, UNSUPPORTED_TYPE_ERROR)

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_RESPONSE_BYTES:
                return ExtractedContent.failure(url, TOO_LARGE_ERROR)

            try:
                body = await run_with_cancellation(
                    self._read_bounded(response), signal=signal, timeout=self.timeout_s
                )
            except OperationAborted:
                return ExtractedContent.failure(url, ABORTED_ERROR)
            except asyncio.TimeoutError:
                return ExtractedContent.failure(
                    url, f"Fetch failed: body read timed out after {self.timeout_s:g}s"
                )
            except httpx.HTTPError as e:
                return ExtractedContent.failure(url, f"Fetch failed: {str(e) or type(e).__name__}")
        finally:
            await response.aclose()

        if body is None:
            return ExtractedContent.failure(url, TOO_LARGE_ERROR)

        # httpx falls back to utf-8 for a missing or unknown charset
        text = body.decode(response.encoding or "utf-8", errors="replace")
        if len(text) > MAX_RESPONSE_BYTES:
            return ExtractedContent.failure(url, TOO_LARGE_ERROR)

        if not is_html(content_type):
            title = extract_heading_title(text) or title_from_url(url)
            return ExtractedContent(url=url, title=title, content=text, error=None)

        result = extract_article(text, url)
        logger.debug(
            "Readability extraction finished",
            extra={
                "extra_fields": {
                    "url": url,
                    "stage": "readability",
                    "chars": len(result.content),
                    "error": result.error,
                }
            },
        )
        return result

    @staticmethod
    async def _read_bounded(response: httpx.Response) -> bytes | None:
        """Read the body, returning None as soon as it exceeds MAX_RESPONSE_BYTES."""
        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > MAX_RESPONSE_BYTES:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    async def _fetch_via_reader(
        self,
        client: httpx.AsyncClient,
        url: str,
        signal: CancellationToken | None,
    ) -> ExtractedContent | None:
        """Render the URL through the reader proxy. Soft-fails to None."""
        reader_url = f"{self.reader_base_url}{url}"
        try:
            response = await run_with_cancellation(
                client.get(
                    reader_url,
                    headers={"Accept": "text/markdown", "X-No-Cache": "true"},
                    follow_redirects=True,
                ),
                signal=signal,
                timeout=self.timeout_s,
            )
        except (OperationAborted, asyncio.TimeoutError, httpx.HTTPError) as e:
            logger.warning(
                f"Reader fallback request failed: {type(e).__name__}",
                extra={"extra_fields": {"url": url, "stage": "fallback"}},
            )
            return None

        if not response.is_success:
            logger.warning(
                f"Reader fallback returned HTTP {response.status_code}",
                extra={"extra_fields": {"url": url, "stage": "fallback"}},
            )
            return None

        text = response.text
        index = text.find(READER_MARKER)
        content = text[index + len(READER_MARKER):].strip() if index >= 0 else text.strip()

        if len(content) < MIN_READER_CHARS or content.startswith(READER_PLACEHOLDERS):
            return None

        title = extract_heading_title(content) or title_from_url(url)
        return ExtractedContent(url=url, title=title, content=content, error=None)


async def extract_content(
    url: str,
    signal: CancellationToken | None = None,
    client: httpx.AsyncClient | None = None,
) -> ExtractedContent:
    return await ContentExtractor(client=client).extract(url, signal)


async def fetch_all_content(
    urls: list[str],
    signal: CancellationToken | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[ExtractedContent]:
    return await ContentExtractor(client=client).fetch_all(urls, signal)
