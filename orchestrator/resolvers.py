import asyncio

from models.content import ExtractedContent
from orchestrator.resolution_types import Resolution
from tools.web.cancellation import CancellationToken
from tools.web.extract import FETCH_CONCURRENCY, ContentExtractor
from tools.web.github_extract import GitHubExtractor
from utils.logger import get_logger

logger = get_logger(__name__)

NO_RESOLVER_ERROR = "No resolver could handle this URL"


class ContentResolver:
    name = "base"

    async def resolve(
        self, url: str, signal: CancellationToken | None = None, force_clone: bool = False
    ) -> Resolution:
        raise NotImplementedError


class RepositoryResolver(ContentResolver):
    """GitHub code URLs served from a local clone; declines everything else."""

    name = "repository"

    def __init__(self, extractor: GitHubExtractor):
        self.extractor = extractor

    async def resolve(
        self, url: str, signal: CancellationToken | None = None, force_clone: bool = False
    ) -> Resolution:
        content = await self.extractor.extract(url, signal, force_clone)
        if content is None:
            return Resolution.not_matched(self.name)
        return Resolution.from_content(content, self.name)


class ExtractionResolver(ContentResolver):
    """Generic HTTP extraction; matches every URL."""

    name = "extraction"

    def __init__(self, extractor: ContentExtractor):
        self.extractor = extractor

    async def resolve(
        self, url: str, signal: CancellationToken | None = None, force_clone: bool = False
    ) -> Resolution:
        content = await self.extractor.extract(url, signal)
        return Resolution.from_content(content, self.name)


class ResolverChain:
    """
    Ordered resolvers; the next one is consulted only when the previous did not match.
    """

    def __init__(self, resolvers: list[ContentResolver], concurrency: int = FETCH_CONCURRENCY):
        self.resolvers = resolvers
        self.concurrency = concurrency

    async def resolve(
        self, url: str, signal: CancellationToken | None = None, force_clone: bool = False
    ) -> ExtractedContent:
        for resolver in self.resolvers:
            resolution = await resolver.resolve(url, signal, force_clone)
            if resolution.matched and resolution.content is not None:
                logger.debug(
                    f"URL resolved by {resolver.name}",
                    extra={
                        "extra_fields": {
                            "url": url,
                            "resolver": resolver.name,
                            "status": resolution.status.value,
                        }
                    },
                )
                return resolution.content
        return ExtractedContent.failure(url, NO_RESOLVER_ERROR)

    async def resolve_all(
        self, urls: list[str], signal: CancellationToken | None = None, force_clone: bool = False
    ) -> list[ExtractedContent]:
        """Resolve URLs with bounded parallelism; output order matches input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(target: str) -> ExtractedContent:
            async with semaphore:
                return await self.resolve(target, signal, force_clone)

        return list(await asyncio.gather(*(_one(u) for u in urls)))
