"""Multi-URL extraction with bounded concurrency.

Each URL gets its own sequential crawl; up to ``concurrency`` crawls run at
once and share one HTTP session, one browser and the verification caches.
"""

import asyncio
from collections.abc import AsyncIterator

from emailsleuth.config import get_config
from emailsleuth.core.logging import get_logger
from emailsleuth.pipeline.orchestrator import crawl, default_deps
from emailsleuth.pipeline.strategies import CrawlDeps
from emailsleuth.schemas.extraction import ExtractionResult

logger = get_logger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10


def clamp_concurrency(concurrency: int | None) -> int:
    if concurrency is None:
        return get_config().batch.concurrency
    return max(MIN_CONCURRENCY, min(concurrency, MAX_CONCURRENCY))


async def iter_batch_extract(
    urls: list[str],
    *,
    concurrency: int | None = None,
    deps: CrawlDeps | None = None,
    verify: bool = True,
) -> AsyncIterator[tuple[str, ExtractionResult]]:
    """
    Yield ``(url, result)`` pairs as crawls finish.

    There is no overall deadline; every fetch and probe inside a crawl
    carries its own timeout.
    """
    limit = clamp_concurrency(concurrency)
    semaphore = asyncio.Semaphore(limit)
    logger.info("batch_started", urls=len(urls), concurrency=limit)

    async def run(url: str, crawl_deps: CrawlDeps) -> tuple[str, ExtractionResult]:
        async with semaphore:
            return url, await crawl(url, crawl_deps)

    async def drain(crawl_deps: CrawlDeps) -> AsyncIterator[tuple[str, ExtractionResult]]:
        tasks = [asyncio.create_task(run(url, crawl_deps)) for url in urls]
        try:
            for finished in asyncio.as_completed(tasks):
                yield await finished
        finally:
            for task in tasks:
                task.cancel()

    if deps is not None:
        async for pair in drain(deps):
            yield pair
    else:
        async with default_deps(verify=verify) as built:
            async for pair in drain(built):
                yield pair

    logger.info("batch_complete", urls=len(urls))


async def batch_extract(
    urls: list[str],
    *,
    concurrency: int | None = None,
    deps: CrawlDeps | None = None,
    verify: bool = True,
) -> list[ExtractionResult]:
    """Crawl every URL and return results in input order."""
    results: dict[str, ExtractionResult] = {}
    async for url, result in iter_batch_extract(
        urls, concurrency=concurrency, deps=deps, verify=verify
    ):
        results[url] = result
    return [results[url] for url in urls]
