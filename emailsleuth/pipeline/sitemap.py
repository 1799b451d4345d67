"""Sitemap discovery.

Reads ``Sitemap:`` lines from robots.txt plus the conventional sitemap
locations, follows sitemap-index files a bounded number of levels and files,
and returns same-origin page URLs that look contact-related.
"""

import gzip
import zlib
from urllib.parse import urlparse

import aiohttp
from lxml import etree

from emailsleuth.config import CrawlConfig, get_config
from emailsleuth.core.logging import get_logger
from emailsleuth.core.retry import (
    RetryConfig,
    TransientStatusError,
    raise_for_transient,
    retry_with_backoff,
)
from emailsleuth.fetch.base import DESKTOP_USER_AGENT
from emailsleuth.pipeline.planner import classify, is_noise_path, is_same_origin, site_root
from emailsleuth.schemas.extraction import PagePriority

logger = get_logger(__name__)

DEFAULT_SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml")
MAX_SITEMAP_BYTES = 5 * 1024 * 1024

_RETRY = RetryConfig(
    max_attempts=2,
    backoff_base=0.5,
    retryable_exceptions=(aiohttp.ClientError, TimeoutError, TransientStatusError),
)

_XML_PARSER = etree.XMLParser(recover=True, resolve_entities=False, no_network=True, huge_tree=False)


def _local_name(tag: object) -> str:
    return etree.QName(tag).localname if isinstance(tag, str) else ""


def parse_sitemap(content: bytes) -> tuple[list[str], list[str]]:
    """Split a sitemap document into (nested sitemap URLs, page URLs)."""
    if content[:2] == b"\x1f\x8b":
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as e:
            logger.bind(error=str(e) or type(e).__name__).debug("sitemap_gzip_unreadable")
            return [], []
    content = content.strip()
    if not content:
        return [], []

    try:
        root = etree.fromstring(content, parser=_XML_PARSER)
    except etree.XMLSyntaxError:
        return [], []
    if root is None:
        return [], []

    locs = [
        el.text.strip()
        for el in root.iter()
        if _local_name(el.tag) == "loc" and el.text and el.text.strip()
    ]
    if _local_name(root.tag) == "sitemapindex":
        return locs, []
    return [], locs


def parse_robots(text: str) -> list[str]:
    """``Sitemap:`` directives from a robots.txt body."""
    sitemaps = []
    for line in text.splitlines():
        name, _, value = line.partition(":")
        if name.strip().lower() == "sitemap" and value.strip():
            sitemaps.append(value.strip())
    return sitemaps


async def _get_bytes(session: aiohttp.ClientSession, url: str, timeout: float) -> bytes | None:
    async def attempt() -> bytes | None:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": DESKTOP_USER_AGENT},
        ) as response:
            raise_for_transient(url, response.status)
            if response.status != 200:
                return None
            return await response.content.read(MAX_SITEMAP_BYTES)

    try:
        return await retry_with_backoff(attempt, config=_RETRY, operation_name=f"sitemap:{url}")
    except (aiohttp.ClientError, TimeoutError, TransientStatusError) as e:
        logger.bind(url=url, error=str(e) or type(e).__name__).debug("sitemap_fetch_failed")
        return None


async def discover_sitemap_urls(
    session: aiohttp.ClientSession,
    base_url: str,
    config: CrawlConfig | None = None,
) -> list[str]:
    """
    Find contact-like page URLs through robots.txt and sitemaps.

    Args:
        session: HTTP session to use
        base_url: Any URL on the site
        config: Crawl config (depth and nested sitemap limits)

    Returns:
        Same-origin URLs whose path matches a contact, about, legal or
        support keyword, in discovery order
    """
    config = config or get_config().crawl
    root = site_root(base_url).rstrip("/")
    timeout = config.http_timeout_seconds
    log = logger.bind(url=base_url)

    queue: list[tuple[str, int]] = [(root + path, 0) for path in DEFAULT_SITEMAP_PATHS]
    robots = await _get_bytes(session, root + "/robots.txt", timeout)
    if robots:
        for sitemap in parse_robots(robots.decode("utf-8", errors="replace")):
            queue.append((sitemap, 0))

    visited: set[str] = set()
    nested_fetched = 0
    found: list[str] = []
    seen_pages: set[str] = set()

    while queue:
        sitemap_url, depth = queue.pop(0)
        if sitemap_url in visited:
            continue
        visited.add(sitemap_url)

        content = await _get_bytes(session, sitemap_url, timeout)
        if not content:
            continue

        nested, pages = parse_sitemap(content)
        for nested_url in nested:
            if depth + 1 > config.sitemap_depth or nested_fetched >= config.max_nested_sitemaps:
                break
            if nested_url not in visited:
                queue.append((nested_url, depth + 1))
                nested_fetched += 1

        for page_url in pages:
            if page_url in seen_pages or not is_same_origin(page_url, base_url):
                continue
            seen_pages.add(page_url)
            path = urlparse(page_url).path
            if is_noise_path(path):
                continue
            if classify(path) != PagePriority.OTHER:
                found.append(page_url)

    log.bind(sitemaps=len(visited), contact_urls=len(found)).debug("sitemap_discovered")
    return found
