"""Crawl stages.

Each stage implements ``attempt(ctx) -> StageOutcome | None`` and is tried in
order by the orchestrator. None means the stage chose not to run. Fallback
stages only run while the crawl has found nothing.
"""

from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urlparse, urlunparse

import aiohttp
from bs4 import BeautifulSoup

from emailsleuth.config import CrawlConfig
from emailsleuth.core.logging import get_logger
from emailsleuth.fetch.base import BasePageFetcher, Device, FetchResult
from emailsleuth.pipeline.decoder import decode_candidates, find_addresses
from emailsleuth.pipeline.planner import bare_host, normalize_url, page_key, plan, site_root
from emailsleuth.pipeline.scoring import domain_matches_site
from emailsleuth.pipeline.sitemap import discover_sitemap_urls
from emailsleuth.pipeline.tables import get_tables
from emailsleuth.schemas.extraction import BlockedStatus, CandidateEmail, ExtractionMethod
from emailsleuth.services.ai_analyzer import AiAnalyzer
from emailsleuth.services.email_validation.base import BaseEmailValidator
from emailsleuth.services.email_validation.domain import DomainValidator

logger = get_logger(__name__)


class SearchProvider(Protocol):
    """Web search collaborator: result snippets mentioning a domain."""

    async def search(self, domain: str) -> list[str]: ...


class NullSearchProvider:
    async def search(self, domain: str) -> list[str]:
        return []


@dataclass
class CrawlDeps:
    """Collaborators for one crawl. Everything external is injected here."""

    simple: BasePageFetcher
    rendered: BasePageFetcher | None
    validator: BaseEmailValidator
    domains: DomainValidator
    ai: AiAnalyzer
    search: SearchProvider
    config: CrawlConfig
    session: aiohttp.ClientSession | None = None


@dataclass
class PageScan:
    url: str
    reached: bool = False
    blocked: bool = False
    html: str | None = None
    final_url: str | None = None
    candidates: list[CandidateEmail] = field(default_factory=list)


@dataclass
class StageOutcome:
    stage: str
    found: int = 0
    pages: int = 0


@dataclass
class CrawlContext:
    """Mutable state for a single crawl; created fresh per URL."""

    url: str
    root_url: str
    site_domain: str
    deps: CrawlDeps
    candidates: dict[str, CandidateEmail] = field(default_factory=dict)
    urls_checked: list[str] = field(default_factory=list)
    visited: set[str] = field(default_factory=set)
    pages_attempted: int = 0
    pages_reached: int = 0
    pages_blocked: int = 0
    budget_exhausted: bool = False
    blocked_status: BlockedStatus | None = None
    root_html: str | None = None
    root_reached: bool = False

    @property
    def found_count(self) -> int:
        return len(self.candidates)

    @property
    def site_unreachable(self) -> bool:
        return self.pages_attempted > 0 and self.pages_reached == 0

    def merge(self, candidates: list[CandidateEmail]) -> int:
        """Add candidates; first sighting wins, mailto is OR-ed. Returns new count."""
        added = 0
        for candidate in candidates:
            existing = self.candidates.get(candidate.address)
            if existing is None:
                self.candidates[candidate.address] = candidate
                added += 1
                continue
            existing.found_in_mailto = existing.found_in_mailto or candidate.found_in_mailto
            existing.found_in_script = existing.found_in_script and candidate.found_in_script
        return added

    def note_blocked(self, status: BlockedStatus) -> bool:
        if not status.is_blocked:
            return False
        if self.blocked_status is None:
            self.blocked_status = status
        return True


def is_js_shell(html: str, threshold: int) -> bool:
    """Short visible text plus a client-side framework marker."""
    if not any(marker in html for marker in get_tables().spa_markers):
        return False
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return len(soup.get_text(" ", strip=True)) < threshold


def platform_of(html: str) -> str | None:
    lowered = html.lower()
    for platform, markers in get_tables().platform_signatures:
        if any(marker.lower() in lowered for marker in markers):
            return platform
    return None


def visible_text(html: str | None) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def needs_full_scroll(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(keyword in path for keyword in get_tables().full_scroll_keywords)


async def scan_page(ctx: CrawlContext, url: str, full_scroll: bool = False) -> PageScan:
    """
    Fetch and decode one page, escalating the fetch mode while nothing is found.

    simple -> rendered desktop -> rendered mobile -> rendered with a long
    settle for recognised storefront platforms. Errors are logged and the
    page is reported unreachable; they never abort the crawl.
    """
    deps = ctx.deps
    scan = PageScan(url=url)
    log = logger.bind(url=url)

    ctx.pages_attempted += 1
    ctx.urls_checked.append(url)
    ctx.visited.add(page_key(url))

    blocked_seen = False
    clean_html_seen = False
    platform: str | None = None
    found: dict[str, CandidateEmail] = {}

    def absorb(result: FetchResult) -> None:
        nonlocal blocked_seen, clean_html_seen, platform
        if ctx.note_blocked(result.blocked_status):
            blocked_seen = True
        if result.html is None:
            return
        scan.reached = True
        if not result.blocked_status.is_blocked:
            clean_html_seen = True
        scan.html = result.html
        scan.final_url = result.final_url or url
        platform = platform or platform_of(result.html)
        for candidate in decode_candidates(result.html, url) + result.extra_emails:
            found.setdefault(candidate.address, candidate)

    simple = await deps.simple.fetch(url)
    absorb(simple)
    escalate = not found or (
        simple.html is not None
        and is_js_shell(simple.html, deps.config.js_shell_text_threshold)
    )

    if escalate and deps.rendered is not None:
        log.bind(simple_ok=simple.ok).debug("page_escalated_to_rendered")
        absorb(await deps.rendered.fetch(url, Device.DESKTOP, full_scroll))
        if not found:
            absorb(await deps.rendered.fetch(url, Device.MOBILE, full_scroll))
        if not found and platform is not None:
            log.bind(platform=platform).debug("platform_settle_retry")
            absorb(
                await deps.rendered.fetch(
                    url,
                    Device.DESKTOP,
                    full_scroll,
                    settle_ms=deps.config.shopify_settle_ms,
                )
            )

    scan.candidates = list(found.values())
    scan.blocked = blocked_seen and not clean_html_seen
    if scan.reached:
        ctx.pages_reached += 1
    if scan.blocked:
        ctx.pages_blocked += 1

    added = ctx.merge(scan.candidates)
    log.bind(reached=scan.reached, found=len(scan.candidates), new=added).info("page_scanned")
    return scan


class CrawlStrategy(Protocol):
    name: str
    fallback: bool

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None: ...


class ScanRoot:
    name = "scan_root"
    fallback = False

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        scan = await scan_page(ctx, ctx.root_url)
        ctx.root_reached = scan.reached
        if scan.reached:
            ctx.root_html = scan.html
            final = scan.final_url or ctx.root_url
            if bare_host(final) and bare_host(final) != ctx.site_domain:
                logger.bind(url=ctx.root_url, final_url=final).info("root_redirected")
                ctx.root_url = site_root(final)
                ctx.site_domain = bare_host(final)
        return StageOutcome(self.name, found=len(scan.candidates), pages=1)


class ScanUserPath:
    name = "scan_user_path"
    fallback = False

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        if page_key(ctx.url) in ctx.visited:
            return None
        scan = await scan_page(ctx, ctx.url, needs_full_scroll(ctx.url))
        if scan.reached and ctx.root_html is None:
            # Root unreachable; plan from the page the user gave us instead
            ctx.root_html = scan.html
        return StageOutcome(self.name, found=len(scan.candidates), pages=1)


class PriorityCrawl:
    name = "priority_crawl"
    fallback = False

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        config = ctx.deps.config
        if ctx.found_count >= config.target_emails:
            return None

        sitemap_urls: list[str] = []
        if ctx.deps.session is not None:
            sitemap_urls = await discover_sitemap_urls(ctx.deps.session, ctx.root_url, config)

        queue = [
            page
            for page in plan(ctx.root_html, ctx.root_url, sitemap_urls)
            if page_key(page.url) not in ctx.visited
        ]

        scanned = 0
        found_before = ctx.found_count
        for index, page in enumerate(queue):
            if ctx.found_count >= config.target_emails:
                logger.bind(url=ctx.root_url, found=ctx.found_count).info("crawl_target_reached")
                break
            if scanned >= config.page_budget:
                ctx.budget_exhausted = True
                logger.bind(url=ctx.root_url, remaining=len(queue) - index).info(
                    "crawl_budget_exhausted"
                )
                break
            if page_key(page.url) in ctx.visited:
                continue
            await scan_page(ctx, page.url, needs_full_scroll(page.url))
            scanned += 1

        return StageOutcome(self.name, found=ctx.found_count - found_before, pages=scanned)


class RelatedDomains:
    """Try the www-toggled host and the parent domain."""

    name = "related_domains"
    fallback = True

    def related_roots(self, root_url: str) -> list[str]:
        parsed = urlparse(root_url)
        host = (parsed.hostname or "").lower()
        hosts: list[str] = []
        if host.startswith("www."):
            hosts.append(host.removeprefix("www."))
        else:
            hosts.append("www." + host)
        labels = host.removeprefix("www.").split(".")
        if len(labels) > 2:
            hosts.append(".".join(labels[1:]))
        return [urlunparse((parsed.scheme or "https", h, "/", "", "", "")) for h in hosts]

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        pages = 0
        found_before = ctx.found_count
        for root in self.related_roots(ctx.root_url):
            if normalize_url(root) in {normalize_url(u) for u in ctx.urls_checked}:
                continue
            await scan_page(ctx, root)
            pages += 1
            if ctx.found_count:
                break
        return StageOutcome(self.name, found=ctx.found_count - found_before, pages=pages)


class WebSearch:
    name = "web_search"
    fallback = True

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        if isinstance(ctx.deps.search, NullSearchProvider):
            return None
        snippets = await ctx.deps.search.search(ctx.site_domain)
        source = f"search:{ctx.site_domain}"
        candidates = [
            CandidateEmail(address=address, source_url=source, extraction_method=ExtractionMethod.TEXT)
            for snippet in snippets
            for address in find_addresses(snippet)
            if domain_matches_site(address.rpartition("@")[2], ctx.site_domain)
        ]
        return StageOutcome(self.name, found=ctx.merge(candidates))


class AiAssist:
    name = "ai_assist"
    fallback = True

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        text = visible_text(ctx.root_html)
        if not text:
            return None
        addresses = await ctx.deps.ai.analyze(text, ctx.site_domain)
        candidates = [
            CandidateEmail(address=a, source_url=ctx.root_url, extraction_method=ExtractionMethod.AI)
            for a in sorted(addresses)
        ]
        return StageOutcome(self.name, found=ctx.merge(candidates))


class PatternFallback:
    """Guess common role mailboxes on a domain that is known to accept mail."""

    name = "pattern_fallback"
    fallback = True

    async def attempt(self, ctx: CrawlContext) -> StageOutcome | None:
        if not ctx.deps.config.generate_patterns:
            return None
        if not await ctx.deps.domains.has_mx(ctx.site_domain):
            logger.bind(domain=ctx.site_domain).info("pattern_fallback_no_mx")
            return StageOutcome(self.name)
        candidates = [
            CandidateEmail(
                address=f"{prefix}@{ctx.site_domain}",
                source_url=ctx.root_url,
                extraction_method=ExtractionMethod.PATTERN,
            )
            for prefix in get_tables().fallback_prefixes
        ]
        return StageOutcome(self.name, found=ctx.merge(candidates))


DEFAULT_STRATEGIES: tuple[CrawlStrategy, ...] = (
    ScanRoot(),
    ScanUserPath(),
    PriorityCrawl(),
    RelatedDomains(),
    WebSearch(),
    AiAssist(),
    PatternFallback(),
)
