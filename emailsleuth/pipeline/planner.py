"""Link classification and crawl planning.

Turns one page's links (plus sitemap hits) into a priority-ordered queue of
same-origin pages likely to carry contact details, then appends well-known
contact and policy paths the site did not link to.
"""

from collections.abc import Iterable
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from emailsleuth.core.logging import get_logger
from emailsleuth.pipeline.tables import HeuristicTables, get_tables
from emailsleuth.schemas.extraction import PagePriority, PageSource, PriorityPage

logger = get_logger(__name__)

FAMILY_PRIORITY = {
    "contact": PagePriority.CONTACT,
    "about": PagePriority.ABOUT,
    "legal": PagePriority.LEGAL,
    "support": PagePriority.FOOTER,
    "footer": PagePriority.FOOTER,
}

_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "sms:", "data:", "#")


def bare_host(url: str) -> str:
    """Lowercased host without port or a leading ``www.``."""
    return (urlparse(url).hostname or "").lower().removeprefix("www.")


def is_same_origin(url: str, base_url: str) -> bool:
    host = bare_host(url)
    return bool(host) and host == bare_host(base_url)


def normalize_url(url: str) -> str:
    """Lowercase scheme and host, drop query, fragment and trailing slash."""
    parsed = urlparse(url)
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", "", ""))


def page_key(url: str) -> str:
    """Deduplication key: www-insensitive host plus normalized path."""
    return bare_host(url) + urlparse(normalize_url(url)).path


def site_root(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse((parsed.scheme.lower() or "https", parsed.netloc.lower(), "/", "", "", ""))


def is_noise_path(path: str, tables: HeuristicTables | None = None) -> bool:
    """Product, cart, account and similar paths, or links to static assets."""
    tables = tables or get_tables()
    lowered = path.lower()
    if lowered.endswith(tables.noise_extensions):
        return True
    padded = lowered.rstrip("/") + "/"
    return any(noise.rstrip("/") + "/" in padded for noise in tables.noise_paths)


def classify(
    path: str,
    anchor_text: str = "",
    in_footer: bool = False,
    tables: HeuristicTables | None = None,
) -> PagePriority:
    """First keyword family matching the path or anchor text wins."""
    tables = tables or get_tables()
    haystacks = (path.lower(), anchor_text.lower())
    for family, keywords in tables.keyword_families:
        if any(keyword in text for keyword in keywords for text in haystacks):
            return FAMILY_PRIORITY.get(family, PagePriority.OTHER)
    return PagePriority.FOOTER if in_footer else PagePriority.OTHER


def _in_footer(anchor: Tag) -> bool:
    for parent in anchor.parents:
        if parent.name == "footer":
            return True
        ident = " ".join([*(parent.get("class") or []), str(parent.get("id") or "")]).lower()
        if "footer" in ident:
            return True
    return False


def extract_links(html: str, base_url: str) -> list[tuple[str, str, bool]]:
    """(absolute url, anchor text, inside footer) for every followable link."""
    soup = BeautifulSoup(html, "lxml")
    links = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        absolute = urljoin(base_url, href)
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        links.append((absolute, anchor.get_text(" ", strip=True), _in_footer(anchor)))
    return links


def known_path_pages(base_url: str, tables: HeuristicTables | None = None) -> list[PriorityPage]:
    tables = tables or get_tables()
    root = site_root(base_url).rstrip("/")
    return [
        PriorityPage(
            url=root + path,
            priority=FAMILY_PRIORITY.get(family, PagePriority.OTHER),
            source=PageSource.KNOWN_PATH,
        )
        for family, paths in tables.known_paths
        for path in paths
    ]


def plan(
    html: str | None,
    base_url: str,
    sitemap_urls: Iterable[str] = (),
    tables: HeuristicTables | None = None,
) -> list[PriorityPage]:
    """Build the priority queue for a site.

    Args:
        html: Markup of the page whose links seed the queue (may be None)
        base_url: URL of that page, used for resolution and origin checks
        sitemap_urls: Contact-like URLs discovered through sitemaps
        tables: Heuristic tables, defaults to the packaged ones

    Returns:
        Unique same-origin pages, stably sorted by priority
    """
    tables = tables or get_tables()
    seen = {page_key(base_url)}
    pages: list[PriorityPage] = []

    def offer(url: str, priority: PagePriority, source: PageSource) -> None:
        if not is_same_origin(url, base_url):
            return
        if is_noise_path(urlparse(url).path, tables):
            return
        key = page_key(url)
        if key in seen:
            return
        seen.add(key)
        pages.append(PriorityPage(url=normalize_url(url), priority=priority, source=source))

    if html:
        for url, text, in_footer in extract_links(html, base_url):
            offer(url, classify(urlparse(url).path, text, in_footer, tables), PageSource.LINK)

    for url in sitemap_urls:
        offer(url, classify(urlparse(url).path, tables=tables), PageSource.SITEMAP)

    for page in known_path_pages(base_url, tables):
        offer(page.url, page.priority, PageSource.KNOWN_PATH)

    pages.sort(key=lambda page: page.priority)
    logger.bind(url=base_url).debug(
        "crawl_planned",
        pages=len(pages),
        contact_pages=sum(1 for p in pages if p.priority == PagePriority.CONTACT),
    )
    return pages
