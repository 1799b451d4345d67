"""
Pytest configuration and fixtures for emailsleuth tests.

Provides:
- Isolated settings (SMTP probing, browser rendering and AI disabled)
- A controllable clock and cache registry for expiry tests
- A scripted SMTP server on localhost
- Page-map fetchers and crawl dependencies for orchestrator tests
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from emailsleuth.config import CrawlConfig, get_config, get_settings
from emailsleuth.core.cache import CacheRegistry, reset_cache_registry
from emailsleuth.fetch.base import BasePageFetcher, Device, FetchMode, FetchResult
from emailsleuth.fetch.blocked import detect_blocked
from emailsleuth.pipeline.planner import normalize_url
from emailsleuth.pipeline.strategies import CrawlDeps, NullSearchProvider
from emailsleuth.services.ai_analyzer import NullAiAnalyzer
from emailsleuth.services.email_validation import (
    DomainValidator,
    NullValidator,
    reset_email_validator,
)

TEST_ENV = {
    "SMTP_ENABLED": "false",
    "BROWSER_ENABLED": "false",
    "OPENAI_API_KEY": "",
    "DEBUG": "false",
    "CONFIG_PATH": "tests-missing-config.yml",
}


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Run every test against defaults, never against a developer's .env or config.yml."""
    for name, value in TEST_ENV.items():
        monkeypatch.setenv(name, value)
    get_settings.cache_clear()
    get_config.cache_clear()
    reset_cache_registry()
    reset_email_validator()
    yield
    get_settings.cache_clear()
    get_config.cache_clear()
    reset_cache_registry()
    reset_email_validator()


# ============================================================================
# Clock and caches
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cache_registry(fake_clock):
    """Cache registry with a one hour TTL driven by the fake clock."""
    return CacheRegistry(ttl=timedelta(hours=1), clock=fake_clock)


# ============================================================================
# SMTP
# ============================================================================


class FakeSmtpServer:
    """
    Scripted mail server speaking just enough RFC 5321 for RCPT probes.

    Every connection and command is recorded so tests can assert on how many
    sockets a verifier actually opened.
    """

    def __init__(
        self,
        rcpt_replies: dict[str, str] | None = None,
        mail_reply: str = "250 2.1.0 Sender OK",
        default_rcpt: str = "250 2.1.5 OK",
        greeting: str = "220 mx.acme.test ESMTP ready",
        stall_on: str | None = None,
    ) -> None:
        self.rcpt_replies = rcpt_replies or {}
        self.mail_reply = mail_reply
        self.default_rcpt = default_rcpt
        self.greeting = greeting
        self.stall_on = stall_on
        self.connections = 0
        self.commands: list[str] = []
        self.port = 0
        self._server: asyncio.Server | None = None
        self._release = asyncio.Event()

    async def _reply(self, writer: asyncio.StreamWriter, text: str) -> None:
        writer.write(text.encode() + b"\r\n")
        await writer.drain()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        try:
            if self.stall_on == "CONNECT":
                await self._release.wait()
                return
            await self._reply(writer, self.greeting)
            while True:
                line = await reader.readline()
                if not line:
                    return
                command = line.decode().strip()
                self.commands.append(command)
                verb = command.split(":", 1)[0].split(" ", 1)[0].upper()

                if verb == self.stall_on:
                    await self._release.wait()
                    return
                if verb == "HELO":
                    await self._reply(writer, "250-mx.acme.test greets you\r\n250 SIZE 10240000")
                elif verb == "MAIL":
                    await self._reply(writer, self.mail_reply)
                elif verb == "RCPT":
                    recipient = command[command.find("<") + 1 : command.rfind(">")]
                    await self._reply(writer, self.rcpt_replies.get(recipient, self.default_rcpt))
                elif verb == "QUIT":
                    await self._reply(writer, "221 2.0.0 Bye")
                    return
                else:
                    await self._reply(writer, "502 5.5.2 Command not recognized")
        except ConnectionError:
            return
        finally:
            writer.close()

    @property
    def rcpt_commands(self) -> list[str]:
        return [c for c in self.commands if c.upper().startswith("RCPT")]

    async def start(self) -> "FakeSmtpServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self._release.set()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


@pytest_asyncio.fixture
async def smtp_server():
    """Factory starting scripted SMTP servers; all are stopped after the test."""
    servers: list[FakeSmtpServer] = []

    async def _start(**kwargs) -> FakeSmtpServer:
        server = await FakeSmtpServer(**kwargs).start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop()


# ============================================================================
# Fetchers and crawl dependencies
# ============================================================================


class PageMapFetcher(BasePageFetcher):
    """
    Serves canned pages keyed by normalized URL.

    A page value may be an HTML string, an HTTP status code (unreachable,
    with blocked detection applied), or a ready FetchResult.
    """

    def __init__(self, pages: dict, mode: FetchMode = FetchMode.SIMPLE) -> None:
        self.mode = mode
        self.pages = {normalize_url(url): page for url, page in pages.items()}
        self.calls: list[tuple[str, Device, bool, int]] = []

    @property
    def fetched_urls(self) -> list[str]:
        return [url for url, *_ in self.calls]

    async def fetch(
        self,
        url: str,
        device: Device = Device.DESKTOP,
        full_scroll: bool = False,
        settle_ms: int = 0,
    ) -> FetchResult:
        self.calls.append((url, device, full_scroll, settle_ms))
        page = self.pages.get(normalize_url(url))
        if page is None:
            return FetchResult(url=url, status_code=404, error="HTTP 404")
        if isinstance(page, FetchResult):
            return page.model_copy(update={"url": url})
        if isinstance(page, int):
            return FetchResult(
                url=url,
                status_code=page,
                blocked_status=detect_blocked(None, page),
                error=f"HTTP {page}",
            )
        return FetchResult(url=url, html=page, status_code=200, final_url=url)


@pytest.fixture
def page_fetcher():
    """Factory for page-map fetchers."""

    def _create(pages: dict, mode: FetchMode = FetchMode.SIMPLE) -> PageMapFetcher:
        return PageMapFetcher(pages, mode)

    return _create


@pytest.fixture
def mock_domain_validator():
    """DomainValidator stand-in that keeps every address and reports MX present."""

    def _create(has_mx: bool = True, drop_domains: tuple[str, ...] = ()) -> MagicMock:
        domains = MagicMock(spec=DomainValidator)
        domains.validate = AsyncMock(
            side_effect=lambda addresses: [
                a for a in addresses if a.rpartition("@")[2] not in drop_domains
            ]
        )
        domains.has_mx = AsyncMock(return_value=has_mx)
        return domains

    return _create


@pytest.fixture
def crawl_deps(page_fetcher, mock_domain_validator):
    """
    Factory for CrawlDeps wired to canned pages.

    Defaults: no rendered fetcher, NullValidator, no AI, no search, no
    sitemap session, pattern generation off.
    """

    def _create(
        pages: dict,
        rendered_pages: dict | None = None,
        validator=None,
        domains=None,
        ai=None,
        search=None,
        **config_overrides,
    ) -> CrawlDeps:
        config = {"generate_patterns": False, **config_overrides}
        return CrawlDeps(
            simple=page_fetcher(pages),
            rendered=(
                page_fetcher(rendered_pages, FetchMode.RENDERED)
                if rendered_pages is not None
                else None
            ),
            validator=validator or NullValidator(),
            domains=domains or mock_domain_validator(),
            ai=ai or NullAiAnalyzer(),
            search=search or NullSearchProvider(),
            config=CrawlConfig(config),
        )

    return _create


# ============================================================================
# HTML samples
# ============================================================================


@pytest.fixture
def home_page_html():
    """Landing page linking to contact, about, policy and product pages."""
    return """
    <html><head><title>Acme Widgets</title></head>
    <body>
      <nav>
        <a href="/products/widget-1">Widget 1</a>
        <a href="/about-us">About</a>
        <a href="/contact">Contact us</a>
        <a href="https://twitter.com/acme">Twitter</a>
        <a href="/blog/launch">Launch post</a>
      </nav>
      <main><p>Welcome to Acme. We build widgets.</p></main>
      <footer>
        <a href="/policies/privacy-policy">Privacy</a>
        <a href="/shipping-info">Shipping</a>
        <a href="/stores">Our stores</a>
      </footer>
    </body></html>
    """


@pytest.fixture
def contact_page_html():
    return """
    <html><body>
      <h1>Contact</h1>
      <p>Write to <a href="mailto:Sales@Acme.com?subject=Hello">our sales team</a>.</p>
      <p>Support: support [at] acme [dot] com</p>
    </body></html>
    """
