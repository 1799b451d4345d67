import aiohttp

from emailsleuth.config import get_config
from emailsleuth.core.logging import get_logger
from emailsleuth.fetch.base import DESKTOP_USER_AGENT, BasePageFetcher, Device, FetchMode, FetchResult
from emailsleuth.fetch.blocked import detect_blocked

logger = get_logger(__name__)

_HTML_TYPES = ("text/html", "application/xhtml+xml")


class SimpleFetcher(BasePageFetcher):
    """Single GET with a desktop user agent. No script execution."""

    mode = FetchMode.SIMPLE

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            session: Shared session to reuse; one is created lazily otherwise
            timeout_seconds: Total request timeout, defaults to config
        """
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or get_config().crawl.http_timeout_seconds
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": DESKTOP_USER_AGENT})
            self._owns_session = True
        return self._session

    async def fetch(
        self,
        url: str,
        device: Device = Device.DESKTOP,
        full_scroll: bool = False,
        settle_ms: int = 0,
    ) -> FetchResult:
        """Fetch ``url``; html is None for errors, HTTP >= 400 and non-HTML bodies."""
        session = await self._get_session()
        log = logger.bind(url=url)

        try:
            async with session.get(
                url,
                timeout=self._timeout,
                allow_redirects=True,
                headers={
                    "User-Agent": DESKTOP_USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            ) as response:
                final_url = str(response.url)
                content_type = response.headers.get("Content-Type", "").lower()

                # Non-HTML bodies are never read
                is_html = not content_type or content_type.startswith(_HTML_TYPES)
                if response.status < 400 and not is_html:
                    log.bind(content_type=content_type).debug("simple_fetch_not_html")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        final_url=final_url,
                        error=f"Unsupported content type: {content_type}",
                    )

                body = await response.text(errors="replace")
                if response.status >= 400:
                    blocked = detect_blocked(body, response.status)
                    log.bind(status=response.status, blocked=blocked.reason).info(
                        "simple_fetch_http_error"
                    )
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        final_url=final_url,
                        blocked_status=blocked,
                        error=f"HTTP {response.status}",
                    )

                return FetchResult(
                    url=url,
                    html=body,
                    status_code=response.status,
                    final_url=final_url,
                    blocked_status=detect_blocked(body, response.status),
                )

        except (aiohttp.ClientError, TimeoutError, UnicodeDecodeError) as e:
            log.bind(error=str(e) or type(e).__name__).info("simple_fetch_failed")
            return FetchResult(url=url, error=str(e) or type(e).__name__)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
