from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, Field

from emailsleuth.schemas.extraction import BlockedStatus, CandidateEmail

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)


class FetchMode(str, Enum):
    SIMPLE = "simple"
    RENDERED = "rendered"


class Device(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"


class FetchResult(BaseModel):
    """Outcome of fetching one page.

    ``html`` is None when the page was unreachable, which callers must not
    confuse with a page that simply had no addresses.
    """

    url: str
    html: str | None = None
    status_code: int | None = None
    final_url: str | None = None
    blocked_status: BlockedStatus = Field(default_factory=BlockedStatus)
    extra_emails: list[CandidateEmail] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.html is not None


class BasePageFetcher(ABC):
    """Abstract base class for page fetchers."""

    mode: FetchMode = FetchMode.SIMPLE

    @abstractmethod
    async def fetch(
        self,
        url: str,
        device: Device = Device.DESKTOP,
        full_scroll: bool = False,
        settle_ms: int = 0,
    ) -> FetchResult:
        """
        Fetch a page.

        Args:
            url: Absolute URL to retrieve
            device: Device profile (user agent and viewport)
            full_scroll: Scroll the whole page incrementally (rendered only)
            settle_ms: Extra wait after load for slow storefronts (rendered only)

        Returns:
            FetchResult, with html=None if every attempt failed
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None
