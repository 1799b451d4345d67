"""Anti-automation detection for fetched pages.

Rules come from the ``blocked_signals`` table. A marker match wins over a bare
status code, so a 403 that carries a Cloudflare challenge page is reported as
the challenge rather than as a generic denial. Markers are only trusted on
error responses or on small documents; challenge and interstitial pages are
short, while full sites routinely mention "Access Denied" somewhere in their
markup.
"""

from emailsleuth.pipeline.tables import HeuristicTables, get_tables
from emailsleuth.schemas.extraction import BlockedStatus

INTERSTITIAL_MAX_CHARS = 30_000


def _blocked(reason: str, suggestion: str) -> BlockedStatus:
    return BlockedStatus(is_blocked=True, reason=reason, suggestion=suggestion)


def detect_blocked(
    html: str | None,
    status_code: int | None = None,
    tables: HeuristicTables | None = None,
) -> BlockedStatus:
    """Inspect a response for CAPTCHA, challenge, rate-limit or login-wall signals."""
    tables = tables or get_tables()
    html = html or ""
    is_error = status_code is not None and status_code >= 400

    if html and (is_error or len(html) <= INTERSTITIAL_MAX_CHARS):
        sample = html.lower()
        for signal in tables.blocked_signals:
            if any(marker.lower() in sample for marker in signal.markers):
                return _blocked(signal.reason, signal.suggestion)

    if is_error:
        for signal in tables.blocked_signals:
            if status_code in signal.status_codes:
                return _blocked(signal.reason, signal.suggestion)

    return BlockedStatus()
