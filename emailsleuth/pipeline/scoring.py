"""Confidence scoring for discovered addresses.

score = 50
      + 20 if the address domain is the site domain or one of its subdomains
      + 15 if found on a contact or about page
      + 10 if found in a mailto: link
      + 10 if the local part is a common role prefix
      - 20 if only ever seen inside a script
      - 30 if it looks like a placeholder

clamped to [0, 100]. SMTP verification then adjusts the score: valid +25,
invalid -40, catch-all +10, clamped again.
"""

from dataclasses import dataclass
from urllib.parse import urlparse

from emailsleuth.pipeline.planner import classify
from emailsleuth.pipeline.tables import HeuristicTables, get_tables
from emailsleuth.pipeline.validation import is_placeholder
from emailsleuth.schemas.extraction import PagePriority
from emailsleuth.services.email_validation.models import VerificationStatus

BASE_SCORE = 50
DOMAIN_MATCH_BONUS = 20
CONTACT_PAGE_BONUS = 15
MAILTO_BONUS = 10
ROLE_PREFIX_BONUS = 10
SCRIPT_ONLY_PENALTY = 20
PLACEHOLDER_PENALTY = 30

VERIFICATION_ADJUSTMENTS = {
    VerificationStatus.VALID: 25,
    VerificationStatus.INVALID: -40,
    VerificationStatus.CATCH_ALL: 10,
}


@dataclass(frozen=True)
class ScoreContext:
    """Where and how an address was found."""

    found_in_mailto: bool = False
    found_in_script: bool = False


def clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


def _bare(domain: str) -> str:
    return domain.lower().strip(".").removeprefix("www.")


def domain_matches_site(address_domain: str, site_domain: str) -> bool:
    address_domain, site_domain = _bare(address_domain), _bare(site_domain)
    if not address_domain or not site_domain:
        return False
    return address_domain == site_domain or address_domain.endswith("." + site_domain)


def is_contact_page(source_url: str) -> bool:
    priority = classify(urlparse(source_url).path)
    return priority in (PagePriority.CONTACT, PagePriority.ABOUT)


def score(
    address: str,
    source_url: str,
    site_domain: str,
    context: ScoreContext | None = None,
    tables: HeuristicTables | None = None,
) -> int:
    """Heuristic 0-100 confidence for one address."""
    tables = tables or get_tables()
    context = context or ScoreContext()
    local, _, domain = address.lower().partition("@")

    value = BASE_SCORE
    if domain_matches_site(domain, site_domain):
        value += DOMAIN_MATCH_BONUS
    if source_url and is_contact_page(source_url):
        value += CONTACT_PAGE_BONUS
    if context.found_in_mailto:
        value += MAILTO_BONUS
    if local in tables.role_prefixes:
        value += ROLE_PREFIX_BONUS
    if context.found_in_script and not context.found_in_mailto:
        value -= SCRIPT_ONLY_PENALTY
    if is_placeholder(address, tables):
        value -= PLACEHOLDER_PENALTY
    return clamp(value)


def adjust_for_verification(value: int, status: VerificationStatus | None) -> int:
    """Apply the SMTP outcome to a heuristic score."""
    if status is None:
        return clamp(value)
    return clamp(value + VERIFICATION_ADJUSTMENTS.get(status, 0))
