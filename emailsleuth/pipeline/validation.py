"""Candidate address filter.

Every decoded string passes through :func:`is_valid_email` before it can enter a
result set. Rejection is silent: the caller only sees the surviving addresses.
"""

import re

from emailsleuth.pipeline.tables import HeuristicTables, get_tables

EMAIL_RE = re.compile(
    r"[a-z0-9._%+-]+@[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,24}",
    re.IGNORECASE,
)

_LOCAL_RE = re.compile(r"^[a-z0-9._%+-]+$")
_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_HEX_LOCAL_RE = re.compile(r"^[0-9a-f]{24,}$")
_PERCENT_ESCAPE_RE = re.compile(r"%[0-9a-f]{2}", re.IGNORECASE)


def _is_syntactically_valid(local: str, domain: str) -> bool:
    if not local or not domain or len(local) > 64 or len(domain) > 253:
        return False
    if not _LOCAL_RE.match(local):
        return False
    if local.startswith(".") or local.endswith(".") or ".." in local:
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False
    if not all(_LABEL_RE.match(label) for label in labels):
        return False

    tld = labels[-1]
    return len(tld) >= 2 and tld.isalpha()


def is_well_formed(address: str) -> bool:
    """Syntax only: one @, a sane local part and a dotted hostname."""
    local, at, domain = address.strip().lower().partition("@")
    return bool(at) and "@" not in domain and _is_syntactically_valid(local, domain)


def domain_matches(domain: str, candidates: frozenset[str]) -> bool:
    """True if ``domain`` or any parent domain is in ``candidates``."""
    labels = domain.split(".")
    return any(".".join(labels[i:]) in candidates for i in range(len(labels)))


def is_placeholder(address: str, tables: HeuristicTables | None = None) -> bool:
    """Placeholder/example addresses (used by the scorer as well as the filter)."""
    tables = tables or get_tables()
    local, _, domain = address.lower().partition("@")
    return local in tables.placeholder_locals or domain_matches(domain, tables.placeholder_domains)


def is_valid_email(address: str, tables: HeuristicTables | None = None) -> bool:
    """Return True if ``address`` looks like a real, reachable contact address."""
    tables = tables or get_tables()
    address = address.strip().lower()

    if address.count("@") != 1:
        return False
    local, domain = address.split("@")

    if not _is_syntactically_valid(local, domain):
        return False

    # Asset filenames such as logo@2x.png
    tld = domain.rsplit(".", 1)[-1]
    if tld in tables.asset_extensions:
        return False
    if any(fragment in address for fragment in tables.noise_fragments):
        return False

    if _HEX_LOCAL_RE.match(local):
        return False

    # URL-encoded text glued onto a local part (text=Mail%20info@...)
    if _PERCENT_ESCAPE_RE.search(local):
        return False

    if domain_matches(domain, tables.placeholder_domains):
        return False
    if tld in tables.reserved_tlds:
        return False

    return local not in tables.noreply_locals
