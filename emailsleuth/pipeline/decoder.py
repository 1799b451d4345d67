"""Content decoder: pull candidate addresses out of a single HTML document.

Each strategy is a pure function of the markup. They run independently and
their results are unioned; the first strategy to see an address names its
extraction method, later sightings only add the mailto flag or clear the
script-only flag. Nothing here performs I/O.
"""

import base64
import binascii
import html as html_lib
import json
import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from bs4 import BeautifulSoup, Comment, Tag

from emailsleuth.core.logging import get_logger
from emailsleuth.pipeline.tables import HeuristicTables, get_tables
from emailsleuth.pipeline.validation import EMAIL_RE, is_valid_email, is_well_formed
from emailsleuth.schemas.extraction import CandidateEmail, ExtractionMethod

logger = get_logger(__name__)

JSON_LD_MAX_DEPTH = 5
MAX_BASE64_TOKENS = 200

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_BASE64_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9+/=])[A-Za-z0-9+/]{20,512}={0,2}(?![A-Za-z0-9+/=])")
_CF_HREF_RE = re.compile(r"/cdn-cgi/l/email-protection#([0-9a-f]+)", re.IGNORECASE)
_JS_ESCAPES = (
    ("\\u0040", "@"),
    ("\\x40", "@"),
    ("\\u002e", "."),
    ("\\u002E", "."),
    ("\\/", "/"),
)


class _Collector:
    """Deduplicating sink for one page's candidates."""

    def __init__(self, source_url: str, tables: HeuristicTables) -> None:
        self.source_url = source_url
        self.tables = tables
        self.found: dict[str, CandidateEmail] = {}

    def add(
        self,
        raw: str,
        method: ExtractionMethod,
        *,
        mailto: bool = False,
        script: bool = False,
    ) -> None:
        address = normalize_address(raw)
        if not address or not EMAIL_RE.fullmatch(address):
            return
        if not is_valid_email(address, self.tables):
            return

        existing = self.found.get(address)
        if existing is None:
            self.found[address] = CandidateEmail(
                address=address,
                source_url=self.source_url,
                extraction_method=method,
                found_in_mailto=mailto,
                found_in_script=script,
            )
            return

        existing.found_in_mailto = existing.found_in_mailto or mailto
        existing.found_in_script = existing.found_in_script and script

    def scan(self, text: str, method: ExtractionMethod, *, script: bool = False) -> None:
        for match in EMAIL_RE.finditer(text):
            self.add(match.group(0), method, script=script)


def normalize_address(raw: str) -> str:
    address = raw.strip().strip("<>\"'()[]{},;:").lower()
    if address.startswith("mailto:"):
        address = address[len("mailto:") :]
    return address.rstrip(".")


def predecode_entities(markup: str) -> str:
    """Resolve HTML entities and JS escapes that hide ``@`` and ``.``.

    Applied twice so double-encoded forms like ``&amp;#64;`` also resolve.
    """
    decoded = markup
    for _ in range(2):
        decoded = html_lib.unescape(decoded)
    for escaped, plain in _JS_ESCAPES:
        decoded = decoded.replace(escaped, plain)
    return decoded


def strip_scripts(markup: str) -> str:
    return _SCRIPT_BLOCK_RE.sub(" ", markup)


def mailto_addresses(href: str) -> list[str]:
    """Recipients of a ``mailto:`` href, URL-decoded, lowercased, query stripped."""
    if not href.lower().startswith("mailto:"):
        return []
    target = unquote(href[len("mailto:") :]).split("?", 1)[0]
    return [part.strip().lower() for part in target.split(",") if part.strip()]


def decode_cfemail(encoded: str) -> str | None:
    """Decode a Cloudflare ``data-cfemail`` payload (first byte is the XOR key)."""
    try:
        data = bytes.fromhex(encoded.strip())
    except ValueError:
        return None
    if len(data) < 2:
        return None
    key = data[0]
    try:
        return bytes(b ^ key for b in data[1:]).decode("utf-8")
    except UnicodeDecodeError:
        return None


def _b64decode(token: str) -> str | None:
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def find_obfuscated(text: str, tables: HeuristicTables | None = None) -> set[str]:
    """Reconstruct addresses written as ``info [at] acme [dot] com`` and friends."""
    tables = tables or get_tables()
    found: set[str] = set()
    for pattern in tables.obfuscation_patterns:
        for match in pattern.regex.finditer(text):
            found.add(pattern.rebuild(match))
    return found


def find_addresses(text: str, tables: HeuristicTables | None = None) -> set[str]:
    """Plain and obfuscated addresses in free text that pass validation."""
    tables = tables or get_tables()
    raw = {m.group(0) for m in EMAIL_RE.finditer(predecode_entities(text))}
    raw |= find_obfuscated(text, tables)
    return {
        address
        for address in (normalize_address(r) for r in raw)
        if EMAIL_RE.fullmatch(address) and is_valid_email(address, tables)
    }


# Strategies. Each takes the parsed document (and/or the raw markup) and feeds
# the collector.


def _mailto_links(soup: BeautifulSoup, sink: _Collector) -> None:
    for anchor in soup.find_all("a", href=True):
        for address in mailto_addresses(str(anchor["href"])):
            sink.add(address, ExtractionMethod.MAILTO, mailto=True)


def _cloudflare(soup: BeautifulSoup, markup: str, sink: _Collector) -> None:
    payloads = [str(el["data-cfemail"]) for el in soup.find_all(attrs={"data-cfemail": True})]
    payloads.extend(_CF_HREF_RE.findall(markup))
    for payload in payloads:
        decoded = decode_cfemail(payload)
        if decoded:
            sink.add(decoded, ExtractionMethod.CLOUDFLARE)


def _walk_json(node: Any, sink: _Collector, depth: int = 0) -> None:
    if depth > JSON_LD_MAX_DEPTH:
        return
    if isinstance(node, dict):
        for key, value in node.items():
            if isinstance(value, str) and str(key).lower() == "email":
                sink.add(value, ExtractionMethod.JSON_LD)
            _walk_json(value, sink, depth + 1)
    elif isinstance(node, list):
        for item in node:
            _walk_json(item, sink, depth + 1)
    elif isinstance(node, str):
        sink.scan(node, ExtractionMethod.JSON_LD)


def _json_ld(soup: BeautifulSoup, sink: _Collector) -> None:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        payload = script.string or script.get_text()
        if not payload or not payload.strip():
            continue
        try:
            data = json.loads(payload)
        except ValueError:
            # Malformed structured data still gets a regex pass
            sink.scan(predecode_entities(payload), ExtractionMethod.JSON_LD)
            continue
        _walk_json(data, sink)


def _inline_scripts(soup: BeautifulSoup, sink: _Collector) -> None:
    for script in soup.find_all("script"):
        if script.get("type") == "application/ld+json":
            continue
        body = script.string or script.get_text()
        if not body:
            continue
        body = predecode_entities(body)
        for match in sink.tables.script_key_regex.finditer(body):
            sink.add(match.group("value"), ExtractionMethod.SCRIPT, script=True)
        sink.scan(body, ExtractionMethod.SCRIPT, script=True)


def _comments(soup: BeautifulSoup, sink: _Collector) -> None:
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        text = predecode_entities(str(comment))
        sink.scan(text, ExtractionMethod.COMMENT)
        for address in find_obfuscated(text, sink.tables):
            sink.add(address, ExtractionMethod.COMMENT)


def _class_and_id(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join([*classes, str(tag.get("id") or "")])


def _text_sources(soup: BeautifulSoup, tables: HeuristicTables) -> Iterable[str]:
    """Text from contact-like containers, forms, social-link and mail-icon neighbourhoods."""
    for tag in soup.find_all(["footer", "address"]):
        yield tag.get_text(" ")
    for tag in soup.find_all(True, attrs={"class": True}) + soup.find_all(True, id=True):
        if tables.contact_context_regex.search(_class_and_id(tag)):
            yield tag.get_text(" ")

    for form in soup.find_all("form"):
        action = str(form.get("action") or "")
        yield unquote(action)
        for values in parse_qs(urlparse(action).query).values():
            yield from values
        for field in form.find_all("input", attrs={"type": "hidden"}):
            yield str(field.get("value") or "")

    for anchor in soup.find_all("a", href=True):
        host = urlparse(str(anchor["href"])).netloc.lower().removeprefix("www.")
        if host in tables.social_domains and isinstance(anchor.parent, Tag):
            yield anchor.parent.get_text(" ")

    for icon in soup.find_all(["i", "span", "svg", "img"]):
        if tables.mail_icon_regex.search(_class_and_id(icon)) and isinstance(icon.parent, Tag):
            yield icon.parent.get_text(" ")


def _structural(soup: BeautifulSoup, sink: _Collector) -> None:
    for text in _text_sources(soup, sink.tables):
        if not text:
            continue
        text = predecode_entities(text)
        sink.scan(text, ExtractionMethod.STRUCTURAL)
        for address in find_obfuscated(text, sink.tables):
            sink.add(address, ExtractionMethod.STRUCTURAL)


def _attributes(soup: BeautifulSoup, sink: _Collector) -> None:
    names = sink.tables.email_attribute_names
    for tag in soup.find_all(True):
        for name, value in tag.attrs.items():
            if name.lower() not in names or not isinstance(value, str):
                continue
            if "@" in value:
                sink.scan(predecode_entities(value), ExtractionMethod.ATTRIBUTE)
                continue
            decoded = _b64decode(value.strip())
            if decoded:
                sink.scan(decoded, ExtractionMethod.BASE64)
            else:
                # Some themes store the address reversed
                sink.scan(value[::-1], ExtractionMethod.REVERSED)


def _base64_tokens(markup: str, sink: _Collector) -> None:
    for count, match in enumerate(_BASE64_TOKEN_RE.finditer(markup)):
        if count >= MAX_BASE64_TOKENS:
            break
        decoded = _b64decode(match.group(0))
        if decoded and "@" in decoded:
            sink.scan(decoded, ExtractionMethod.BASE64)


def _reversed(text: str, sink: _Collector) -> None:
    # A well-formed forward address always wins over its reversed reading
    forward = [m.span() for m in EMAIL_RE.finditer(text) if is_well_formed(m.group(0))]
    for match in sink.tables.reversed_regex.finditer(text):
        start, end = match.span()
        if any(start < f_end and f_start < end for f_start, f_end in forward):
            continue
        sink.add(match.group(0)[::-1], ExtractionMethod.REVERSED)


def decode_candidates(
    html: str | None,
    source_url: str = "",
    tables: HeuristicTables | None = None,
) -> list[CandidateEmail]:
    """Run every decoding strategy over one document.

    Args:
        html: Page markup (None or empty yields nothing)
        source_url: Recorded on each candidate
        tables: Heuristic tables, defaults to the packaged ones

    Returns:
        One CandidateEmail per unique valid address
    """
    if not html:
        return []

    tables = tables or get_tables()
    sink = _Collector(source_url, tables)
    soup = BeautifulSoup(html, "lxml")
    decoded = predecode_entities(html)
    visible_text = soup.get_text(" ")

    _mailto_links(soup, sink)
    _cloudflare(soup, html, sink)
    _json_ld(soup, sink)
    _inline_scripts(soup, sink)
    _comments(soup, sink)
    _structural(soup, sink)
    _attributes(soup, sink)

    # Raw sweep covers text, meta tags, attributes and noscript blocks.
    # Percent-decoded so share links and query strings yield clean addresses.
    sink.scan(unquote(strip_scripts(html)), ExtractionMethod.TEXT)
    sink.scan(strip_scripts(decoded), ExtractionMethod.ENTITY)

    for address in find_obfuscated(visible_text, tables):
        sink.add(address, ExtractionMethod.OBFUSCATED)

    _base64_tokens(decoded, sink)
    _reversed(visible_text, sink)
    _reversed(strip_scripts(decoded), sink)

    candidates = list(sink.found.values())
    logger.bind(url=source_url).debug("page_decoded", candidates=len(candidates))
    return candidates


def decode(html: str | None) -> set[str]:
    """Normalized lowercase addresses found in ``html``."""
    return {candidate.address for candidate in decode_candidates(html)}
