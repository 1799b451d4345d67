"""Tests for the content decoder."""

import base64
import json

import pytest

from emailsleuth.pipeline.decoder import (
    decode,
    decode_candidates,
    decode_cfemail,
    find_obfuscated,
    mailto_addresses,
    predecode_entities,
)
from emailsleuth.pipeline.validation import is_valid_email
from emailsleuth.schemas.extraction import ExtractionMethod


def cf_encode(address: str, key: int = 0x4E) -> str:
    """Encode an address the way Cloudflare's email obfuscation does."""
    return f"{key:02x}" + "".join(f"{ord(char) ^ key:02x}" for char in address)


def methods_by_address(html: str) -> dict[str, ExtractionMethod]:
    return {c.address: c.extraction_method for c in decode_candidates(html, "https://acme.com/")}


class TestMailto:
    """Tests for mailto link extraction."""

    def test_mailto_is_lowercased_and_query_stripped(self):
        """Recipients are lowercased and the query string dropped."""
        assert mailto_addresses("mailto:Sales@Example.com?subject=hi") == ["sales@example.com"]

    def test_placeholder_domain_is_filtered(self):
        """example.com is a placeholder domain, so nothing survives validation."""
        html = '<a href="mailto:Sales@Example.com?subject=hi">Email us</a>'
        assert decode(html) == set()

    def test_mailto_real_domain(self):
        html = '<a href="mailto:Sales@Acme.com?subject=hi">Email us</a>'
        candidates = decode_candidates(html, "https://acme.com/contact")

        assert [c.address for c in candidates] == ["sales@acme.com"]
        assert candidates[0].extraction_method == ExtractionMethod.MAILTO
        assert candidates[0].found_in_mailto is True
        assert candidates[0].source_url == "https://acme.com/contact"

    def test_multiple_recipients_and_url_encoding(self):
        assert mailto_addresses("mailto:info%40acme.com,Sales@acme.com") == [
            "info@acme.com",
            "sales@acme.com",
        ]

    def test_non_mailto_href(self):
        assert mailto_addresses("https://acme.com/contact") == []


class TestObfuscation:
    """Tests for [at]/[dot] style obfuscation."""

    def test_bracket_at_dot(self):
        """Should reconstruct 'info [at] acme [dot] com'."""
        assert decode("<p>reach us at info [at] acme [dot] com</p>") == {"info@acme.com"}

    @pytest.mark.parametrize(
        "text",
        [
            "info(at)acme(dot)com",
            "info {at} acme {dot} com",
            "info AT acme DOT com",
            "info-at-acme-dot-com",
            "info / at / acme / dot / com",
            "info@acme dot com",
        ],
    )
    def test_obfuscation_families(self, text):
        assert "info@acme.com" in find_obfuscated(text)

    def test_multi_label_tld(self):
        assert "sales@shop.co.ng" in find_obfuscated("sales [at] shop [dot] co [dot] ng")

    def test_obfuscated_method(self):
        methods = methods_by_address("<p>Write to press [at] acme [dot] com</p>")
        assert methods == {"press@acme.com": ExtractionMethod.OBFUSCATED}


class TestEntities:
    """Tests for HTML entity and JS escape pre-decoding."""

    def test_numeric_entities(self):
        html = "<p>info&#64;acme&#46;com</p>"
        assert methods_by_address(html) == {"info@acme.com": ExtractionMethod.ENTITY}

    def test_named_and_double_encoded_entities(self):
        assert predecode_entities("info&commat;acme&period;com") == "info@acme.com"
        assert predecode_entities("info&amp;#64;acme.com") == "info@acme.com"

    def test_js_escapes(self):
        assert predecode_entities("info\\u0040acme.com") == "info@acme.com"
        assert predecode_entities("info\\x40acme.com") == "info@acme.com"


class TestCloudflare:
    """Tests for Cloudflare email protection decoding."""

    def test_decode_cfemail(self):
        assert decode_cfemail(cf_encode("info@acme.com")) == "info@acme.com"

    def test_invalid_payload(self):
        assert decode_cfemail("zz") is None
        assert decode_cfemail("4e") is None

    def test_data_cfemail_span(self):
        """data-cfemail payload XOR-decodes into the result set."""
        html = (
            '<a href="/cdn-cgi/l/email-protection" class="__cf_email__" '
            f'data-cfemail="{cf_encode("orders@acme.com")}">[email&#160;protected]</a>'
        )
        assert methods_by_address(html) == {"orders@acme.com": ExtractionMethod.CLOUDFLARE}

    def test_email_protection_href(self):
        html = f'<a href="/cdn-cgi/l/email-protection#{cf_encode("help@acme.com", 0x21)}">mail</a>'
        assert decode(html) == {"help@acme.com"}


class TestStructuredData:
    """Tests for JSON-LD extraction."""

    def test_json_ld_email(self):
        data = {
            "@context": "https://schema.org",
            "@type": "Organization",
            "contactPoint": {"@type": "ContactPoint", "email": "hello@acme.com"},
        }
        html = f'<script type="application/ld+json">{json.dumps(data)}</script>'

        candidates = decode_candidates(html)

        assert [c.address for c in candidates] == ["hello@acme.com"]
        assert candidates[0].extraction_method == ExtractionMethod.JSON_LD
        assert candidates[0].found_in_script is False

    def test_json_ld_depth_is_bounded(self):
        """Values nested deeper than the walk limit are not visited."""
        deep: dict = {"email": "deep@acme.com"}
        for _ in range(8):
            deep = {"child": deep}
        data = {"email": "top@acme.com", "nested": deep}
        html = f'<script type="application/ld+json">{json.dumps(data)}</script>'

        assert decode(html) == {"top@acme.com"}

    def test_malformed_json_ld_still_scanned(self):
        html = '<script type="application/ld+json">{"email": "info@acme.com",,}</script>'
        assert decode(html) == {"info@acme.com"}


class TestScripts:
    """Tests for inline script extraction."""

    def test_platform_config_key(self):
        html = '<script>window.shop = {"shop_email": "store@acme.com", "currency": "EUR"};</script>'
        candidates = decode_candidates(html)

        assert [c.address for c in candidates] == ["store@acme.com"]
        assert candidates[0].extraction_method == ExtractionMethod.SCRIPT
        assert candidates[0].found_in_script is True

    def test_script_flag_cleared_when_also_visible(self):
        """An address also seen outside scripts is not script-only."""
        html = (
            '<script>var contactEmail = "info@acme.com";</script>'
            '<a href="mailto:info@acme.com">Mail</a>'
        )
        candidate = decode_candidates(html)[0]

        assert candidate.found_in_mailto is True
        assert candidate.found_in_script is False


class TestOtherSources:
    """Comments, attributes, base64, reversed and structural sources."""

    def test_html_comment(self):
        html = "<body><!-- billing contact: billing@acme.com --><p>Hi</p></body>"
        assert methods_by_address(html) == {"billing@acme.com": ExtractionMethod.COMMENT}

    def test_footer_is_structural(self):
        html = "<body><footer><p>Email: team@acme.com</p></footer></body>"
        assert methods_by_address(html) == {"team@acme.com": ExtractionMethod.STRUCTURAL}

    def test_hidden_form_field(self):
        html = (
            '<form action="/send"><input type="hidden" name="to" value="leads@acme.com"></form>'
        )
        assert decode(html) == {"leads@acme.com"}

    def test_plain_data_attribute(self):
        html = '<span class="js-mail" data-email="careers@acme.com"></span>'
        assert methods_by_address(html) == {"careers@acme.com": ExtractionMethod.ATTRIBUTE}

    def test_base64_data_attribute(self):
        encoded = base64.b64encode(b"hello@acme.com").decode()
        html = f'<span data-email="{encoded}"></span>'
        assert methods_by_address(html) == {"hello@acme.com": ExtractionMethod.BASE64}

    def test_base64_token_in_markup(self):
        encoded = base64.b64encode(b"contact: office@acme.com").decode()
        html = f'<div data-payload="{encoded}"></div>'
        assert decode(html) == {"office@acme.com"}

    def test_reversed_text(self):
        html = '<span style="direction: rtl; unicode-bidi: bidi-override">moc.emca@selas</span>'
        assert methods_by_address(html) == {"sales@acme.com": ExtractionMethod.REVERSED}

    def test_forward_address_is_not_reversed(self):
        html = "<p>Write to ed.smith@acme-widgets.com or se.office@firma.org</p>"
        assert decode(html) == {"ed.smith@acme-widgets.com", "se.office@firma.org"}

    def test_share_link_is_percent_decoded(self):
        html = (
            '<a href="https://twitter.com/intent/tweet?text=Mail%20info@acme-widgets.com">'
            "Share</a>"
        )
        assert decode(html) == {"info@acme-widgets.com"}

    def test_plain_text(self):
        assert methods_by_address("<p>Questions? info@acme.com</p>") == {
            "info@acme.com": ExtractionMethod.TEXT
        }


class TestDecodeInvariants:
    """Properties every decode result must hold."""

    @pytest.fixture
    def noisy_html(self):
        return f"""
        <html><head>
          <link rel="icon" href="/favicon@2x.png">
          <script src="/static/js/app.js"></script>
          <script>Sentry.init({{dsn: "https://5f3c9a1b2d4e6f708192a3b4c5d6e7f8@o1.ingest.sentry.io/1"}})</script>
        </head><body>
          <img srcset="/img/logo@2x.png 2x, /img/logo@3x.webp 3x">
          <p>Mail Info@Acme.com or INFO@acme.com</p>
          <p>Placeholder: your@email.com, user@example.com, noreply@acme.com</p>
          <p>support [at] acme [dot] com</p>
          <span data-cfemail="{cf_encode("billing@acme.com")}"></span>
        </body></html>
        """

    def test_every_address_is_valid(self, noisy_html):
        """Re-validating the output set is a no-op."""
        found = decode(noisy_html)

        assert found == {"info@acme.com", "support@acme.com", "billing@acme.com"}
        assert {a for a in found if is_valid_email(a)} == found

    def test_decode_is_deterministic(self, noisy_html):
        assert decode(noisy_html) == decode(noisy_html)

    def test_no_case_duplicates(self, noisy_html):
        addresses = [c.address for c in decode_candidates(noisy_html)]
        assert len(addresses) == len({a.lower() for a in addresses})
        assert all(a == a.lower() for a in addresses)

    def test_empty_input(self):
        assert decode("") == set()
        assert decode(None) == set()
