"""Tests for confidence scoring."""

import pytest

from emailsleuth.pipeline.scoring import (
    BASE_SCORE,
    ScoreContext,
    adjust_for_verification,
    clamp,
    domain_matches_site,
    is_contact_page,
    score,
)
from emailsleuth.services.email_validation import VerificationStatus


class TestScore:
    """Tests for score."""

    def test_unrelated_address_on_plain_page(self):
        """Only the base score applies."""
        assert score("jane.smith@gmail.com", "https://acme.com/blog/post", "acme.com") == BASE_SCORE

    def test_domain_match(self):
        assert score("jane.smith@acme.com", "https://acme.com/", "acme.com") == 70

    def test_subdomain_counts_as_match(self):
        assert score("jane.smith@mail.acme.com", "https://acme.com/", "www.acme.com") == 70

    def test_contact_page_and_role_prefix(self):
        # 50 + 20 domain + 15 contact page + 10 role
        assert score("info@acme.com", "https://acme.com/contact-us", "acme.com") == 95

    def test_about_page(self):
        assert score("jane.smith@acme.com", "https://acme.com/about", "acme.com") == 85

    def test_clamped_at_100(self):
        context = ScoreContext(found_in_mailto=True)
        assert score("sales@acme.com", "https://acme.com/contact", "acme.com", context) == 100

    def test_script_only_penalty(self):
        # 50 + 20 domain + 10 role - 20 script-only
        context = ScoreContext(found_in_script=True)
        assert score("orders@acme.com", "https://acme.com/", "acme.com", context) == 60

    def test_script_penalty_waived_for_mailto(self):
        context = ScoreContext(found_in_mailto=True, found_in_script=True)
        assert score("orders@acme.com", "https://acme.com/", "acme.com", context) == 90

    def test_placeholder_penalty(self):
        # 50 + 20 domain - 30 placeholder
        assert score("john.doe@acme.com", "https://acme.com/", "acme.com") == 40

    @pytest.mark.parametrize(
        "address,source,site,context",
        [
            ("test@gmail.com", "", "acme.com", ScoreContext(found_in_script=True)),
            ("info@acme.com", "https://acme.com/contact", "acme.com", ScoreContext(True, False)),
            ("your@acme.com", "https://acme.com/x", "acme.com", ScoreContext(False, True)),
            ("contact@acme.co.uk", "https://acme.co.uk/about-us", "acme.co.uk", ScoreContext()),
        ],
    )
    def test_always_in_bounds(self, address, source, site, context):
        value = score(address, source, site, context)
        assert 0 <= value <= 100


class TestAdjustForVerification:
    """Tests for adjust_for_verification."""

    def test_adjustments(self):
        assert adjust_for_verification(70, VerificationStatus.VALID) == 95
        assert adjust_for_verification(70, VerificationStatus.INVALID) == 30
        assert adjust_for_verification(70, VerificationStatus.CATCH_ALL) == 80
        assert adjust_for_verification(70, VerificationStatus.TIMEOUT) == 70
        assert adjust_for_verification(70, VerificationStatus.UNKNOWN) == 70
        assert adjust_for_verification(70, None) == 70

    @pytest.mark.parametrize("status", list(VerificationStatus))
    @pytest.mark.parametrize("start", [0, 10, 50, 90, 100])
    def test_repeated_adjustment_stays_clamped(self, status, start):
        """Applying the adjustment twice never leaves [0, 100]."""
        once = adjust_for_verification(start, status)
        twice = adjust_for_verification(once, status)
        assert 0 <= once <= 100
        assert 0 <= twice <= 100

    def test_clamp_is_idempotent(self):
        for value in (-40, 0, 55, 100, 140):
            assert clamp(clamp(value)) == clamp(value)


class TestHelpers:
    def test_domain_matches_site(self):
        assert domain_matches_site("acme.com", "www.acme.com") is True
        assert domain_matches_site("notacme.com", "acme.com") is False
        assert domain_matches_site("", "acme.com") is False

    def test_is_contact_page(self):
        assert is_contact_page("https://acme.com/pages/contact") is True
        assert is_contact_page("https://acme.com/about-us") is True
        assert is_contact_page("https://acme.com/privacy") is False
