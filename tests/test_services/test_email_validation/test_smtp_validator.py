"""Tests for SmtpValidator: catch-all detection, MX fallback and batch grouping."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from emailsleuth.config import VerificationConfig
from emailsleuth.services.email_validation import (
    DomainValidator,
    ProbeOutcome,
    SmtpProbe,
    SmtpValidator,
    VerificationStatus,
)
from emailsleuth.services.email_validation.smtp import VERIFICATION_SKIPPED, catch_all_probe_address

pytestmark = pytest.mark.asyncio


class ScriptedProbe:
    """Probe stand-in: decides by recipient (and optionally host), records every call."""

    def __init__(self, decide, delay: float = 0.0) -> None:
        self.decide = decide
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, host: str, recipient: str) -> ProbeOutcome:
        self.calls.append((host, recipient))
        if self.delay:
            await asyncio.sleep(self.delay)
        status = self.decide(host, recipient)
        code = {VerificationStatus.VALID: 250, VerificationStatus.INVALID: 550}.get(status)
        return ProbeOutcome(status=status, code=code)

    def recipients(self) -> list[str]:
        return [recipient for _, recipient in self.calls]


def rejects_unknown(*valid: str):
    """Server that accepts only the listed mailboxes."""

    def decide(host, recipient):
        return VerificationStatus.VALID if recipient in valid else VerificationStatus.INVALID

    return decide


@pytest.fixture
def domains():
    """DomainValidator with two MX hosts for every domain except nomx.com."""
    mock = MagicMock(spec=DomainValidator)

    async def mx_hosts(domain):
        return [] if domain == "nomx.com" else [f"mx1.{domain}", f"mx2.{domain}"]

    mock.mx_hosts = AsyncMock(side_effect=mx_hosts)
    return mock


@pytest.fixture
def make_validator(domains, cache_registry):
    def _create(probe, **config) -> SmtpValidator:
        return SmtpValidator(
            probe,
            domains=domains,
            cache=cache_registry,
            config=VerificationConfig(config),
        )

    return _create


class TestCatchAllProbeAddress:
    async def test_shape(self):
        address = catch_all_probe_address("acme.com")
        local, _, domain = address.partition("@")
        assert domain == "acme.com"
        assert local.startswith("nonexistent_")
        assert address != catch_all_probe_address("acme.com")


class TestValidate:
    """Tests for single-address verification."""

    async def test_valid(self, make_validator):
        probe = ScriptedProbe(rejects_unknown("info@acme.com"))

        result = await make_validator(probe).validate("Info@Acme.com")

        assert result.email == "info@acme.com"
        assert result.status == VerificationStatus.VALID
        assert result.is_valid is True
        assert result.confidence == 95
        assert probe.recipients()[0].startswith("nonexistent_")

    async def test_invalid(self, make_validator):
        probe = ScriptedProbe(rejects_unknown())

        result = await make_validator(probe).validate("ghost@acme.com")

        assert result.status == VerificationStatus.INVALID
        assert result.is_valid is False
        assert result.confidence == 90

    async def test_no_mx(self, make_validator):
        probe = ScriptedProbe(rejects_unknown())

        result = await make_validator(probe).validate("info@nomx.com")

        assert result.status == VerificationStatus.INVALID
        assert result.confidence == 10
        assert probe.calls == []

    async def test_catch_all(self, make_validator, cache_registry):
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.VALID)

        result = await make_validator(probe).validate("info@acme.com")

        assert result.status == VerificationStatus.CATCH_ALL
        assert result.is_valid is True
        assert result.confidence == 60
        assert len(probe.calls) == 1
        assert cache_registry.catch_all.get("acme.com") is True

    async def test_timeout_on_both_mx_hosts(self, make_validator):
        """Slow servers yield a kept, valid-flagged timeout rather than a drop."""
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.TIMEOUT)

        result = await make_validator(probe).validate("info@acme.com")

        assert result.status == VerificationStatus.TIMEOUT
        assert result.is_valid is True
        assert result.confidence == 45
        real_probes = [host for host, rcpt in probe.calls if rcpt == "info@acme.com"]
        assert real_probes == ["mx1.acme.com", "mx2.acme.com"]

    async def test_falls_back_to_second_mx(self, make_validator):
        def decide(host, recipient):
            if host == "mx1.acme.com":
                return VerificationStatus.UNKNOWN
            return rejects_unknown("info@acme.com")(host, recipient)

        result = await make_validator(ScriptedProbe(decide)).validate("info@acme.com")

        assert result.status == VerificationStatus.VALID

    async def test_only_first_hosts_are_tried(self, make_validator, domains):
        domains.mx_hosts = AsyncMock(return_value=["mx1", "mx2", "mx3"])
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.TIMEOUT)

        await make_validator(probe, max_mx_hosts=2).validate("info@acme.com")

        assert "mx3" not in [host for host, _ in probe.calls]

    async def test_mixed_inconclusive_is_unknown(self, make_validator):
        def decide(host, recipient):
            if recipient.startswith("nonexistent_"):
                return VerificationStatus.INVALID
            return VerificationStatus.TIMEOUT if host == "mx1.acme.com" else VerificationStatus.UNKNOWN

        result = await make_validator(ScriptedProbe(decide)).validate("info@acme.com")

        assert result.status == VerificationStatus.UNKNOWN
        assert result.confidence == 40

    async def test_catch_all_result_is_cached(self, make_validator):
        probe = ScriptedProbe(rejects_unknown("a@acme.com", "b@acme.com"))
        validator = make_validator(probe)

        await validator.validate("a@acme.com")
        await validator.validate("b@acme.com")

        catch_all_probes = [r for r in probe.recipients() if r.startswith("nonexistent_")]
        assert len(catch_all_probes) == 1

    async def test_catch_all_cache_expires(self, make_validator, fake_clock):
        probe = ScriptedProbe(rejects_unknown("a@acme.com"))
        validator = make_validator(probe)

        await validator.validate("a@acme.com")
        fake_clock.advance(hours=1, minutes=1)
        await validator.validate("a@acme.com")

        catch_all_probes = [r for r in probe.recipients() if r.startswith("nonexistent_")]
        assert len(catch_all_probes) == 2

    async def test_inconclusive_catch_all_probe_is_not_cached(self, make_validator, cache_registry):
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.TIMEOUT)

        await make_validator(probe).validate("info@acme.com")

        assert cache_registry.catch_all.get("acme.com") is None

    async def test_resolver_failure_is_unknown(self, make_validator, domains):
        domains.mx_hosts = AsyncMock(side_effect=OSError("network unreachable"))

        result = await make_validator(ScriptedProbe(rejects_unknown())).validate("info@acme.com")

        assert result.status == VerificationStatus.UNKNOWN
        assert result.confidence == 30


class TestValidateBatch:
    """Tests for domain-grouped batch verification."""

    async def test_catch_all_siblings_need_no_probe(self, make_validator):
        """Only the catch-all probe runs; siblings get a synthesized result."""
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.VALID)

        results = await make_validator(probe).validate_batch(
            ["a@acme.com", "b@acme.com", "c@acme.com"]
        )

        assert [r.status for r in results] == [VerificationStatus.CATCH_ALL] * 3
        assert [r.email for r in results] == ["a@acme.com", "b@acme.com", "c@acme.com"]
        assert len(probe.calls) == 1

    async def test_inconclusive_siblings_inherit(self, make_validator):
        probe = ScriptedProbe(lambda host, rcpt: VerificationStatus.TIMEOUT)

        results = await make_validator(probe).validate_batch(["a@acme.com", "b@acme.com"])

        assert [r.status for r in results] == [VerificationStatus.TIMEOUT] * 2
        assert results[1].email == "b@acme.com"
        assert "b@acme.com" not in probe.recipients()

    async def test_conclusive_siblings_are_probed(self, make_validator):
        probe = ScriptedProbe(rejects_unknown("a@acme.com"))

        results = await make_validator(probe).validate_batch(["a@acme.com", "b@acme.com"])

        assert [r.status for r in results] == [VerificationStatus.VALID, VerificationStatus.INVALID]

    async def test_deadline_skips_unfinished(self, make_validator):
        def decide(host, recipient):
            return VerificationStatus.VALID if "fast.com" in host else VerificationStatus.INVALID

        class SplitProbe(ScriptedProbe):
            async def __call__(self, host, recipient):
                self.delay = 5.0 if "slow.com" in host else 0.0
                return await super().__call__(host, recipient)

        validator = make_validator(SplitProbe(decide), batch_timeout_seconds=0.2)

        results = await validator.validate_batch(["info@fast.com", "info@slow.com"])

        assert results[0].status == VerificationStatus.CATCH_ALL
        assert results[1].status == VerificationStatus.UNKNOWN
        assert results[1].reason == VERIFICATION_SKIPPED
        assert results[1].is_valid is False


class TestWithSmtpServer:
    """SmtpValidator driving the real probe against a scripted server."""

    @pytest.fixture
    def local_domains(self):
        mock = MagicMock(spec=DomainValidator)
        mock.mx_hosts = AsyncMock(return_value=["127.0.0.1"])
        return mock

    def make(self, port, local_domains, cache_registry, timeout_seconds=2.0):
        probe = SmtpProbe("verify@emailchecker.local", "emailchecker.local", port, timeout_seconds)
        return SmtpValidator(
            probe,
            domains=local_domains,
            cache=cache_registry,
            config=VerificationConfig({"max_mx_hosts": 2}),
        )

    async def test_catch_all_domain_opens_one_connection(self, smtp_server, local_domains, cache_registry):
        server = await smtp_server()
        validator = self.make(server.port, local_domains, cache_registry)

        results = await validator.validate_batch(["a@acme.com", "b@acme.com", "c@acme.com"])

        assert all(r.status == VerificationStatus.CATCH_ALL for r in results)
        assert server.connections == 1

    async def test_real_mailbox_check(self, smtp_server, local_domains, cache_registry):
        server = await smtp_server(
            rcpt_replies={"info@acme.com": "250 2.1.5 OK"},
            default_rcpt="550 5.1.1 No such user",
        )
        validator = self.make(server.port, local_domains, cache_registry)

        results = await validator.validate_batch(["info@acme.com", "ghost@acme.com"])

        assert [r.status for r in results] == [VerificationStatus.VALID, VerificationStatus.INVALID]

    async def test_timeout(self, smtp_server, local_domains, cache_registry):
        server = await smtp_server(stall_on="RCPT")
        validator = self.make(server.port, local_domains, cache_registry, timeout_seconds=0.2)

        result = await validator.validate("info@acme.com")

        assert result.status == VerificationStatus.TIMEOUT
        assert result.is_valid is True
