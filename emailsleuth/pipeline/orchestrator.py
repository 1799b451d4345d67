"""Crawl orchestration: one URL in, one ExtractionResult out.

Runs the strategy list, then validates, verifies and scores whatever was
found. Per-page and per-stage failures are logged and the crawl moves on;
only an unreachable site produces an ``error`` result.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import aiohttp

from emailsleuth.config import get_config, get_settings
from emailsleuth.core.exceptions import EmailSleuthError
from emailsleuth.core.logging import get_logger
from emailsleuth.fetch.browser import RenderedFetcher, get_browser_pool
from emailsleuth.fetch.http import SimpleFetcher
from emailsleuth.pipeline.planner import bare_host, site_root
from emailsleuth.pipeline.scoring import ScoreContext, adjust_for_verification, score
from emailsleuth.pipeline.strategies import (
    DEFAULT_STRATEGIES,
    CrawlContext,
    CrawlDeps,
    CrawlStrategy,
    NullSearchProvider,
    ScanRoot,
    ScanUserPath,
)
from emailsleuth.schemas.extraction import (
    EmailWithConfidence,
    ExtractionDetails,
    ExtractionResult,
    ScanQuality,
)
from emailsleuth.services.ai_analyzer import get_ai_analyzer
from emailsleuth.services.email_validation import (
    DomainValidator,
    NullValidator,
    VerificationResult,
    get_email_validator,
)
from emailsleuth.services.email_validation.smtp import VERIFICATION_SKIPPED

logger = get_logger(__name__)


def normalize_input_url(url: str) -> str | None:
    url = url.strip()
    if not url:
        return None
    if "://" not in url:
        url = f"https://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return url


@asynccontextmanager
async def default_deps(verify: bool = True) -> AsyncIterator[CrawlDeps]:
    """Production collaborators sharing one HTTP session, closed on exit."""
    settings = get_settings()
    config = get_config()
    async with aiohttp.ClientSession() as session:
        rendered = RenderedFetcher(get_browser_pool(), config.crawl) if settings.browser_enabled else None
        yield CrawlDeps(
            simple=SimpleFetcher(session=session),
            rendered=rendered,
            validator=get_email_validator() if verify else NullValidator(),
            domains=DomainValidator(config=config.verification),
            ai=get_ai_analyzer(),
            search=NullSearchProvider(),
            config=config.crawl,
            session=session,
        )


def assess_quality(ctx: CrawlContext) -> ScanQuality:
    attempted = ctx.pages_attempted
    if attempted and ctx.pages_blocked * 2 > attempted:
        return ScanQuality.BLOCKED
    if ctx.budget_exhausted or (attempted and ctx.pages_reached * 2 < attempted):
        return ScanQuality.PARTIAL
    return ScanQuality.THOROUGH


def _details(ctx: CrawlContext) -> ExtractionDetails:
    status = ctx.blocked_status
    if status is None:
        return ExtractionDetails()
    return ExtractionDetails(
        blocked=True,
        blocked_reason=status.reason,
        suggested_action=status.suggestion,
    )


def _is_verified(result: VerificationResult | None) -> bool:
    return (
        result is not None
        and result.provider != NullValidator.provider_name
        and result.reason != VERIFICATION_SKIPPED
    )


async def _run_strategies(ctx: CrawlContext, strategies: tuple[CrawlStrategy, ...]) -> None:
    for strategy in strategies:
        if strategy.fallback and ctx.found_count:
            break
        if ctx.site_unreachable and not isinstance(strategy, (ScanRoot, ScanUserPath)):
            # Nothing reachable to plan from; the caller reports the error
            return
        try:
            outcome = await strategy.attempt(ctx)
        except (EmailSleuthError, aiohttp.ClientError, TimeoutError) as e:
            logger.bind(url=ctx.url, stage=strategy.name, error=str(e) or type(e).__name__).warning(
                "stage_failed"
            )
            continue
        if outcome is None:
            logger.bind(url=ctx.url, stage=strategy.name).debug("stage_skipped")
            continue
        logger.bind(
            url=ctx.url,
            stage=outcome.stage,
            found=outcome.found,
            pages=outcome.pages,
            total=ctx.found_count,
        ).info("stage_complete")


async def _finalize(ctx: CrawlContext) -> ExtractionResult:
    deps = ctx.deps
    addresses = list(ctx.candidates)
    validated = await deps.domains.validate(addresses)

    verification: dict[str, VerificationResult] = {}
    if validated:
        for result in await deps.validator.validate_batch(validated):
            verification[result.email.lower()] = result

    ranked: list[EmailWithConfidence] = []
    for address in validated:
        candidate = ctx.candidates[address]
        result = verification.get(address)
        if result is not None and not deps.validator.should_allow(result):
            continue

        confidence = score(
            address,
            candidate.source_url,
            ctx.site_domain,
            ScoreContext(
                found_in_mailto=candidate.found_in_mailto,
                found_in_script=candidate.found_in_script,
            ),
        )
        verified = _is_verified(result)
        if verified and result is not None:
            confidence = adjust_for_verification(confidence, result.status)

        ranked.append(
            EmailWithConfidence(
                address=address,
                confidence=confidence,
                source=candidate.source_url,
                verified=verified,
                verification_status=result.status if verified and result is not None else None,
            )
        )

    ranked.sort(key=lambda e: e.confidence, reverse=True)
    methods = list(
        dict.fromkeys(ctx.candidates[e.address].extraction_method.value for e in ranked)
    )

    return ExtractionResult(
        emails=[e.address for e in ranked],
        validated_emails=validated,
        emails_with_confidence=ranked,
        pages_scanned=ctx.pages_reached,
        urls_checked=ctx.urls_checked,
        scan_quality=assess_quality(ctx),
        methods=methods,
        extraction_details=_details(ctx),
    )


async def crawl(
    url: str,
    deps: CrawlDeps,
    strategies: tuple[CrawlStrategy, ...] = DEFAULT_STRATEGIES,
) -> ExtractionResult:
    """Crawl one site with explicit collaborators."""
    normalized = normalize_input_url(url)
    if normalized is None:
        return ExtractionResult(error=f"Invalid URL: {url}", scan_quality=ScanQuality.PARTIAL)

    ctx = CrawlContext(
        url=normalized,
        root_url=site_root(normalized),
        site_domain=bare_host(normalized),
        deps=deps,
    )
    log = logger.bind(url=normalized)
    log.info("crawl_started")

    await _run_strategies(ctx, strategies)

    if ctx.site_unreachable:
        details = _details(ctx)
        log.bind(blocked=details.blocked_reason).warning("crawl_root_unreachable")
        return ExtractionResult(
            pages_scanned=0,
            urls_checked=ctx.urls_checked,
            scan_quality=ScanQuality.BLOCKED if details.blocked else ScanQuality.PARTIAL,
            extraction_details=details,
            error=f"Could not fetch {ctx.root_url}",
        )

    result = await _finalize(ctx)
    log.bind(
        emails=len(result.emails),
        pages=result.pages_scanned,
        quality=result.scan_quality.value,
    ).info("crawl_complete")
    return result


async def extract_emails_from_url(
    url: str,
    *,
    deps: CrawlDeps | None = None,
    verify: bool = True,
) -> ExtractionResult:
    """
    Discover and score contact emails for a site.

    Args:
        url: Site URL (scheme optional)
        deps: Collaborators; production defaults are built when omitted
        verify: Probe mailboxes over SMTP when a verifier is configured

    Returns:
        ExtractionResult; ``error`` is set only when the site was unreachable
    """
    if deps is not None:
        return await crawl(url, deps)
    async with default_deps(verify=verify) as built:
        return await crawl(url, built)
