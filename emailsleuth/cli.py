"""
emailsleuth CLI - Find and verify contact emails for websites.

Usage:
    emailsleuth --help                      Show all commands
    emailsleuth extract acme.com            Crawl one site
    emailsleuth extract acme.com --json     Print the camelCase result as JSON
    emailsleuth batch a.com b.com -c 3      Crawl several sites, 3 at a time
    emailsleuth verify info@acme.com        SMTP-verify addresses
"""

import asyncio
import json

import typer

from emailsleuth.schemas.extraction import ExtractionResult

app = typer.Typer(
    name="emailsleuth",
    help="emailsleuth - contact email discovery and verification",
    no_args_is_help=True,
)


# --- Output helpers ---


def _print_success(message: str) -> None:
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _print_result(url: str, result: ExtractionResult) -> None:
    typer.echo(f"\n🔎 {url}")
    if result.error:
        _print_error(result.error)
        if result.extraction_details.suggested_action:
            typer.echo(f"   {result.extraction_details.suggested_action}")
        return

    typer.echo(
        f"   {result.pages_scanned} pages scanned | quality: {result.scan_quality.value}"
        f" | methods: {', '.join(result.methods) or '-'}"
    )
    if result.extraction_details.blocked:
        _print_warning(
            f"Blocked ({result.extraction_details.blocked_reason}): "
            f"{result.extraction_details.suggested_action}"
        )
    if not result.emails_with_confidence:
        typer.echo("   No emails found")
        return
    for entry in result.emails_with_confidence:
        status = entry.verification_status.value if entry.verification_status else "unverified"
        _print_success(f"{entry.address}  [{entry.confidence}]  {status}  ({entry.source})")


async def _shutdown_browser() -> None:
    from emailsleuth.fetch.browser import shutdown_browser_pool

    await shutdown_browser_pool()


@app.command()
def extract(
    url: str = typer.Argument(..., help="Site URL (scheme optional)"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip SMTP verification"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Crawl a site and list the contact emails found."""
    from emailsleuth.core.logging import setup_logging
    from emailsleuth.pipeline.orchestrator import extract_emails_from_url

    setup_logging(verbose=verbose)

    async def run() -> ExtractionResult:
        try:
            return await extract_emails_from_url(url, verify=not no_verify)
        finally:
            await _shutdown_browser()

    result = asyncio.run(run())

    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    else:
        _print_result(url, result)

    if result.error:
        raise typer.Exit(1)


@app.command()
def batch(
    urls: list[str] = typer.Argument(..., help="Site URLs"),
    concurrency: int = typer.Option(5, "--concurrency", "-c", help="Parallel crawls (1-10)"),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip SMTP verification"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Crawl several sites concurrently, printing each as it finishes."""
    from emailsleuth.core.logging import setup_logging
    from emailsleuth.pipeline.batch import iter_batch_extract

    setup_logging(verbose=verbose)

    async def run() -> int:
        failures = 0
        try:
            async for url, result in iter_batch_extract(
                urls, concurrency=concurrency, verify=not no_verify
            ):
                _print_result(url, result)
                failures += 1 if result.error else 0
        finally:
            await _shutdown_browser()
        return failures

    failures = asyncio.run(run())
    typer.echo(f"\n{'=' * 50}")
    typer.echo(f"Done: {len(urls) - failures}/{len(urls)} sites scanned")
    typer.echo(f"{'=' * 50}\n")


@app.command()
def verify(
    emails: list[str] = typer.Argument(..., help="Addresses to verify"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """SMTP-verify addresses (grouped by domain, catch-all aware)."""
    from emailsleuth.core.logging import setup_logging
    from emailsleuth.services.email_validation import batch_verify_emails

    setup_logging(verbose=verbose)
    results = asyncio.run(batch_verify_emails(emails))

    typer.echo("")
    for result in results:
        icon = "✅" if result.is_valid else "❌"
        typer.echo(
            f"  {icon} {result.email}: {result.status.value} "
            f"(confidence {result.confidence}) {result.reason or ''}".rstrip()
        )
    typer.echo("")


if __name__ == "__main__":
    app()
