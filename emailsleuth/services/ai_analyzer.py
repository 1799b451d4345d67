"""Optional LLM pass over page text.

Only used when an OpenAI key is configured and the crawl found nothing. Its
output is one more candidate source: every address still has to pass the
validity filter and domain validation before it is reported.
"""

from typing import Protocol

import backoff
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, OpenAIError, RateLimitError
from pydantic import BaseModel, Field

from emailsleuth.config import get_settings
from emailsleuth.core.logging import get_logger
from emailsleuth.pipeline.validation import is_valid_email

logger = get_logger(__name__)

MAX_TEXT_CHARS = 12_000

SYSTEM_PROMPT = """You find contact email addresses in website text.

Return only addresses that appear in the text, possibly obfuscated (for example
"name at domain dot com" or split across words). Reconstruct them to the
normal form. Never invent or guess addresses. Return an empty list if none."""


class ContactEmailsOutput(BaseModel):
    """Structured output schema for the extraction call."""

    emails: list[str] = Field(
        default_factory=list,
        description="Contact email addresses found in the text",
    )


class AiAnalyzer(Protocol):
    async def analyze(self, text: str, domain: str) -> set[str]: ...


class NullAiAnalyzer:
    """Used when no credentials are configured."""

    async def analyze(self, text: str, domain: str) -> set[str]:
        return set()


class OpenAiAnalyzer:
    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    @backoff.on_exception(
        backoff.expo,
        (RateLimitError, APIConnectionError, APITimeoutError),
        max_tries=3,
        max_time=60,
    )
    async def _extract(self, text: str, domain: str) -> ContactEmailsOutput | None:
        response = await self._client.chat.completions.parse(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Website: {domain}\n\nText:\n{text}"},
            ],
            response_format=ContactEmailsOutput,
            temperature=0,
        )
        return response.choices[0].message.parsed

    async def analyze(self, text: str, domain: str) -> set[str]:
        """
        Ask the model for addresses in ``text``.

        Args:
            text: Visible page text (truncated)
            domain: Site domain, for context

        Returns:
            Lowercased addresses that pass the validity filter
        """
        if not text.strip():
            return set()

        try:
            result = await self._extract(text[:MAX_TEXT_CHARS], domain)
        except OpenAIError as e:
            logger.bind(domain=domain, error=str(e)).error("ai_analysis_error")
            return set()

        if result is None:
            logger.bind(domain=domain).warning("ai_analysis_no_result")
            return set()

        found = {e.strip().lower() for e in result.emails if is_valid_email(e)}
        logger.bind(domain=domain, found=len(found)).info("ai_analysis_complete")
        return found


def get_ai_analyzer() -> AiAnalyzer:
    """OpenAI-backed analyzer when a key is configured, otherwise a no-op."""
    settings = get_settings()
    if not settings.openai_api_key:
        return NullAiAnalyzer()
    return OpenAiAnalyzer(AsyncOpenAI(api_key=settings.openai_api_key), settings.llm_model)
