"""OpenAI batch classifier with structured outputs."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contactclass.ai.prompts import RESPONSE_SCHEMA, build_user_prompt, system_prompt
from contactclass.config import LLMConfig
from contactclass.exceptions import ProviderError, ProviderTimeoutError
from contactclass.models import (
    AIBatchResponse,
    AIContactInput,
    AIResult,
    Category,
    Language,
    ModelTier,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"

# Transient failures worth another attempt
_RETRYABLE = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class AIClassifier(Protocol):
    async def classify(
        self,
        contacts: list[AIContactInput],
        language: Language,
        tier: ModelTier = ModelTier.PRIMARY,
    ) -> AIBatchResponse: ...


def parse_results(content: str, model: str) -> list[AIResult]:
    """Parse the structured response body into per-contact results.

    Items with an unknown category or a missing index are dropped; the
    stage treats their rows as unanswered.

    Raises:
        ProviderError: If the body is not the expected JSON object
    """
    try:
        data = json.loads(content)
        items = data["results"]
    except (ValueError, KeyError, TypeError) as e:
        raise ProviderError(PROVIDER_NAME, f"malformed response: {e}") from e

    results: list[AIResult] = []
    for item in items:
        try:
            category = item["final_category"]
            try:
                category = Category(category)
            except ValueError:
                category = Category.from_label(str(category))
            results.append(
                AIResult(
                    index=int(item["index"]),
                    category=category,
                    confidence=item.get("confidence", 0),
                    reason=item.get("reason") or "",
                    signals_used=item.get("public_signals_used") or "",
                    needs_review=bool(item.get("needs_review", False)),
                    model=model,
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping unusable AI result {item!r}: {e}")
    return results


class OpenAIClassifier:
    """Classify contact batches with a primary and a secondary model."""

    def __init__(self, config: LLMConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def model_for(self, tier: ModelTier) -> str:
        if ModelTier(tier) is ModelTier.SECONDARY:
            return self.config.secondary_model
        return self.config.primary_model

    async def classify(
        self,
        contacts: list[AIContactInput],
        language: Language,
        tier: ModelTier = ModelTier.PRIMARY,
    ) -> AIBatchResponse:
        """Classify one batch.

        Args:
            contacts: Batch inputs; ``index`` is echoed back per result
            language: Language of the reason and signals fields
            tier: Which configured model to use

        Returns:
            AIBatchResponse with the prompts and raw body for audit

        Raises:
            ProviderTimeoutError: If the call timed out on every attempt
            ProviderError: On any other API failure or malformed response
        """
        model = self.model_for(tier)
        system = system_prompt(language)
        user = build_user_prompt(contacts)

        try:
            response = await self._create_with_retry(model, system, user)
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(PROVIDER_NAME, f"{model} timed out: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderError(PROVIDER_NAME, f"{model} HTTP {e.status_code}: {e.message}") from e
        except openai.OpenAIError as e:
            raise ProviderError(PROVIDER_NAME, f"{model}: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(PROVIDER_NAME, f"{model} returned an empty response")

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None)
        if not tokens:
            # Rough estimate when the API omits usage
            tokens = (len(system) + len(user) + len(content)) // 4

        return AIBatchResponse(
            results=parse_results(content, model),
            model=model,
            tokens_used=int(tokens),
            system_prompt=system,
            user_prompt=user,
            raw_response=content,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(_RETRYABLE),
        reraise=True,
    )
    async def _create_with_retry(self, model: str, system: str, user: str) -> Any:
        try:
            return await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_schema", "json_schema": RESPONSE_SCHEMA},
                temperature=self.config.temperature,
            )
        except _RETRYABLE as e:
            logger.warning(f"OpenAI call to {model} failed, retrying: {e}")
            raise


def build_ai_provider(config: LLMConfig) -> OpenAIClassifier | None:
    """Create the AI classifier, or None when no API key is configured."""
    if not config.api_key:
        return None
    return OpenAIClassifier(config)
