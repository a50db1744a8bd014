"""Unit tests for the OpenAI batch classifier and prompts (mocked client)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from tenacity import wait_none

from contactclass.ai.openai_provider import OpenAIClassifier, build_ai_provider, parse_results
from contactclass.ai.prompts import RESPONSE_SCHEMA, build_user_prompt, system_prompt
from contactclass.config import LLMConfig
from contactclass.exceptions import ProviderError, ProviderTimeoutError
from contactclass.models import AIContactInput, Category, Language, ModelTier

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content: str | None, total_tokens: int | None = 321):
    usage = SimpleNamespace(total_tokens=total_tokens) if total_tokens is not None else None
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=usage,
    )


def _classifier(create: AsyncMock) -> OpenAIClassifier:
    client = MagicMock()
    client.chat.completions.create = create
    return OpenAIClassifier(LLMConfig(api_key="sk-test"), client=client)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(OpenAIClassifier._create_with_retry.retry, "wait", wait_none())


CONTACTS = [
    AIContactInput(index=0, name="Clinique du Parc", city="Lyon", country="France"),
    AIContactInput(index=1, name="Jean Dupont", email="jean@gmail.com"),
]


class TestPrompts:
    """Test prompt rendering and schema."""

    def test_user_prompt_lists_contacts(self):
        contacts = [
            AIContactInput(
                index=0,
                name="Clinique du Parc",
                email="info@cliniqueduparc.fr",
                activities="Soins",
                city="Lyon",
                country="France",
                enrichment_summary="Business type: medical",
            ),
            AIContactInput(index=1, name="Jean Dupont"),
        ]

        prompt = build_user_prompt(contacts)

        assert prompt.startswith("Please classify the following contacts based on all available data:")
        assert "ID: 0 | Name: Clinique du Parc" in prompt
        assert "Location: Lyon, France" in prompt
        assert "WEB ENRICHMENT: Business type: medical" in prompt
        assert "\n\n---\n\nID: 1 | Name: Jean Dupont" in prompt
        assert "Email" not in prompt.split("---")[1]

    def test_system_prompt_per_language(self):
        assert "PRESCRIBER" in system_prompt(Language.EN)
        assert "Vous êtes" in system_prompt(Language.FR)

    def test_schema_is_strict(self):
        item = RESPONSE_SCHEMA["schema"]["properties"]["results"]["items"]

        assert RESPONSE_SCHEMA["strict"] is True
        assert item["additionalProperties"] is False
        assert set(item["required"]) == set(item["properties"])
        assert item["properties"]["final_category"]["enum"] == [c.value for c in Category]


class TestParseResults:
    """Test response parsing."""

    def test_parses_results(self):
        content = json.dumps(
            {
                "results": [
                    {
                        "index": 0,
                        "final_category": "PRESCRIBER",
                        "confidence": 92.4,
                        "reason": "Clinic",
                        "public_signals_used": "name",
                        "needs_review": False,
                    }
                ]
            }
        )

        (result,) = parse_results(content, "gpt-4o-mini")

        assert result.category is Category.PRESCRIBER
        assert result.confidence == 92
        assert result.signals_used == "name"
        assert result.model == "gpt-4o-mini"

    def test_unusable_items_dropped(self):
        content = json.dumps(
            {
                "results": [
                    {"index": 0, "final_category": "PARTNER", "confidence": 90},
                    {"final_category": "CLIENT", "confidence": 90},
                    {"index": 2, "final_category": "customer", "confidence": 80},
                ]
            }
        )

        results = parse_results(content, "m")

        assert [(r.index, r.category) for r in results] == [(2, Category.CLIENT)]

    def test_malformed_body_raises(self):
        with pytest.raises(ProviderError):
            parse_results("{not json", "m")


class TestOpenAIClassifier:
    """Test API calls and error mapping."""

    @pytest.mark.asyncio
    async def test_classify_uses_schema_and_tier_model(self):
        body = {
            "results": [
                {
                    "index": 0,
                    "final_category": "PRESCRIBER",
                    "confidence": 95,
                    "reason": "Clinic in Lyon",
                    "public_signals_used": "name",
                    "needs_review": False,
                }
            ]
        }
        create = AsyncMock(return_value=_completion(json.dumps(body)))
        classifier = _classifier(create)

        response = await classifier.classify(CONTACTS, Language.EN, ModelTier.SECONDARY)

        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.1
        assert kwargs["response_format"]["type"] == "json_schema"
        assert kwargs["response_format"]["json_schema"]["name"] == "contact_classification"
        assert response.model == "gpt-4o"
        assert response.tokens_used == 321
        assert response.results[0].model == "gpt-4o"
        assert response.user_prompt.startswith("Please classify")

    @pytest.mark.asyncio
    async def test_missing_usage_estimates_tokens(self):
        create = AsyncMock(return_value=_completion(json.dumps({"results": []}), total_tokens=None))

        response = await _classifier(create).classify(CONTACTS, Language.FR)

        assert response.tokens_used > 0

    @pytest.mark.asyncio
    async def test_empty_content_raises(self):
        create = AsyncMock(return_value=_completion(None))

        with pytest.raises(ProviderError):
            await _classifier(create).classify(CONTACTS, Language.EN)

    @pytest.mark.asyncio
    async def test_status_error_is_not_retried(self):
        error = openai.BadRequestError(
            "bad schema", response=httpx.Response(400, request=_REQUEST), body=None
        )
        create = AsyncMock(side_effect=error)

        with pytest.raises(ProviderError) as exc_info:
            await _classifier(create).classify(CONTACTS, Language.EN)

        assert "HTTP 400" in str(exc_info.value)
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_retried_then_mapped(self):
        create = AsyncMock(side_effect=openai.APITimeoutError(request=_REQUEST))

        with pytest.raises(ProviderTimeoutError):
            await _classifier(create).classify(CONTACTS, Language.EN)

        assert create.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self):
        body = json.dumps({"results": []})
        create = AsyncMock(
            side_effect=[openai.APIConnectionError(request=_REQUEST), _completion(body)]
        )

        response = await _classifier(create).classify(CONTACTS, Language.EN)

        assert response.results == []
        assert create.await_count == 2


def test_build_ai_provider_requires_key():
    assert build_ai_provider(LLMConfig(api_key=None)) is None
    assert isinstance(build_ai_provider(LLMConfig(api_key="sk-test")), OpenAIClassifier)
