"""Tests for the LLM client's token guards and error handling."""

from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import pytest
from openai import APIStatusError, OpenAIError

from marketbrief.ai.llm_client import (
    TRUNCATION_MARKER,
    LLMClient,
    LLMError,
    estimate_tokens,
    truncate_to_token_budget,
)
from marketbrief.config import Settings


def _completion(content, total_tokens=321, model="gemini-1.5-flash-002"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
        model=model,
    )


@pytest.fixture
def openai_client():
    client = Mock()
    client.chat.completions.create.return_value = _completion("  ## MARKET OVERVIEW\nCalm.  ")
    return client


def test_estimate_tokens():
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0


def test_truncate_to_token_budget():
    text = "x" * 10000
    assert truncate_to_token_budget("short", 10) == "short"
    assert truncate_to_token_budget(text, 1000) == "x" * 4000 + TRUNCATION_MARKER
    # Never cut below 500 characters
    assert truncate_to_token_budget(text, 100) == "x" * 500 + TRUNCATION_MARKER


def test_prepare_prompts_leaves_small_prompts_alone(settings, openai_client):
    client = LLMClient(settings, client=openai_client)
    system, user, max_output = client.prepare_prompts("s" * 40, "u" * 400)
    assert user == "u" * 400
    assert max_output == 1200


def test_prepare_prompts_truncates_and_caps_output(openai_client):
    settings = Settings(max_input_tokens=4000, max_total_tokens=4500, max_output_tokens=1200)
    client = LLMClient(settings, client=openai_client)

    system, user, max_output = client.prepare_prompts("s" * 400, "u" * 40000)
    assert user == "u" * (3850 * 4) + TRUNCATION_MARKER
    assert estimate_tokens(system + "\n\n" + user) == 3959
    assert max_output == 4500 - 3959


def test_prepare_prompts_output_floor(openai_client):
    settings = Settings(max_input_tokens=4000, max_total_tokens=4000, max_output_tokens=1200)
    _, _, max_output = LLMClient(settings, client=openai_client).prepare_prompts("s" * 400, "u" * 40000)
    assert max_output == 300


def test_complete_sends_request_and_records_metrics(settings, openai_client):
    client = LLMClient(settings, client=openai_client)
    response = client.complete("system", "user", json_mode=True)

    assert response.text == "## MARKET OVERVIEW\nCalm."
    assert response.model == "gemini-1.5-flash-002"
    assert response.tokens_used == 321

    kwargs = openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == settings.llm_model
    assert kwargs["messages"][0] == {"role": "system", "content": "system"}
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 1200
    assert kwargs["response_format"] == {"type": "json_object"}

    stats = client.metrics.summary()[f"llm:{settings.llm_model}"]
    assert stats["successes"] == 1


def test_complete_without_api_key_raises(settings):
    client = LLMClient(settings)
    assert client.client is None
    with pytest.raises(LLMError, match="No API key"):
        client.complete("system", "user")


def test_complete_payload_too_large(settings, openai_client):
    request = httpx.Request("POST", "https://api.example.com/chat/completions")
    error = APIStatusError(
        "Request Entity Too Large", response=httpx.Response(413, request=request), body=None
    )
    openai_client.chat.completions.create.side_effect = error

    client = LLMClient(settings, client=openai_client)
    with pytest.raises(LLMError, match="payload too large"):
        client.complete("system", "user")
    assert client.metrics.summary()[f"llm:{settings.llm_model}"]["failures"] == 1


def test_complete_wraps_sdk_errors(settings, openai_client):
    openai_client.chat.completions.create.side_effect = OpenAIError("connection reset")
    with pytest.raises(LLMError, match="connection reset"):
        LLMClient(settings, client=openai_client).complete("system", "user")


def test_complete_rejects_empty_response(settings, openai_client):
    openai_client.chat.completions.create.return_value = _completion("   ")
    with pytest.raises(LLMError, match="Empty response"):
        LLMClient(settings, client=openai_client).complete("system", "user")
