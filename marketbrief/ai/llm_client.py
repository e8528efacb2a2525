"""LLM client for briefing and headline generation.

Talks to Gemini or Groq through their OpenAI-compatible endpoints with the
``openai`` SDK. Prompts are size-guarded before sending so a large portfolio
cannot blow the provider's per-request token limits.
"""

import logging
import math
from dataclasses import dataclass
from time import perf_counter
from typing import Optional

from openai import APIStatusError, OpenAI, OpenAIError

from ..config import Settings
from ..observability.provider_metrics import ProviderMetrics

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[TRUNCATED to fit token budget]"
MIN_USER_TOKENS = 800
MIN_OUTPUT_TOKENS = 300


class LLMError(RuntimeError):
    """Raised when the LLM cannot produce a usable response."""


@dataclass
class LLMResponse:
    text: str
    model: str
    tokens_used: int = 0


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text or "") / 4)


def truncate_to_token_budget(text: str, budget_tokens: int) -> str:
    if not text or estimate_tokens(text) <= budget_tokens:
        return text
    char_budget = max(500, budget_tokens * 4)
    return text[:char_budget] + TRUNCATION_MARKER


def _is_payload_too_large(status: int, message: str) -> bool:
    lowered = message.lower()
    return status == 413 or "payload too large" in lowered or "request entity too large" in lowered


class LLMClient:
    """Chat-completions wrapper with input/output token guards.

    Example:
        >>> client = LLMClient(get_settings())
        >>> client.complete("You are terse.", "Summarize today's Fed news").text
    """

    def __init__(self, settings: Settings, metrics: Optional[ProviderMetrics] = None, client: Optional[OpenAI] = None):
        self.settings = settings
        self.model = settings.llm_model
        self.metrics = metrics or ProviderMetrics()
        self.client = client

        if self.client is None and settings.llm_api_key:
            self.client = OpenAI(base_url=settings.llm_base_url, api_key=settings.llm_api_key)
            logger.info(f"LLMClient initialized using {settings.llm_provider} {self.model}")

    def prepare_prompts(self, system_prompt: str, user_prompt: str):
        """Apply the input budget and work out the output cap.

        Returns:
            Tuple of (system_prompt, user_prompt, max_output_tokens).
        """
        settings = self.settings
        system_prompt = system_prompt or ""
        user_prompt = user_prompt or ""

        if estimate_tokens(system_prompt + "\n\n" + user_prompt) > settings.max_input_tokens:
            allowed_for_user = max(
                MIN_USER_TOKENS,
                settings.max_input_tokens - estimate_tokens(system_prompt) - 50,
            )
            user_prompt = truncate_to_token_budget(user_prompt, allowed_for_user)

        input_tokens = estimate_tokens(system_prompt + "\n\n" + user_prompt)
        max_output = max(
            MIN_OUTPUT_TOKENS,
            min(settings.max_output_tokens, settings.max_total_tokens - input_tokens),
        )
        return system_prompt, user_prompt, max_output

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        if self.client is None:
            raise LLMError(
                f"No API key configured for LLM provider '{self.settings.llm_provider}'. "
                "Add it to .env and restart."
            )

        system_prompt, user_prompt, max_output = self.prepare_prompts(system_prompt, user_prompt)
        input_tokens = estimate_tokens(system_prompt + "\n\n" + user_prompt)

        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.temperature if temperature is None else temperature,
            "max_tokens": max_output,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        provider = f"llm:{self.model}"
        started = perf_counter()
        try:
            completion = self.client.chat.completions.create(**kwargs)
        except APIStatusError as e:
            self.metrics.timed_call(provider, False, started, error=str(e))
            if _is_payload_too_large(e.status_code, str(e)):
                raise LLMError(
                    f"Request payload too large (413) for model {self.model}. "
                    f"Estimated input tokens: {input_tokens}, max allowed ~{self.settings.max_input_tokens}. "
                    "Reduce the prompt size (fewer assets, shorter snippets)."
                ) from e
            raise LLMError(f"LLM request failed ({e.status_code}): {e}") from e
        except OpenAIError as e:
            self.metrics.timed_call(provider, False, started, error=str(e))
            raise LLMError(f"LLM request failed: {e}") from e

        text = ""
        if completion.choices:
            text = (completion.choices[0].message.content or "").strip()
        if not text:
            self.metrics.timed_call(provider, False, started, error="empty response")
            raise LLMError(f"Empty response from {self.model}")

        self.metrics.timed_call(provider, True, started)
        usage = getattr(completion, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None) or 0
        return LLMResponse(text=text, model=getattr(completion, "model", None) or self.model, tokens_used=tokens_used)
