from .llm_client import LLMClient, LLMError, LLMResponse, estimate_tokens, truncate_to_token_budget

__all__ = ["LLMClient", "LLMError", "LLMResponse", "estimate_tokens", "truncate_to_token_budget"]
