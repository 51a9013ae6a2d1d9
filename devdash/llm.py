"""Text generation through the Anthropic Messages API.

The client is constructed once from settings and injected wherever a summary
is needed; tests pass a fake with the same ``messages.create`` shape.
"""
from typing import Any, Optional

import anthropic

from .config import AnthropicSettings, DEFAULT_MODEL
from .logging_utils import logger


log = logger.child("llm")


def extract_text(response: Any) -> str:
    """Text of the first text block ("" when there is none)."""
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return getattr(block, "text", "") or ""
    return ""


class TextGenerator:
    def __init__(self, client: Any, *, model: str = DEFAULT_MODEL, max_tokens: int = 4096):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, s: AnthropicSettings) -> Optional["TextGenerator"]:
        """None when no API key is configured (summaries are then skipped)."""
        if not s.configured:
            return None
        return cls(anthropic.Anthropic(api_key=s.api_key), model=s.model, max_tokens=s.max_tokens)

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        kwargs = {
            "model": model or self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if temperature is not None:
            kwargs["temperature"] = temperature
        return extract_text(self.client.messages.create(**kwargs))

    def try_generate(self, prompt: str, *, label: str = "summary", **kwargs: Any) -> Optional[str]:
        """generate(), or None if the provider fails. Summaries are optional enrichment."""
        try:
            return self.generate(prompt, **kwargs)
        except Exception as e:
            log.error("generation_failed", label=label, error=f"{e.__class__.__name__}: {e}")
            return None
