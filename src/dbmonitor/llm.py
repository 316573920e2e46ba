"""Text-generation collaborator backed by the Anthropic Messages API.

Constructed once by whoever needs it and passed by reference; there is no
module-level client.
"""
from __future__ import annotations
import logging
from typing import Iterator
from anthropic import Anthropic
from dbmonitor.config import Settings, get_settings

logger = logging.getLogger(__name__)


class TextGenerationError(Exception):
    pass


class TextGenerator:
    def __init__(self, client: Anthropic | None = None, *, model: str | None = None, max_tokens: int | None = None, settings: Settings | None = None):
        s = settings or get_settings()
        if client is None:
            if not s.anthropic_api_key:
                raise TextGenerationError("ANTHROPIC_API_KEY missing")
            client = Anthropic(api_key=s.anthropic_api_key, timeout=s.llm_timeout_seconds, max_retries=1)
        self.client = client
        self.model = model or s.llm_model
        self.max_tokens = max_tokens or s.llm_max_tokens

    def generate(self, system: str, prompt: str) -> str:
        try:
            msg = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:  # anthropic raises APIError subclasses and httpx timeouts
            raise TextGenerationError(f"{e.__class__.__name__}: {e}") from e
        return "".join(block.text for block in msg.content if getattr(block, "type", "text") == "text")

    def stream(self, system: str, prompt: str) -> Iterator[str]:
        """Yield response text incrementally (interactive chat surface only)."""
        try:
            with self.client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                for chunk in stream.text_stream:
                    yield chunk
        except Exception as e:
            raise TextGenerationError(f"{e.__class__.__name__}: {e}") from e
