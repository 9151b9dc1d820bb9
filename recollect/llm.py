"""
LLM access for extraction, boundary refinement and episode titles.

Every caller wants a JSON object back, so this provider asks OpenAI for JSON
mode and parses the reply. Models that wrap JSON in ``` fences anyway get
the fences stripped.
"""

import json
import re
from typing import Optional

from openai import AsyncOpenAI

from recollect.config import LlmConfig
from recollect.errors import LlmResponseError
from recollect.log import get_logger

logger = get_logger("llm")

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_reply(text: Optional[str]) -> dict:
    """Parse a model reply into a dict or raise LlmResponseError."""
    if not text or not text.strip():
        raise LlmResponseError("LLM returned an empty reply")
    cleaned = _FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise LlmResponseError(f"LLM reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LlmResponseError(f"LLM reply is JSON but not an object: {type(data).__name__}")
    return data


class OpenAIJsonProvider:
    """LlmProvider using the OpenAI chat completions API in JSON mode."""

    def __init__(self, config: Optional[LlmConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or LlmConfig()
        self.model = self.config.model
        if client is None:
            kwargs = {"timeout": self.config.timeout}
            if self.config.api_key:
                kwargs["api_key"] = self.config.api_key
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            client = AsyncOpenAI(**kwargs)
        self._client = client

    async def generate_json(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict:
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "You reply with a single JSON object and nothing else."},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.warning(f"LLM request to {self.model} failed: {e}")
            raise LlmResponseError(f"LLM request failed: {e}") from e

        if not response.choices:
            raise LlmResponseError("LLM returned no choices")
        return parse_json_reply(response.choices[0].message.content)
