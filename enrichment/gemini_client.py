"""
Thin async wrapper around the google-genai SDK.

Callers hand in a prompt and generation limits and get the response text
back. A 429 from the API surfaces as QuotaExceededError so it can be
retried with collectors.retry_strategy.with_retry; every other API error
propagates unchanged.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from utils.errors import ConfigurationError, QuotaExceededError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


@dataclass
class GeminiConfig:
    """Configuration for GeminiClient."""
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    temperature: float = 0.1


class GeminiClient:
    """
    Async text generation against Gemini.

    Usage:
        client = GeminiClient(GeminiConfig(api_key=key))
        text = await client.generate(prompt, max_output_tokens=2500)
    """

    def __init__(self, config: Optional[GeminiConfig] = None):
        self.config = config or GeminiConfig()
        self._client = None

        self.api_key = (
            self.config.api_key
            or os.environ.get("GEMINI_API_KEY")
            or os.environ.get("GOOGLE_API_KEY")
        )
        self.call_count = 0

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def client(self) -> genai.Client:
        """Lazy-load Gemini client."""
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError(
                    "GEMINI_API_KEY not set. Get one at https://aistudio.google.com/apikey"
                )
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        prompt: str,
        max_output_tokens: int,
        json_mode: bool = True,
        response_schema: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: Full prompt text
            max_output_tokens: Output token ceiling
            json_mode: Request application/json output
            response_schema: Constrain output to this schema (implies json_mode)
            temperature: Override the configured temperature

        Returns:
            Response text ("" when the model returned nothing)

        Raises:
            QuotaExceededError: HTTP 429 from the API
        """
        config_kwargs: Dict[str, Any] = {
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_mode or response_schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
        if response_schema is not None:
            config_kwargs["response_schema"] = response_schema

        self.call_count += 1
        try:
            response = await self.client.aio.models.generate_content(
                model=self.config.model,
                contents=prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
        except genai_errors.APIError as e:
            if e.code == 429:
                raise QuotaExceededError(f"Gemini quota exceeded: {e.message}") from e
            raise

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            finish_reason = getattr(candidates[0], "finish_reason", None)
            if finish_reason is not None and str(finish_reason).split(".")[-1] != "STOP":
                logger.debug(f"Gemini finish_reason={finish_reason}")

        return (response.text or "").strip()
