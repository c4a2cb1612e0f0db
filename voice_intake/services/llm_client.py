"""
Language model client.

The pipeline talks to the model through the small ``LanguageModel``
protocol so tests can inject a stub. ``OpenAIChatModel`` is the
production implementation using the chat completions API in JSON mode.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from voice_intake.config import Settings, get_settings
from voice_intake.errors import ExtractionError
from voice_intake.logging_config import get_logger

logger = get_logger(__name__)


class LanguageModel(Protocol):
    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the raw text content of the model's JSON answer."""
        ...


class OpenAIChatModel:
    """Chat completions with ``response_format=json_object``."""

    def __init__(self, settings: Settings | None = None, model: str | None = None) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.extraction_model

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._settings.llm_timeout_seconds) as client:
                response = await client.post(
                    f"{self._settings.openai_base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._settings.openai_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self._model,
                        "messages": [
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_prompt},
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("llm_http_error", status=e.response.status_code, model=self._model)
            raise ExtractionError(
                f"Model API returned {e.response.status_code}",
                user_message="The language model is unavailable. Try again later.",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("llm_unreachable", error=str(e), model=self._model)
            raise ExtractionError(
                f"Model API unreachable: {e}",
                user_message="The language model is unavailable. Try again later.",
            ) from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"Unexpected model response shape: {e}") from e
