"""Async client for OpenAI-compatible chat completion endpoints.

Used by the analysis engine and the LLM impact assessor.  DeepSeek, OpenAI
and any other compatible provider work by swapping ``base_url`` and model.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from openai import AsyncOpenAI

from altsignal.config import get_settings
from altsignal.errors import AnalysisDispatchError

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        model: str,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        timeout: float = 60.0,
    ) -> None:
        self.provider = provider
        self.model = model
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._prompt_tokens = 0
        self._completion_tokens = 0

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        """One chat completion with retry and exponential backoff."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        last_exc: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.chat.completions.create(**kwargs)
                if response.usage:
                    self._prompt_tokens += response.usage.prompt_tokens
                    self._completion_tokens += response.usage.completion_tokens
                return response.choices[0].message.content or ""
            except Exception as exc:
                last_exc = exc
                wait = self.backoff_base ** attempt
                logger.warning(
                    "[llm] %s call failed (attempt %d/%d): %s",
                    self.provider, attempt, self.max_retries, exc,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(wait)

        raise AnalysisDispatchError(
            f"{self.provider} call failed after {self.max_retries} attempts: {last_exc}"
        ) from last_exc

    async def complete_json(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        raw = await self.complete(system_prompt, user_prompt, json_mode=True)
        # Some providers wrap JSON in a fenced block even in json mode.
        text = raw.strip().removeprefix("```json").removeprefix("```").removesuffix("```").strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise AnalysisDispatchError(f"{self.provider} returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise AnalysisDispatchError(f"{self.provider} returned {type(data).__name__}, expected object")
        return data

    @property
    def token_usage(self) -> dict[str, int]:
        return {
            "prompt_tokens": self._prompt_tokens,
            "completion_tokens": self._completion_tokens,
            "total_tokens": self._prompt_tokens + self._completion_tokens,
        }


_analysis_client: LLMClient | None = None


def get_analysis_client() -> LLMClient:
    """Return (and cache) the client configured for alert analysis."""
    global _analysis_client
    if _analysis_client is None:
        s = get_settings()
        _analysis_client = LLMClient(
            provider=s.analysis_provider,
            api_key=s.analysis_api_key,
            base_url=s.analysis_base_url,
            model=s.analysis_model,
        )
    return _analysis_client
