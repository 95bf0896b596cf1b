"""Language-model service over the OpenAI-compatible SDK (OpenRouter by default)."""
from __future__ import annotations

import time
from typing import Any

from deepcite.config import Settings
from deepcite.errors import LLMFailure
from deepcite.services import logger as log_service


class LLMClient:
    """Submit a system/user prompt pair, receive text.

    No retries: a failed call surfaces as :class:`LLMFailure` and the calling
    stage decides whether it can degrade.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        default_max_tokens: int = 4000,
        openai_client: Any | None = None,
    ):
        self.model = model
        self.default_max_tokens = default_max_tokens
        if openai_client is None:
            from openai import AsyncOpenAI

            openai_client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url.strip() or "https://openrouter.ai/api/v1",
            )
        self._client = openai_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            default_max_tokens=settings.synthesis_max_tokens,
        )

    @staticmethod
    def _temperature_for_model(model: str, requested: float | None) -> float:
        # Some GPT-5-compatible gateways reject any temperature other than 1.
        if "gpt-5" in (model or "").lower():
            return 1
        return 0 if requested is None else requested

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        caller: str = "llm",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=max_tokens or self.default_max_tokens,
                temperature=self._temperature_for_model(self.model, temperature),
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise LLMFailure(str(e)) from e

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        content = getattr(choices[0].message, "content", None)
        return content if isinstance(content, str) else ""

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
