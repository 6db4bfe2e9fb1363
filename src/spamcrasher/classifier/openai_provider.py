"""OpenAI (and OpenAI-compatible) classifier provider.

Uses the AsyncOpenAI client, so any server speaking the chat completions
API (vLLM, LM Studio, Ollama) works by setting ``base_url``. The SDK's own
retries are disabled; retrying is the job of :class:`ClassifierProvider`.
"""

from __future__ import annotations

from typing import List

import openai
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from spamcrasher.classifier.provider import ClassifierProvider, error_for_status
from spamcrasher.classifier.rate_limiter import TokenBucket
from spamcrasher.classifier.response_parsing import parse_score
from spamcrasher.datatypes.decision_datatypes import ClassificationRequest
from spamcrasher.errors import ClassifierError, ClassifierResponseError, ProviderTransientError
from spamcrasher.util.logger import get_logger

logger = get_logger("openai_provider")


class OpenAIClassifier(ClassifierProvider):
    """Score messages with an OpenAI chat model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        max_tokens: int = 64,
        temperature: float = 0.0,
        request_timeout: float = 30.0,
        rate_limiter: TokenBucket | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        super().__init__(
            "openai",
            model,
            rate_limiter=rate_limiter,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        )
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=request_timeout,
            max_retries=0,
        )
        self._max_tokens = max_tokens
        self._temperature = temperature
        logger.info("[OPENAI] Initialized with base_url=%s, model=%s", base_url or "default", model)

    def build_messages(self, request: ClassificationRequest) -> List[ChatCompletionMessageParam]:
        return [
            {"role": "system", "content": request.prompt},
            {"role": "user", "content": request.text},
        ]

    async def _request_score(self, request: ClassificationRequest) -> float:
        extra = {}
        # JSON mode is only accepted when the prompt itself asks for JSON
        if "json" in request.prompt.lower():
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(request),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                **extra,
            )
        except openai.APIConnectionError as exc:
            raise ProviderTransientError(f"OpenAI connection failed: {exc}", provider=self.name) from exc
        except openai.APIStatusError as exc:
            raise error_for_status(exc.status_code, f"OpenAI API error {exc.status_code}: {exc.message}", self.name) from exc
        except openai.OpenAIError as exc:
            raise ClassifierError(f"OpenAI request failed: {exc}", provider=self.name) from exc

        if not response.choices:
            raise ClassifierResponseError("OpenAI response has no choices", provider=self.name)
        content = response.choices[0].message.content or ""
        return parse_score(content, provider=self.name)

    async def close(self) -> None:
        await self._client.close()
