"""Anthropic classifier provider built on the AsyncAnthropic client."""

from __future__ import annotations

import anthropic

from spamcrasher.classifier.provider import ClassifierProvider, error_for_status
from spamcrasher.classifier.rate_limiter import TokenBucket
from spamcrasher.classifier.response_parsing import parse_score
from spamcrasher.datatypes.decision_datatypes import ClassificationRequest
from spamcrasher.errors import ClassifierError, ClassifierResponseError, ProviderTransientError
from spamcrasher.util.logger import get_logger

logger = get_logger("anthropic_provider")


class AnthropicClassifier(ClassifierProvider):
    """Score messages with a Claude model via the Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 64,
        temperature: float = 0.0,
        request_timeout: float = 30.0,
        rate_limiter: TokenBucket | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(
            "anthropic",
            model,
            rate_limiter=rate_limiter,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        )
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=request_timeout,
            max_retries=0,
        )
        self._max_tokens = max_tokens
        self._temperature = temperature
        logger.info("[ANTHROPIC] Initialized with model=%s", model)

    async def _request_score(self, request: ClassificationRequest) -> float:
        # The API rejects empty user turns
        text = request.text if request.text.strip() else "(empty message)"

        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                system=request.prompt,
                messages=[{"role": "user", "content": text}],
            )
        except anthropic.APIConnectionError as exc:
            raise ProviderTransientError(f"Anthropic connection failed: {exc}", provider=self.name) from exc
        except anthropic.APIStatusError as exc:
            raise error_for_status(exc.status_code, f"Anthropic API error {exc.status_code}: {exc.message}", self.name) from exc
        except anthropic.AnthropicError as exc:
            raise ClassifierError(f"Anthropic request failed: {exc}", provider=self.name) from exc

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not content:
            raise ClassifierResponseError("Anthropic response has no text content", provider=self.name)
        return parse_score(content, provider=self.name)

    async def close(self) -> None:
        await self._client.close()
