"""OpenAI chat completion wrapper used by overview generation and scoring"""

import logging
from collections.abc import AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from trainermatch.config import settings
from trainermatch.errors import (
    ErrorKind,
    MatchingError,
    NetworkError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)


def map_openai_error(exc: Exception) -> MatchingError:
    """Translate an ``openai`` SDK exception into the pipeline taxonomy"""
    if isinstance(exc, MatchingError):
        return exc

    code = getattr(exc, "code", None)
    message = str(exc)

    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(exc, openai.APITimeoutError):
        return NetworkError(ErrorKind.TIMEOUT, f"LLM request timed out: {message}")
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError(ErrorKind.UNREACHABLE, f"LLM service unreachable: {message}")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return UpstreamServiceError(ErrorKind.INVALID_CREDENTIALS, f"LLM credentials rejected: {message}")
    if isinstance(exc, openai.RateLimitError):
        if code == "insufficient_quota":
            return UpstreamServiceError(ErrorKind.QUOTA_EXCEEDED, f"LLM quota exceeded: {message}")
        return UpstreamServiceError(ErrorKind.RATE_LIMITED, f"LLM rate limited: {message}")
    if isinstance(exc, openai.NotFoundError) or code == "model_not_found":
        return UpstreamServiceError(ErrorKind.MODEL_UNAVAILABLE, f"LLM model unavailable: {message}")
    if isinstance(exc, openai.BadRequestError):
        if code in ("content_policy_violation", "content_filter"):
            return UpstreamServiceError(ErrorKind.CONTENT_POLICY, f"Content policy violation: {message}")
        if code == "context_length_exceeded":
            return UpstreamServiceError(ErrorKind.TOKEN_LIMIT, f"Token limit exceeded: {message}")
        return UpstreamServiceError(ErrorKind.UPSTREAM_ERROR, f"LLM rejected request: {message}", retryable=False)
    if isinstance(exc, openai.APIStatusError):
        return UpstreamServiceError(ErrorKind.UPSTREAM_ERROR, f"LLM service error: {message}")
    if isinstance(exc, openai.APIResponseValidationError):
        return UpstreamServiceError(ErrorKind.MALFORMED_RESPONSE, f"Invalid LLM response: {message}")

    return UpstreamServiceError(ErrorKind.UPSTREAM_ERROR, f"Unexpected LLM error: {message}")


class LLMClient:
    """Chat-style requests against OpenAI: single-shot and token streaming"""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self._client: AsyncOpenAI | None = None
        if api_key:
            # Retries are decided by the caller (utils.retry), not the SDK
            self._client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
            logger.info(f"OpenAI client initialized (model={self.model})")

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise UpstreamServiceError(
                ErrorKind.INVALID_CREDENTIALS,
                "OpenAI API key is not configured",
            )
        return self._client

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        """Return the full response text; raises on empty output"""
        client = self._require_client()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except Exception as e:
            error = map_openai_error(e)
            logger.error(f"OpenAI completion failed: {error.kind.value}: {e}")
            raise error from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise UpstreamServiceError(ErrorKind.EMPTY_RESPONSE, "No content in OpenAI response")
        return content

    async def stream(
        self,
        system: str,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        """
        Yield content fragments as they arrive.

        Closing the generator (``aclose()`` or cancellation) closes the
        underlying HTTP response.
        """
        client = self._require_client()
        try:
            response_stream = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except Exception as e:
            error = map_openai_error(e)
            logger.error(f"OpenAI stream failed to start: {error.kind.value}: {e}")
            raise error from e

        try:
            async for chunk in response_stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except (openai.OpenAIError, httpx.HTTPError) as e:
            logger.error(f"OpenAI stream interrupted: {e}")
            raise UpstreamServiceError(
                ErrorKind.STREAM_INTERRUPTED, f"Streaming interrupted: {e}"
            ) from e
        finally:
            await response_stream.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
