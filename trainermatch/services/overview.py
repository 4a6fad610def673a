"""Client overview generation"""

import logging
from collections.abc import AsyncIterator, Callable

from trainermatch.config import settings
from trainermatch.errors import ErrorKind, GenerationError, MatchingError
from trainermatch.schemas.intake import ClientProfile
from trainermatch.services.llm import LLMClient
from trainermatch.utils.retry import with_retry

logger = logging.getLogger(__name__)

OVERVIEW_SYSTEM_PROMPT = (
    "You are a fitness matching assistant. Generate concise, professional client "
    "profiles for matching clients with personal trainers and health professionals."
)


def _join_or_none(values: list[str]) -> str:
    return ", ".join(values) if values else "None"


def build_prompt(profile: ClientProfile) -> str:
    """Build the overview prompt from the intake answers"""
    return f"""Generate a concise professional client profile (100-150 words) based on the following information:

Training Experience: {profile.training_experience}
Goals: {_join_or_none(profile.goals)}
Sessions Per Week: {profile.sessions_per_week}
Chronic Diseases: {_join_or_none(profile.chronic_diseases)}
Injuries: {_join_or_none(profile.injuries)}
Weight Goal: {profile.weight_goal}

Create a clear, professional summary that highlights the client's fitness level, \
primary goals, any health considerations, and training capacity. Focus on what \
would be relevant for matching with trainers and health professionals."""


def _as_generation_error(error: MatchingError) -> GenerationError:
    if isinstance(error, GenerationError):
        return error
    return GenerationError(
        error.kind,
        error.message,
        user_message=error.user_message,
        retryable=error.retryable,
        details=error.details,
    )


class OverviewStream:
    """
    Cancellable lazy sequence of overview fragments.

    Iterate it to pull fragments; ``text`` holds everything pulled so far,
    trimmed. ``completed`` turns true only when the upstream sequence ended
    normally. ``aclose()`` abandons the generation and releases the upstream
    connection. The stream is single-use.

    Retryable failures are retried only until the first fragment arrives;
    after that a failure ends the stream.
    """

    def __init__(
        self,
        open_fragments: Callable[[], AsyncIterator[str]],
        retry_attempts: int = 1,
        retry_base_delay: float = 0.0,
    ):
        self._open_fragments = open_fragments
        self._fragments: AsyncIterator[str] | None = None
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._parts: list[str] = []
        self.completed = False
        self.closed = False

    @property
    def text(self) -> str:
        return "".join(self._parts).strip()

    def __aiter__(self) -> "OverviewStream":
        return self

    async def _start(self) -> tuple[AsyncIterator[str], str | None]:
        """Open the upstream and pull its first fragment (None if it is empty)"""
        fragments = self._open_fragments()
        try:
            return fragments, await fragments.__anext__()
        except StopAsyncIteration:
            return fragments, None
        except BaseException:
            await fragments.aclose()
            raise

    async def __anext__(self) -> str:
        if self.closed:
            raise StopAsyncIteration
        try:
            if self._fragments is None:
                self._fragments, fragment = await with_retry(
                    self._start,
                    max_attempts=self.retry_attempts,
                    base_delay=self.retry_base_delay,
                    description="Overview stream",
                )
                if fragment is None:
                    raise StopAsyncIteration
            else:
                fragment = await self._fragments.__anext__()
        except StopAsyncIteration:
            self.completed = True
            await self.aclose()
            if not self.text:
                raise GenerationError(ErrorKind.EMPTY_RESPONSE, "Overview stream produced no text")
            raise
        except MatchingError as e:
            await self.aclose()
            raise _as_generation_error(e) from e
        self._parts.append(fragment)
        return fragment

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._fragments is not None:
            await self._fragments.aclose()

    async def __aenter__(self) -> "OverviewStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class OverviewGenerator:
    """Turns an intake profile into overview prose"""

    def __init__(
        self,
        llm: LLMClient,
        temperature: float | None = None,
        max_tokens: int | None = None,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
    ):
        self.llm = llm
        self.temperature = settings.overview_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.overview_max_tokens
        self.retry_attempts = retry_attempts or settings.retry_max_attempts
        self.retry_base_delay = (
            settings.retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        )

    async def generate(self, profile: ClientProfile) -> str:
        """Single-shot generation with retries; returns the trimmed overview"""
        prompt = build_prompt(profile)

        async def attempt() -> str:
            content = await self.llm.complete(
                OVERVIEW_SYSTEM_PROMPT,
                prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            overview = content.strip()
            if not overview:
                raise GenerationError(ErrorKind.EMPTY_RESPONSE, "Overview generation returned no text")
            return overview

        try:
            overview = await with_retry(
                attempt,
                max_attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                description="Overview generation",
            )
        except MatchingError as e:
            raise _as_generation_error(e) from e

        logger.info(f"Generated overview ({len(overview)} chars)")
        return overview

    def generate_streaming(self, profile: ClientProfile) -> OverviewStream:
        """Token-by-token generation; nothing is requested until iteration starts"""
        prompt = build_prompt(profile)
        return OverviewStream(
            lambda: self.llm.stream(
                OVERVIEW_SYSTEM_PROMPT,
                prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ),
            retry_attempts=self.retry_attempts,
            retry_base_delay=self.retry_base_delay,
        )
