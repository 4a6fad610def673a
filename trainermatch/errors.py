"""Error taxonomy for the matching pipeline

Every error carries an explicit machine-readable ``kind``, a user-facing
message and a retryability flag. Callers decide on retries by reading
``retryable``, never by inspecting message text.
"""

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    """Machine-readable error kinds"""
    # Network
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    OFFLINE = "offline"
    ABORTED = "aborted"

    # Upstream LLM service
    INVALID_CREDENTIALS = "invalid_credentials"
    MODEL_UNAVAILABLE = "model_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    CONTENT_POLICY = "content_policy"
    TOKEN_LIMIT = "token_limit"
    MALFORMED_RESPONSE = "malformed_response"
    EMPTY_RESPONSE = "empty_response"
    STREAM_INTERRUPTED = "stream_interrupted"
    UPSTREAM_ERROR = "upstream_error"

    # Input
    INVALID_INPUT = "invalid_input"

    # Collaborators
    CACHE_UNAVAILABLE = "cache_unavailable"
    ROSTER_UNAVAILABLE = "roster_unavailable"

    # Per-expert degradation inside a batch
    SCORING_FAILED = "scoring_failed"


# kind -> (retryable, user message)
_KIND_DEFAULTS: dict[ErrorKind, tuple[bool, str]] = {
    ErrorKind.TIMEOUT: (
        True, "The request took too long. Please try again in a moment."
    ),
    ErrorKind.UNREACHABLE: (
        True, "We cannot reach the AI service right now. Please try again in a few minutes."
    ),
    ErrorKind.OFFLINE: (
        False, "You appear to be offline. Check your connection and try again."
    ),
    ErrorKind.ABORTED: (
        False, "The request was cancelled."
    ),
    ErrorKind.INVALID_CREDENTIALS: (
        False, "There is a configuration issue with our AI service. We have been notified."
    ),
    ErrorKind.MODEL_UNAVAILABLE: (
        True, "The AI model is currently unavailable. We will try again shortly."
    ),
    ErrorKind.QUOTA_EXCEEDED: (
        False, "Our AI service has reached its usage limit. Please try again later or contact support."
    ),
    ErrorKind.RATE_LIMITED: (
        True, "The AI service is busy. Retrying shortly."
    ),
    ErrorKind.CONTENT_POLICY: (
        False, "Your input contains content that cannot be processed. Please revise and try again."
    ),
    ErrorKind.TOKEN_LIMIT: (
        False, "Your profile is too detailed for automatic processing. Please shorten it."
    ),
    ErrorKind.MALFORMED_RESPONSE: (
        True, "We received an unexpected response from the AI service. Trying again should help."
    ),
    ErrorKind.EMPTY_RESPONSE: (
        True, "The AI service returned an empty response. Trying again should help."
    ),
    ErrorKind.STREAM_INTERRUPTED: (
        True, "The connection was interrupted while generating your overview. Please regenerate it."
    ),
    ErrorKind.UPSTREAM_ERROR: (
        True, "The AI service encountered an error. Please try again."
    ),
    ErrorKind.INVALID_INPUT: (
        False, "Some required information is missing. Please complete the form and try again."
    ),
    ErrorKind.CACHE_UNAVAILABLE: (
        False, "Cached results are temporarily unavailable."
    ),
    ErrorKind.ROSTER_UNAVAILABLE: (
        False, "We could not load the list of trainers. Please try again."
    ),
    ErrorKind.SCORING_FAILED: (
        False, "We could not score this trainer."
    ),
}


class MatchingError(Exception):
    """Base class for all pipeline errors"""

    category = "internal"

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        user_message: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
    ):
        default_retryable, default_user_message = _KIND_DEFAULTS[kind]
        self.kind = kind
        self.message = message
        self.user_message = user_message or default_user_message
        self.retryable = default_retryable if retryable is None else retryable
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        return {
            "category": self.category,
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value!r}, message={self.message!r})"


class NetworkError(MatchingError):
    """Timeout, unreachable server, offline or aborted transport"""
    category = "network"


class UpstreamServiceError(MatchingError):
    """The LLM service refused, failed, or answered with something unusable"""
    category = "upstream"


class GenerationError(UpstreamServiceError):
    """Overview generation failed"""


class ValidationError(MatchingError):
    """Missing or invalid intake data"""
    category = "validation"

    def __init__(self, message: str, fields: list[str] | None = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if fields:
            details["fields"] = fields
        super().__init__(ErrorKind.INVALID_INPUT, message, details=details, **kwargs)


class CacheError(MatchingError):
    """Cache storage failure; always degrades to a miss or a no-op"""
    category = "cache"

    def __init__(self, message: str, operation: str | None = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if operation:
            details["operation"] = operation
        super().__init__(ErrorKind.CACHE_UNAVAILABLE, message, details=details, **kwargs)


class RosterError(MatchingError):
    """The expert roster could not be loaded"""
    category = "roster"

    def __init__(self, message: str, **kwargs):
        super().__init__(ErrorKind.ROSTER_UNAVAILABLE, message, **kwargs)


class PartialBatchFailure(MatchingError):
    """One expert's call failed inside a batch.

    Attached to the fallback outcome for that expert; never raised.
    """
    category = "partial"

    def __init__(self, expert_id: int, cause: BaseException):
        self.expert_id = expert_id
        self.cause = cause
        details = {"expert_id": expert_id}
        if isinstance(cause, MatchingError):
            details["cause_kind"] = cause.kind.value
        super().__init__(
            ErrorKind.SCORING_FAILED,
            f"Expert {expert_id}: {cause}",
            details=details,
        )
