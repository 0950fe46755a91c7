"""
Error taxonomy for media generation.

Every provider failure is converted into one of these kinds before it leaves
the component that observed it. Nothing above the adapters ever sees raw
provider vocabulary except through ClassifiedError.raw.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""
    AUTH_FAILED = "auth_failed"
    BAD_REQUEST = "bad_request"
    UNREACHABLE = "unreachable"
    MODERATION_PERSON = "content_moderation_person"
    MODERATION_POLICY = "content_moderation_policy"
    MODERATION_COPYRIGHT = "content_moderation_copyright"
    QUOTA_EXHAUSTED = "quota_exhausted"
    RATE_LIMITED = "rate_limited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def code(self) -> str:
        """Stable machine code, e.g. ``AUTH_FAILED``."""
        return _CODES[self]

    @property
    def transient(self) -> bool:
        """Whether a poll that fails this way may simply be retried."""
        return self in (ErrorKind.UNREACHABLE, ErrorKind.RATE_LIMITED)


_CODES = {
    ErrorKind.AUTH_FAILED: "AUTH_FAILED",
    ErrorKind.BAD_REQUEST: "BAD_REQUEST",
    ErrorKind.UNREACHABLE: "UNREACHABLE",
    ErrorKind.MODERATION_PERSON: "MODERATION_PERSON",
    ErrorKind.MODERATION_POLICY: "MODERATION_POLICY",
    ErrorKind.MODERATION_COPYRIGHT: "MODERATION_COPYRIGHT",
    ErrorKind.QUOTA_EXHAUSTED: "QUOTA_EXHAUSTED",
    ErrorKind.RATE_LIMITED: "RATE_LIMITED",
    ErrorKind.TIMED_OUT: "TIMED_OUT",
    ErrorKind.CANCELLED: "CANCELLED",
    ErrorKind.UNKNOWN: "UNKNOWN",
}


# Human-readable message per kind; {provider} is filled in when known
MESSAGE_TEMPLATES = {
    ErrorKind.AUTH_FAILED: "Authentication with {provider} failed. Check the API key.",
    ErrorKind.BAD_REQUEST: "{provider} rejected the request as invalid.",
    ErrorKind.UNREACHABLE: "{provider} could not be reached or returned an incomplete response.",
    ErrorKind.MODERATION_PERSON: "The request was blocked because it depicts a real person.",
    ErrorKind.MODERATION_POLICY: "The request was blocked by the provider's content policy.",
    ErrorKind.MODERATION_COPYRIGHT: "The request was blocked for copyright or trademark reasons.",
    ErrorKind.QUOTA_EXHAUSTED: "The {provider} account has run out of quota or balance.",
    ErrorKind.RATE_LIMITED: "{provider} is rate limiting requests. Try again shortly.",
    ErrorKind.TIMED_OUT: "The job did not finish within its time budget.",
    ErrorKind.CANCELLED: "The job was cancelled.",
    ErrorKind.UNKNOWN: "{provider} reported an unrecognized failure.",
}


@dataclass(frozen=True)
class ClassifiedError:
    """A failure annotated with its taxonomy kind."""
    kind: ErrorKind
    message: str
    raw: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None

    @property
    def code(self) -> str:
        return self.kind.code

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        raw: str = "",
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> "ClassifiedError":
        """Build an error whose message comes from the kind's template."""
        message = MESSAGE_TEMPLATES[kind].format(provider=provider or "The provider")
        return cls(kind=kind, message=message, raw=raw, provider=provider, model=model)

    def __str__(self) -> str:
        if self.raw and self.raw != self.message:
            return f"[{self.code}] {self.message} ({self.raw})"
        return f"[{self.code}] {self.message}"


class GenerationError(Exception):
    """Raised when a provider call fails."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        model: Optional[str] = None,
    ):
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.model = model
        super().__init__(message)

    @property
    def error_code(self) -> str:
        return self.kind.code
