"""
Data model for media generation jobs.

Boundary inputs (provider config, requests) are pydantic models so callers get
validation up front. Internal job bookkeeping uses plain dataclasses.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

import httpx
from pydantic import BaseModel, Field, SecretStr, field_validator

from .errors import ClassifiedError


class MediaKind(str, Enum):
    """Kind of asset being generated."""
    IMAGE = "image"
    VIDEO = "video"


class JobState(str, Enum):
    """Lifecycle state of a generation job."""
    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    JobState.SUCCEEDED,
    JobState.FAILED,
    JobState.TIMED_OUT,
    JobState.CANCELLED,
})


_DATA_IMAGE_RE = re.compile(r"^data:image/([a-z]+);base64,", re.IGNORECASE)

REFERENCE_IMAGE_FORMATS = frozenset({"jpeg", "jpg", "png", "webp", "gif"})
MAX_REFERENCE_BYTES = 5 * 1024 * 1024


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Boundary models
# =============================================================================


class ResolvedProviderConfig(BaseModel):
    """Provider settings resolved by the caller for a single submission."""

    provider: str
    base_url: Optional[str] = None
    api_key: SecretStr
    preferred_model: Optional[str] = None

    # Replaces the adapter's default fallback list when given
    fallback_models: Optional[list[str]] = None
    request_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value:
            return value.rstrip("/")
        return value


class ReferenceAsset(BaseModel):
    """
    Reference image used to condition generation (image-to-image / first frame).

    Any string is accepted here. A reference that ``problem()`` rejects is
    dropped before submission and the job runs text-only.
    """

    uri: str
    description: Optional[str] = None

    @field_validator("uri")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @property
    def is_inline(self) -> bool:
        return self.uri.startswith("data:")

    def problem(self) -> Optional[str]:
        """Why this reference cannot be sent to a provider, or None if it can."""
        uri = self.uri
        if not uri:
            return "reference is empty"

        if uri.startswith("data:"):
            match = _DATA_IMAGE_RE.match(uri)
            if not match:
                return "data URI is not a base64-encoded image"
            image_format = match.group(1).lower()
            if image_format not in REFERENCE_IMAGE_FORMATS:
                return f"unsupported image format: {image_format}"
            size = math.ceil(len(uri[match.end():]) * 3 / 4)
            if size > MAX_REFERENCE_BYTES:
                return f"image is {size / (1024 * 1024):.1f}MB, limit is {MAX_REFERENCE_BYTES // (1024 * 1024)}MB"
            return None

        if not uri.startswith(("http://", "https://")):
            return "reference must be a data:image URI or an http(s) URL"
        try:
            url = httpx.URL(uri)
        except httpx.InvalidURL as e:
            return f"invalid URL: {e}"
        if not url.host:
            return "invalid URL: missing host"
        return None


class GenerationOptions(BaseModel):
    """Kind-specific knobs. Adapters ignore what their provider cannot express."""

    aspect_ratio: str = "16:9"
    duration_seconds: Optional[int] = Field(default=None, gt=0)
    quality: Optional[str] = None
    hd: bool = False
    size: Optional[str] = None
    negative_prompt: Optional[str] = None
    fps: Optional[int] = Field(default=None, gt=0)
    with_audio: Optional[bool] = None

    # Passed through to the provider body verbatim
    extra: dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """A single logical generation request."""

    kind: MediaKind
    prompt: str = Field(min_length=1)
    reference_asset: Optional[ReferenceAsset] = None
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class QuotaInfo(BaseModel):
    """Account balance reported by a provider."""
    total: float
    used: float
    remaining: float


# =============================================================================
# Adapter-facing types
# =============================================================================


@dataclass
class ProviderCapabilities:
    """Static description of what an adapter can do."""
    kinds: frozenset[MediaKind]
    supports_image_to_image: bool = False
    supports_image_to_video: bool = False
    fallback_models: dict[MediaKind, list[str]] = field(default_factory=dict)
    default_timeout: float = 60.0
    supports_quota: bool = False

    def supports(self, kind: MediaKind) -> bool:
        return kind in self.kinds

    def supports_reference(self, kind: MediaKind) -> bool:
        if kind == MediaKind.IMAGE:
            return self.supports_image_to_image
        return self.supports_image_to_video

    def models_for(self, kind: MediaKind) -> list[str]:
        return list(self.fallback_models.get(kind, []))


@dataclass
class SubmitPayload:
    """What an adapter receives for one submission attempt."""
    kind: MediaKind
    model: str
    prompt: str
    options: GenerationOptions
    reference_uri: Optional[str] = None


@dataclass(frozen=True)
class TaskHandle:
    """Provider-side identity of a submitted task."""
    task_id: str
    kind: MediaKind
    model: str


@dataclass
class PollStatus:
    """Provider status mapped into the orchestrator's vocabulary."""
    state: JobState
    result_ref: Optional[str] = None
    raw_failure_text: Optional[str] = None
    progress_hint: Optional[int] = None


@dataclass
class Submission:
    """A successful submit: the task handle plus the provider's first status."""
    handle: TaskHandle
    status: PollStatus


@dataclass
class FallbackAttemptRecord:
    """One (adapter, model) try inside a fallback chain."""
    provider: str
    model: str
    used_reference: bool
    succeeded: bool
    error: Optional[ClassifiedError] = None


# =============================================================================
# Job bookkeeping
# =============================================================================


@dataclass
class GenerationJob:
    """Mutable state of one job. Owned by the orchestrator."""
    job_id: str
    kind: MediaKind
    provider: str
    state: JobState = JobState.SUBMITTED

    task_id: Optional[str] = None
    model: Optional[str] = None
    result_ref: Optional[str] = None
    materialized_asset: Optional[Union[bytes, str]] = None
    failure: Optional[ClassifiedError] = None

    attempt: int = 0
    next_delay: float = 0.0

    submitted_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    attempts: list[FallbackAttemptRecord] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Terminal outcome handed back to the caller."""
    job_id: str
    state: JobState
    provider: str
    kind: MediaKind
    model: Optional[str] = None
    task_id: Optional[str] = None

    result_ref: Optional[str] = None
    asset: Optional[Union[bytes, str]] = None
    error: Optional[ClassifiedError] = None

    attempts: list[FallbackAttemptRecord] = field(default_factory=list)
    poll_count: int = 0

    submitted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED

    @property
    def materialized(self) -> bool:
        """True when the asset is durable bytes rather than the raw reference."""
        return isinstance(self.asset, bytes) or (
            isinstance(self.asset, str) and self.asset.startswith("data:")
        )

    @property
    def processing_time_seconds(self) -> Optional[float]:
        if self.submitted_at and self.finished_at:
            return (self.finished_at - self.submitted_at).total_seconds()
        return None
