"""
Media generation job orchestration.

Normalizes heterogeneous image/video providers behind one interface, drives
asynchronous jobs to completion, falls back across models and endpoints, and
materializes results into bytes.

    orchestrator = JobOrchestrator()
    handle = await orchestrator.submit(provider_config, request)
    result = await orchestrator.wait(handle)
"""

from .adapters import (
    ProviderAdapter,
    get_adapter,
    register_adapter,
)
from .backoff import BackoffPolicy
from .classifier import ErrorClassifier
from .errors import ClassifiedError, ErrorKind, GenerationError
from .fallback import Candidate, FallbackChain, FallbackExhausted, build_candidates
from .materializer import AssetMaterializer, decode_data_uri
from .models import (
    FallbackAttemptRecord,
    GenerationJob,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    JobState,
    MediaKind,
    PollStatus,
    ProviderCapabilities,
    QuotaInfo,
    ReferenceAsset,
    ResolvedProviderConfig,
    Submission,
    SubmitPayload,
    TaskHandle,
)
from .orchestrator import JobHandle, JobOrchestrator

__all__ = [
    "AssetMaterializer",
    "BackoffPolicy",
    "Candidate",
    "ClassifiedError",
    "ErrorClassifier",
    "ErrorKind",
    "FallbackAttemptRecord",
    "FallbackChain",
    "FallbackExhausted",
    "GenerationError",
    "GenerationJob",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "JobHandle",
    "JobOrchestrator",
    "JobState",
    "MediaKind",
    "PollStatus",
    "ProviderAdapter",
    "ProviderCapabilities",
    "QuotaInfo",
    "ReferenceAsset",
    "ResolvedProviderConfig",
    "Submission",
    "SubmitPayload",
    "TaskHandle",
    "build_candidates",
    "decode_data_uri",
    "get_adapter",
    "register_adapter",
]
