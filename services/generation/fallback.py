"""
FallbackChain - try an ordered list of (adapter, model) candidates until one
accepts the submission.

Any failure moves on to the next candidate except AuthFailed, which aborts the
chain: a bad key will not get better on the next model.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .adapters.base import ProviderAdapter
from .classifier import ErrorClassifier
from .errors import ClassifiedError, ErrorKind, GenerationError
from .models import (
    FallbackAttemptRecord,
    GenerationRequest,
    Submission,
    SubmitPayload,
)

logger = logging.getLogger(__name__)


class FallbackExhausted(GenerationError):
    """Every candidate failed (or the chain was cut short by AuthFailed)."""

    def __init__(self, attempts: list[FallbackAttemptRecord], error: ClassifiedError):
        self.attempts = attempts
        self.error = error
        super().__init__(
            f"{len(attempts)} attempt(s) failed, last: {error}",
            kind=error.kind,
            provider=error.provider,
            model=error.model,
        )


@dataclass
class Candidate:
    """One thing to try: a model on an adapter, with or without the reference."""
    adapter: ProviderAdapter
    model: str
    use_reference: bool = False

    @property
    def provider(self) -> str:
        return self.adapter.name

    def __str__(self) -> str:
        mode = "ref" if self.use_reference else "text"
        return f"{self.provider}/{self.model} ({mode})"


@dataclass
class FallbackOutcome:
    submission: Submission
    winner: Candidate
    attempts: list[FallbackAttemptRecord]


def build_candidates(adapters: Sequence[ProviderAdapter], request: GenerationRequest) -> list[Candidate]:
    """
    Expand adapters into an ordered candidate list for ``request``.

    For each adapter, in order: when a usable reference asset is given and the
    adapter can condition on it, one reference-conditioned attempt with its
    first model; then a text-only attempt for every model. Adapters that do
    not handle ``request.kind`` are skipped. A reference that fails validation
    is dropped with a warning and only text-only attempts are built.
    """
    reference = request.reference_asset
    if reference is not None:
        problem = reference.problem()
        if problem:
            logger.warning(f"Reference image dropped, continuing text-only: {problem}")
            reference = None

    candidates = []
    for adapter in adapters:
        if not adapter.capabilities.supports(request.kind):
            logger.debug(f"Skipping {adapter.name}: no {request.kind.value} support")
            continue

        models = adapter.candidate_models(request.kind)
        if not models:
            continue

        if reference and adapter.capabilities.supports_reference(request.kind):
            candidates.append(Candidate(adapter, models[0], use_reference=True))
        candidates.extend(Candidate(adapter, model) for model in models)
    return candidates


def build_payload(candidate: Candidate, request: GenerationRequest) -> SubmitPayload:
    """Payload for one attempt. Text-only attempts fold the reference description into the prompt."""
    prompt = request.prompt
    reference_uri = None
    reference = request.reference_asset

    if reference is not None:
        if candidate.use_reference:
            reference_uri = reference.uri
        elif reference.description:
            prompt = f"{prompt}\n\nReference image: {reference.description}"

    return SubmitPayload(
        kind=request.kind,
        model=candidate.model,
        prompt=prompt,
        options=request.options,
        reference_uri=reference_uri,
    )


class FallbackChain:
    """
    Runs candidates in order and returns the first successful submission.

    Usage:
        chain = FallbackChain()
        outcome = await chain.run(build_candidates([adapter], request), request)
        outcome.winner.model   # model that accepted the job
        outcome.attempts       # every try, in order
    """

    def __init__(self, classifier: Optional[ErrorClassifier] = None):
        self.classifier = classifier or ErrorClassifier()

    async def run(self, candidates: Sequence[Candidate], request: GenerationRequest) -> FallbackOutcome:
        """
        Raises:
            ValueError: if ``candidates`` is empty
            FallbackExhausted: when no candidate succeeded
        """
        if not candidates:
            raise ValueError("FallbackChain needs at least one candidate")

        attempts: list[FallbackAttemptRecord] = []
        last_error: Optional[ClassifiedError] = None

        for index, candidate in enumerate(candidates, start=1):
            payload = build_payload(candidate, request)
            logger.info(f"Submitting to {candidate} [{index}/{len(candidates)}]")

            try:
                submission = await candidate.adapter.submit(payload)
            except asyncio.CancelledError:
                raise
            except GenerationError as e:
                last_error = self.classifier.from_exception(e, provider=candidate.provider, model=candidate.model)
            except Exception as e:
                logger.exception(f"Unexpected error from {candidate}")
                last_error = ClassifiedError.of(
                    ErrorKind.UNKNOWN,
                    raw=f"{type(e).__name__}: {e}",
                    provider=candidate.provider,
                    model=candidate.model,
                )
            else:
                attempts.append(FallbackAttemptRecord(
                    provider=candidate.provider,
                    model=candidate.model,
                    used_reference=candidate.use_reference,
                    succeeded=True,
                ))
                if index > 1:
                    logger.info(f"Fallback succeeded on {candidate} after {index - 1} failure(s)")
                return FallbackOutcome(submission=submission, winner=candidate, attempts=attempts)

            attempts.append(FallbackAttemptRecord(
                provider=candidate.provider,
                model=candidate.model,
                used_reference=candidate.use_reference,
                succeeded=False,
                error=last_error,
            ))

            if last_error.kind == ErrorKind.AUTH_FAILED:
                logger.error(f"Authentication failed on {candidate.provider}, aborting fallback chain")
                raise FallbackExhausted(attempts, last_error)

            logger.warning(f"{candidate} failed: {last_error}")

        logger.error(f"All {len(attempts)} candidates failed")
        raise FallbackExhausted(attempts, last_error)
