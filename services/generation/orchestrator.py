"""
JobOrchestrator - owns the lifecycle of media generation jobs.

Submitted -> Running -> Succeeded | Failed | TimedOut | Cancelled

Each accepted job gets its own asyncio task that polls the winning adapter
with multiplicative backoff until the provider reports a terminal status, the
wall-clock budget runs out, or the caller cancels. Jobs share nothing except
the handle registry, which is only touched from the event loop.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from core.config import Config

from .adapters import get_adapter
from .adapters.base import ProviderAdapter
from .backoff import BackoffPolicy
from .classifier import ErrorClassifier
from .errors import ClassifiedError, ErrorKind, GenerationError
from .fallback import FallbackChain, FallbackExhausted, build_candidates
from .materializer import AssetMaterializer
from .models import (
    GenerationJob,
    GenerationRequest,
    GenerationResult,
    JobState,
    PollStatus,
    QuotaInfo,
    ResolvedProviderConfig,
    TaskHandle,
    utcnow,
)

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[str, int, str], None]


@dataclass(frozen=True)
class JobHandle:
    """
    Caller-facing job identity.

    ``job_id`` is minted locally: provider task ids are only unique per
    provider, and a submission that fails outright has no task id at all.
    """
    job_id: str
    provider: str
    task_id: Optional[str] = None


@dataclass
class _JobEntry:
    job: GenerationJob
    deadline: float
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    adapter: Optional[ProviderAdapter] = None
    task_handle: Optional[TaskHandle] = None
    task: Optional[asyncio.Task] = None
    poll_count: int = 0


class JobOrchestrator:
    """
    Submits, tracks and delivers media generation jobs.

    Usage:
        orchestrator = JobOrchestrator(on_progress=print_progress)
        handle = await orchestrator.submit(provider_config, request)
        result = await orchestrator.wait(handle)
        if result.succeeded:
            save(result.asset)
        else:
            print(result.error.message)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        materializer: Optional[AssetMaterializer] = None,
        classifier: Optional[ErrorClassifier] = None,
        adapter_factory: Callable[..., ProviderAdapter] = get_adapter,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Args:
            config: Tuning settings (defaults to Config.from_env())
            materializer: Asset materializer override
            classifier: Error classifier override
            adapter_factory: Builds an adapter from a ResolvedProviderConfig
            on_progress: Callback for progress updates (job_id, percent, message)
        """
        self.config = config or Config.from_env()
        self.classifier = classifier or ErrorClassifier()
        self.materializer = materializer or AssetMaterializer(self.config.materializer)
        self.backoff = BackoffPolicy.from_config(self.config.polling)
        self.chain = FallbackChain(self.classifier)
        self.on_progress = on_progress

        self._adapter_factory = adapter_factory
        self._jobs: dict[str, _JobEntry] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def submit(
        self,
        config: ResolvedProviderConfig,
        request: GenerationRequest,
        fallback_configs: Sequence[ResolvedProviderConfig] = (),
    ) -> JobHandle:
        """
        Start a job. Returns once a provider accepted it or every candidate failed.

        A job whose submission fails is registered directly as Failed, so the
        returned handle is always valid for ``wait``. If the call itself is
        cancelled or raises, nothing is registered and every adapter is closed.
        """
        job = GenerationJob(job_id=str(uuid.uuid4()), kind=request.kind, provider=config.provider)
        entry = _JobEntry(job=job, deadline=time.monotonic() + self.config.polling.job_timeout)

        adapters: list[ProviderAdapter] = []
        failure: Optional[ClassifiedError] = None
        outcome = None
        try:
            for provider_config in (config, *fallback_configs):
                adapters.append(self._adapter_factory(
                    provider_config,
                    default_timeout=self.config.providers.request_timeout,
                ))

            candidates = build_candidates(adapters, request)
            if not candidates:
                failure = ClassifiedError.of(
                    ErrorKind.BAD_REQUEST,
                    raw=f"No configured provider supports {request.kind.value} generation",
                    provider=config.provider,
                )
            else:
                outcome = await self.chain.run(candidates, request)
        except FallbackExhausted as e:
            job.attempts = e.attempts
            failure = e.error
        except GenerationError as e:
            failure = self.classifier.from_exception(e, provider=config.provider)
        except BaseException:
            await asyncio.shield(self._close_adapters(adapters))
            raise

        if failure is not None:
            await self._close_adapters(adapters)
            self._jobs[job.job_id] = entry
            self._fail(entry, failure)
            return JobHandle(job_id=job.job_id, provider=config.provider)

        winner = outcome.winner.adapter
        await self._close_adapters([a for a in adapters if a is not winner])

        submission = outcome.submission
        job.attempts = outcome.attempts
        job.provider = winner.name
        job.model = outcome.winner.model
        job.task_id = submission.handle.task_id
        entry.adapter = winner
        entry.task_handle = submission.handle
        self._jobs[job.job_id] = entry

        logger.info(
            f"Job {job.job_id} submitted to {winner.name}/{job.model} (task {job.task_id})"
        )
        self._report_progress(job, 10, f"Submitted to {winner.name}")

        entry.task = asyncio.create_task(
            self._run(entry, submission.status),
            name=f"generation-job-{job.job_id}",
        )
        return JobHandle(job_id=job.job_id, provider=winner.name, task_id=job.task_id)

    async def wait(self, handle: JobHandle) -> GenerationResult:
        """
        Wait for the job to reach a terminal state and return its result.

        The job is released from the registry once delivered.

        Raises:
            KeyError: unknown or already-delivered handle
        """
        entry = self._jobs.get(handle.job_id)
        if entry is None:
            raise KeyError(f"Unknown job {handle.job_id}")

        if entry.task is not None:
            # Shield so a cancelled waiter does not tear down the poll loop
            await asyncio.shield(entry.task)

        result = self._build_result(entry)
        self._jobs.pop(handle.job_id, None)
        return result

    def cancel(self, handle: JobHandle) -> bool:
        """
        Request cancellation. Takes effect at the job's next scheduling point.

        Returns:
            False if the job is unknown or already terminal
        """
        entry = self._jobs.get(handle.job_id)
        if entry is None or entry.job.state.is_terminal:
            return False
        entry.cancel_event.set()
        logger.info(f"Cancellation requested for job {handle.job_id}")
        return True

    def status(self, handle: JobHandle) -> JobState:
        entry = self._jobs.get(handle.job_id)
        if entry is None:
            raise KeyError(f"Unknown job {handle.job_id}")
        return entry.job.state

    async def quota(self, config: ResolvedProviderConfig) -> Optional[QuotaInfo]:
        """
        Query the provider's quota. Returns None when the provider has none.

        Raises:
            GenerationError: classified failure
        """
        adapter = self._adapter_factory(config, default_timeout=self.config.providers.request_timeout)
        try:
            return await adapter.quota()
        except GenerationError as e:
            classified = self.classifier.from_exception(e, provider=config.provider)
            raise GenerationError(
                classified.message,
                kind=classified.kind,
                provider=config.provider,
                status_code=e.status_code,
            ) from e
        finally:
            await adapter.close()

    async def close(self):
        """Cancel live jobs and release HTTP resources."""
        entries = list(self._jobs.values())
        for entry in entries:
            if not entry.job.state.is_terminal:
                entry.cancel_event.set()

        tasks = [e.task for e in entries if e.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._jobs.clear()
        await self.materializer.close()

    @property
    def active_jobs(self) -> int:
        return sum(1 for e in self._jobs.values() if not e.job.state.is_terminal)

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    async def _run(self, entry: _JobEntry, initial: PollStatus):
        try:
            await self._drive(entry, initial)
        except Exception as e:
            logger.exception(f"Job {entry.job.job_id} crashed")
            if not entry.job.state.is_terminal:
                self._fail(entry, ClassifiedError.of(
                    ErrorKind.UNKNOWN,
                    raw=f"{type(e).__name__}: {e}",
                    provider=entry.job.provider,
                    model=entry.job.model,
                ))
        finally:
            if entry.adapter is not None:
                await entry.adapter.close()

    async def _drive(self, entry: _JobEntry, initial: PollStatus):
        job = entry.job
        self._transition(job, JobState.RUNNING)
        job.started_at = utcnow()

        status: Optional[PollStatus] = initial
        if not initial.state.is_terminal:
            status = await self._poll_until_terminal(entry)
            if status is None:
                return
        elif self._check_interrupted(entry):
            return

        if status.state == JobState.SUCCEEDED:
            await self._finish_success(entry, status)
        else:
            error = self.classifier.classify(
                status.raw_failure_text,
                provider=job.provider,
                model=job.model,
            )
            self._fail(entry, error)

    async def _poll_until_terminal(self, entry: _JobEntry) -> Optional[PollStatus]:
        """
        Poll until the provider reports a terminal status.

        Returns None when the job was ended here (cancelled, timed out, or
        failed on poll errors).
        """
        job = entry.job
        delay = self.backoff.first()
        job.next_delay = delay
        consecutive_errors = 0

        while True:
            if self._check_interrupted(entry):
                return None

            job.attempt += 1
            entry.poll_count += 1
            error: Optional[ClassifiedError] = None
            status: Optional[PollStatus] = None
            try:
                status = await entry.adapter.poll(entry.task_handle)
            except GenerationError as e:
                error = self.classifier.from_exception(e, provider=job.provider, model=job.model)
            except Exception as e:
                logger.exception(f"Unexpected poll error for job {job.job_id}")
                error = ClassifiedError.of(
                    ErrorKind.UNKNOWN, raw=f"{type(e).__name__}: {e}",
                    provider=job.provider, model=job.model,
                )

            # A response that arrives after cancel or deadline is discarded
            if self._check_interrupted(entry):
                return None

            if error is not None:
                consecutive_errors += 1
                if not error.kind.transient:
                    self._fail(entry, error)
                    return None
                if consecutive_errors >= self.config.polling.max_consecutive_poll_errors:
                    logger.error(
                        f"Job {job.job_id}: {consecutive_errors} consecutive poll failures, giving up"
                    )
                    self._fail(entry, error)
                    return None
                logger.warning(
                    f"Job {job.job_id} poll {job.attempt} failed ({error.code}), retrying in {delay:.1f}s"
                )
            else:
                consecutive_errors = 0
                if status.state.is_terminal:
                    return status
                percent = status.progress_hint
                if percent is None:
                    percent = min(90, 10 + job.attempt * 5)
                self._report_progress(job, min(percent, 99), f"Generating ({job.attempt} polls)")

            await self._sleep(entry, delay)
            delay = self.backoff.next(delay)
            job.next_delay = delay

    async def _sleep(self, entry: _JobEntry, delay: float):
        """Sleep until the next poll, waking early on cancel or deadline."""
        remaining = entry.deadline - time.monotonic()
        timeout = max(0.0, min(delay, remaining))
        try:
            await asyncio.wait_for(entry.cancel_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def _check_interrupted(self, entry: _JobEntry) -> bool:
        """Apply a pending cancel or an expired deadline. True if the job ended."""
        if entry.cancel_event.is_set():
            self._finish_interrupted(entry, JobState.CANCELLED, ErrorKind.CANCELLED)
            return True
        if time.monotonic() >= entry.deadline:
            self._finish_interrupted(entry, JobState.TIMED_OUT, ErrorKind.TIMED_OUT)
            return True
        return False

    async def _finish_success(self, entry: _JobEntry, status: PollStatus):
        job = entry.job
        if not status.result_ref:
            self._fail(entry, ClassifiedError.of(
                ErrorKind.UNKNOWN,
                raw="Provider reported success without a result reference",
                provider=job.provider, model=job.model,
            ))
            return

        self._report_progress(job, 95, "Downloading result")
        try:
            asset: Any = await self.materializer.materialize(status.result_ref)
        except Exception:
            logger.exception(f"Materializer raised for job {job.job_id}, keeping raw reference")
            asset = status.result_ref

        if entry.cancel_event.is_set():
            self._finish_interrupted(entry, JobState.CANCELLED, ErrorKind.CANCELLED)
            return

        self._transition(job, JobState.SUCCEEDED)
        job.result_ref = status.result_ref
        job.materialized_asset = asset
        job.finished_at = utcnow()
        self._report_progress(job, 100, "Complete")

    def _fail(self, entry: _JobEntry, error: ClassifiedError):
        job = entry.job
        self._transition(job, JobState.FAILED)
        job.failure = error
        job.finished_at = utcnow()
        logger.error(f"Job {job.job_id} failed: {error}")
        self._report_progress(job, 100, f"Failed: {error.message}")

    def _finish_interrupted(self, entry: _JobEntry, state: JobState, kind: ErrorKind):
        job = entry.job
        self._transition(job, state)
        job.failure = ClassifiedError.of(kind, provider=job.provider, model=job.model)
        job.finished_at = utcnow()
        self._report_progress(job, 100, job.failure.message)

    def _transition(self, job: GenerationJob, new_state: JobState):
        """Move a job to ``new_state``. Terminal states are final."""
        if job.state.is_terminal:
            raise RuntimeError(f"Job {job.job_id} is already {job.state.value}, cannot move to {new_state.value}")
        logger.info(f"Job {job.job_id}: {job.state.value} -> {new_state.value}")
        job.state = new_state

    # =========================================================================
    # Helpers
    # =========================================================================

    def _report_progress(self, job: GenerationJob, percent: int, message: str):
        if not self.on_progress:
            return
        try:
            self.on_progress(job.job_id, percent, message)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    async def _close_adapters(self, adapters: Sequence[ProviderAdapter]):
        for adapter in adapters:
            await adapter.close()

    def _build_result(self, entry: _JobEntry) -> GenerationResult:
        job = entry.job
        return GenerationResult(
            job_id=job.job_id,
            state=job.state,
            provider=job.provider,
            kind=job.kind,
            model=job.model,
            task_id=job.task_id,
            result_ref=job.result_ref,
            asset=job.materialized_asset,
            error=job.failure,
            attempts=list(job.attempts),
            poll_count=entry.poll_count,
            submitted_at=job.submitted_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
        )
