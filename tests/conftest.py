"""
Shared fixtures: a scripted in-memory adapter and millisecond-scale settings.
"""

import asyncio
import os
import sys
from typing import Callable, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, MaterializerConfig, PollingConfig, ProviderDefaults
from services.generation import (
    AssetMaterializer,
    JobState,
    MediaKind,
    PollStatus,
    ProviderAdapter,
    ProviderCapabilities,
    ResolvedProviderConfig,
    Submission,
    SubmitPayload,
    TaskHandle,
)

Outcome = Union[Submission, PollStatus, Exception]


def make_provider_config(provider: str = "fake", **kwargs) -> ResolvedProviderConfig:
    return ResolvedProviderConfig(provider=provider, api_key="sk-test", **kwargs)


class ScriptedAdapter(ProviderAdapter):
    """
    Adapter whose submit and poll answers are scripted per test.

    submit_outcomes maps model -> Submission or exception. Models without an
    entry get a Running submission. poll_script is consumed in order and the
    last entry repeats; exceptions in either script are raised. on_poll runs
    before each poll answer is returned.
    """

    def __init__(
        self,
        config: Optional[ResolvedProviderConfig] = None,
        name: str = "fake",
        submit_outcomes: Optional[dict[str, Outcome]] = None,
        poll_script: Optional[list[Outcome]] = None,
        poll_delay: float = 0.0,
        submit_delay: float = 0.0,
        on_poll: Optional[Callable[[], None]] = None,
        capabilities: Optional[ProviderCapabilities] = None,
        **kwargs,
    ):
        self.capabilities = capabilities or ProviderCapabilities(
            kinds=frozenset({MediaKind.IMAGE, MediaKind.VIDEO}),
            supports_image_to_image=True,
            supports_image_to_video=True,
            fallback_models={MediaKind.IMAGE: ["m1", "m2"], MediaKind.VIDEO: ["v1"]},
            default_timeout=5.0,
        )
        super().__init__(config or make_provider_config(name))
        self.name = name
        self.submit_outcomes = submit_outcomes or {}
        self.poll_script = list(poll_script or [PollStatus(state=JobState.RUNNING)])
        self.poll_delay = poll_delay
        self.submit_delay = submit_delay
        self.on_poll = on_poll

        self.submit_calls: list[SubmitPayload] = []
        self.poll_calls = 0
        self.closed = False

    async def submit(self, payload: SubmitPayload) -> Submission:
        self.submit_calls.append(payload)
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        outcome = self.submit_outcomes.get(payload.model)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            handle = TaskHandle(task_id=f"task-{payload.model}", kind=payload.kind, model=payload.model)
            outcome = Submission(handle=handle, status=PollStatus(state=JobState.RUNNING))
        return outcome

    async def poll(self, handle: TaskHandle) -> PollStatus:
        index = min(self.poll_calls, len(self.poll_script) - 1)
        self.poll_calls += 1
        if self.on_poll:
            self.on_poll()
        if self.poll_delay:
            await asyncio.sleep(self.poll_delay)
        outcome = self.poll_script[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True

    @property
    def submitted_models(self) -> list[str]:
        return [p.model for p in self.submit_calls]


def factory_for(*adapters: ScriptedAdapter):
    """adapter_factory returning the scripted adapter whose name matches the config."""
    by_name = {a.name.lower(): a for a in adapters}

    def factory(config: ResolvedProviderConfig, **kwargs) -> ProviderAdapter:
        return by_name[config.provider]

    return factory


def stub_materializer(result=b"ASSET") -> MagicMock:
    materializer = MagicMock(spec=AssetMaterializer)
    materializer.materialize = AsyncMock(return_value=result)
    materializer.close = AsyncMock()
    return materializer


@pytest.fixture
def fast_config() -> Config:
    return Config(
        polling=PollingConfig(
            initial_interval=0.01,
            multiplier=1.2,
            max_interval=0.05,
            job_timeout=5.0,
            max_consecutive_poll_errors=3,
        ),
        materializer=MaterializerConfig(
            proxy_url=None,
            proxy_timeout=1.0,
            direct_timeout=1.0,
            direct_retries=2,
            retry_delay=0.0,
        ),
        providers=ProviderDefaults(request_timeout=5.0),
    )
