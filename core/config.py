"""
Configuration management for the media generation orchestrator.

Centralizes tuning knobs for:
- Poll loop backoff and the per-job wall-clock budget
- Asset materialization (intermediary proxy, direct fetch retries)
- Provider request timeouts

Provider credentials are NOT part of this module. They arrive per call as a
ResolvedProviderConfig so the orchestrator never reads them from globals.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass
class PollingConfig:
    """Poll loop settings shared by every job an orchestrator runs."""

    initial_interval: float = field(default_factory=lambda: _env_float("MEDIAGEN_POLL_INITIAL_SECONDS", 3.0))
    multiplier: float = 1.2
    max_interval: float = field(default_factory=lambda: _env_float("MEDIAGEN_POLL_MAX_SECONDS", 15.0))

    # Wall-clock budget measured from submission (60 minutes)
    job_timeout: float = field(default_factory=lambda: _env_float("MEDIAGEN_JOB_TIMEOUT_SECONDS", 3600.0))

    # Transient poll failures tolerated in a row before the job fails
    max_consecutive_poll_errors: int = field(
        default_factory=lambda: _env_int("MEDIAGEN_MAX_POLL_ERRORS", 10)
    )


@dataclass
class MaterializerConfig:
    """Settings for turning a remote result reference into bytes."""

    # Server-side fetch-and-encode endpoint; skipped when empty
    proxy_url: Optional[str] = field(default_factory=lambda: os.getenv("MEDIAGEN_ASSET_PROXY_URL") or None)
    proxy_timeout: float = 25.0

    direct_timeout: float = 15.0
    direct_retries: int = 2
    retry_delay: float = 1.0


@dataclass
class ProviderDefaults:
    """Fallback values for adapters when the resolved config omits them."""
    request_timeout: float = field(default_factory=lambda: _env_float("MEDIAGEN_REQUEST_TIMEOUT_SECONDS", 60.0))


@dataclass
class Config:
    """Main configuration class."""

    polling: PollingConfig = field(default_factory=PollingConfig)
    materializer: MaterializerConfig = field(default_factory=MaterializerConfig)
    providers: ProviderDefaults = field(default_factory=ProviderDefaults)

    log_level: str = field(default_factory=lambda: os.getenv("MEDIAGEN_LOG_LEVEL", "INFO"))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if self.polling.initial_interval <= 0:
            issues.append("Poll initial interval must be positive")

        if self.polling.multiplier < 1.0:
            issues.append("Poll multiplier below 1.0 would shrink the interval")

        if self.polling.max_interval < self.polling.initial_interval:
            issues.append("Poll max interval is smaller than the initial interval")

        if self.polling.job_timeout <= 0:
            issues.append("Job timeout must be positive")

        if self.materializer.proxy_timeout <= 0 or self.materializer.direct_timeout <= 0:
            issues.append("Materializer timeouts must be positive")

        if self.materializer.direct_retries < 0:
            issues.append("Materializer retry count cannot be negative")

        if self.providers.request_timeout <= 0:
            issues.append("Provider request timeout must be positive")

        return issues
