"""Multiplicative poll backoff with a ceiling."""

from dataclasses import dataclass

from core.config import PollingConfig


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Poll interval policy: start at ``initial``, multiply by ``multiplier``
    after every non-terminal poll, never exceed ``maximum``.
    """
    initial: float = 3.0
    multiplier: float = 1.2
    maximum: float = 15.0

    def __post_init__(self):
        if self.initial <= 0:
            raise ValueError("initial interval must be positive")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.maximum < self.initial:
            raise ValueError("maximum interval must be >= initial interval")

    @classmethod
    def from_config(cls, config: PollingConfig) -> "BackoffPolicy":
        return cls(
            initial=config.initial_interval,
            multiplier=config.multiplier,
            maximum=config.max_interval,
        )

    def first(self) -> float:
        return self.initial

    def next(self, current: float) -> float:
        return min(current * self.multiplier, self.maximum)
