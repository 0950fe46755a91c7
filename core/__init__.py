"""Core settings for the media generation orchestrator."""

from .config import Config, MaterializerConfig, PollingConfig, ProviderDefaults

__all__ = ["Config", "MaterializerConfig", "PollingConfig", "ProviderDefaults"]
