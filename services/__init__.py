"""
Media generation services.

- generation: provider adapters, fallback chain, job orchestrator and asset
  materializer
"""

from .generation import JobHandle, JobOrchestrator

__all__ = ["JobHandle", "JobOrchestrator"]
