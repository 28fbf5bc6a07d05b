"""
Application Layer - Use cases and orchestration.

This layer contains:
- sync/: Mapping store, hierarchy walker, batch scheduler, conflict
  resolver and the sync orchestrator
"""

from .sync import SyncOrchestrator, SyncReport


__all__ = [
    "SyncOrchestrator",
    "SyncReport",
]
