"""
epicsync - Project a local Epic → Story → Task hierarchy onto an item tracker.

Supports GitHub Issues and Azure DevOps Boards, with an idempotent
identity mapping, bounded concurrency and conflict resolution.
"""

__version__ = "1.0.0"
