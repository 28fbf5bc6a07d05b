"""
Ports - Abstract interfaces for external dependencies.

Ports define the contracts that adapters must implement.
This enables dependency inversion and easy testing.
"""

from .config_provider import (
    AppConfig,
    AzureDevOpsConfig,
    ConfigProviderPort,
    GitHubConfig,
    SyncConfig,
    TrackerType,
)
from .hierarchy_source import HierarchySourcePort
from .tracker_provider import TrackerProviderPort


__all__ = [
    "AppConfig",
    "AzureDevOpsConfig",
    "ConfigProviderPort",
    "GitHubConfig",
    "HierarchySourcePort",
    "SyncConfig",
    "TrackerProviderPort",
    "TrackerType",
]
