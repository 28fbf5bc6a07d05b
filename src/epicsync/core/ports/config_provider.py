"""
Configuration Provider Port - Abstract interface for configuration.

Implementations:
- EnvironmentConfigProvider: Load from env vars, .env and .epicsync.yaml
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from epicsync.core.domain.enums import ConflictPolicy


class TrackerType(Enum):
    """Supported item tracker types."""

    GITHUB = "github"
    AZURE_DEVOPS = "azure_devops"

    @classmethod
    def from_string(cls, value: str) -> "TrackerType":
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"azure": "azure_devops", "ado": "azure_devops", "azuredevops": "azure_devops"}
        normalized = aliases.get(normalized, normalized)
        for tracker in cls:
            if tracker.value == normalized:
                return tracker
        raise ValueError(f"Unknown tracker: {value!r}")


@dataclass(frozen=True)
class GitHubConfig:
    """Configuration for GitHub Issues."""

    token: str
    owner: str
    repo: str
    base_url: str = "https://api.github.com"
    requests_per_second: float | None = 10.0

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return bool(self.token and self.owner and self.repo)


@dataclass(frozen=True)
class AzureDevOpsConfig:
    """Configuration for Azure DevOps Boards."""

    organization: str
    project: str
    pat: str  # Personal Access Token
    base_url: str = "https://dev.azure.com"
    requests_per_second: float | None = 10.0

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return bool(self.organization and self.project and self.pat)


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for sync runs."""

    dry_run: bool = False
    verbose: bool = False

    # Scheduling
    max_concurrency: int = 4
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0

    # Conflicts
    conflict_policy: ConflictPolicy = ConflictPolicy.MANUAL
    check_remote: bool = False  # Fetch unchanged nodes to detect remote-only edits

    # Paths (None = derive from the epic root)
    mapping_file: str | None = None
    shadow_dir: str | None = None

    # Cancellation
    timeout: float | None = None


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration, built once at startup."""

    tracker_type: TrackerType
    sync: SyncConfig = field(default_factory=SyncConfig)
    github: GitHubConfig | None = None
    azure_devops: AzureDevOpsConfig | None = None
    config_file: Path | None = None

    def validate(self) -> list[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.tracker_type is TrackerType.GITHUB:
            gh = self.github
            if gh is None or not gh.token:
                errors.append("Missing GitHub token (GITHUB_TOKEN)")
            if gh is None or not gh.owner:
                errors.append("Missing GitHub owner (GITHUB_OWNER)")
            if gh is None or not gh.repo:
                errors.append("Missing GitHub repository (GITHUB_REPO)")
        elif self.tracker_type is TrackerType.AZURE_DEVOPS:
            ado = self.azure_devops
            if ado is None or not ado.organization:
                errors.append("Missing Azure DevOps organization (AZURE_DEVOPS_ORG)")
            if ado is None or not ado.project:
                errors.append("Missing Azure DevOps project (AZURE_DEVOPS_PROJECT)")
            if ado is None or not ado.pat:
                errors.append("Missing Azure DevOps token (AZURE_DEVOPS_PAT)")

        if self.sync.max_concurrency < 1:
            errors.append("Concurrency must be at least 1")
        if self.sync.max_retries < 0:
            errors.append("Max retries cannot be negative")

        return errors


class ConfigProviderPort(ABC):
    """
    Abstract interface for configuration providers.

    Configuration can come from various sources:
    - Environment variables
    - .env files
    - YAML config files
    - Command line arguments
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the provider name."""
        ...

    @abstractmethod
    def load(self) -> AppConfig:
        """
        Load configuration from source.

        Returns:
            Complete application configuration
        """
        ...

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a specific configuration value.

        Args:
            key: Configuration key (dot notation supported)
            default: Default value if not found
        """
        ...

    @abstractmethod
    def validate(self) -> list[str]:
        """
        Validate loaded configuration.

        Returns:
            List of validation errors
        """
        ...
