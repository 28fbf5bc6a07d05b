"""
Service Factories - Build providers and sources from configuration.

Adapters are imported lazily so that selecting one tracker never pulls
in the other's code.

Usage:
    provider = create_provider(config, dry_run=False)
    source = create_source(Path(".claude/epics/auth"))
"""

import logging
from pathlib import Path

from .exceptions import ConfigError, MissingConfigError
from .ports.config_provider import AppConfig, TrackerType
from .ports.hierarchy_source import HierarchySourcePort
from .ports.tracker_provider import TrackerProviderPort


logger = logging.getLogger("Services")


# =============================================================================
# Provider Selector
# =============================================================================


def create_provider(config: AppConfig, dry_run: bool = False) -> TrackerProviderPort:
    """
    Select and construct the tracker provider named by the configuration.

    Args:
        config: Application configuration
        dry_run: Suppress mutating HTTP calls in the client

    Returns:
        Provider implementing the full capability set

    Raises:
        ConfigError: If the tracker type is unknown
        MissingConfigError: If the selected tracker lacks credentials
    """
    tracker_type = config.tracker_type

    if tracker_type is TrackerType.GITHUB:
        if config.github is None or not config.github.is_valid():
            raise MissingConfigError(
                "GitHub requires GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO",
                key="github",
            )
        from epicsync.adapters.github import GitHubProvider

        logger.debug(f"Using GitHub provider for {config.github.owner}/{config.github.repo}")
        return GitHubProvider(config=config.github, dry_run=dry_run)

    if tracker_type is TrackerType.AZURE_DEVOPS:
        if config.azure_devops is None or not config.azure_devops.is_valid():
            raise MissingConfigError(
                "Azure DevOps requires AZURE_DEVOPS_ORG, AZURE_DEVOPS_PROJECT and AZURE_DEVOPS_PAT",
                key="azure_devops",
            )
        from epicsync.adapters.azure_devops import AzureDevOpsProvider

        logger.debug(
            f"Using Azure DevOps provider for "
            f"{config.azure_devops.organization}/{config.azure_devops.project}"
        )
        return AzureDevOpsProvider(config=config.azure_devops, dry_run=dry_run)

    raise ConfigError(f"Unknown tracker type: {tracker_type}")


# =============================================================================
# Hierarchy Sources
# =============================================================================


def create_source(root: Path) -> HierarchySourcePort:
    """
    Pick the hierarchy loader for an epic root.

    Raises:
        ConfigError: If no loader understands the path
    """
    from epicsync.adapters.parsers import detect_source

    source = detect_source(root)
    if source is None:
        raise ConfigError(f"Don't know how to load an epic from {root}")
    return source
