"""
GitHub Adapter - Implements TrackerProviderPort for GitHub Issues.
"""

from .client import GitHubApiClient
from .provider import FIELD_MAP, GitHubProvider


__all__ = ["FIELD_MAP", "GitHubApiClient", "GitHubProvider"]
