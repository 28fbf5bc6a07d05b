"""
Azure DevOps Adapter - Implements TrackerProviderPort for Azure Boards.
"""

from .client import AzureDevOpsApiClient
from .provider import COMMON_FIELDS, FIELD_MAP, AzureDevOpsProvider


__all__ = ["COMMON_FIELDS", "FIELD_MAP", "AzureDevOpsApiClient", "AzureDevOpsProvider"]
