"""
Azure DevOps API Client - Low-level HTTP client for the Work Item Tracking API.

This handles the raw HTTP communication with Azure DevOps.
The AzureDevOpsProvider uses this to implement the TrackerProviderPort.

Work items are created and modified with JSON Patch documents. Like the
GitHub client, this client classifies failures and never retries.

Azure DevOps REST API documentation:
https://learn.microsoft.com/en-us/rest/api/azure/devops/wit/work-items
"""

import logging
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from epicsync.adapters.rate_limiter import RateLimiter
from epicsync.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    PermanentError,
    RateLimitError,
    ResourceNotFoundError,
    TrackerError,
    TransientError,
    ValidationError,
)
from epicsync.core.retry import get_retry_after, is_retryable_status_code


JsonPatch = list[dict[str, Any]]


class AzureDevOpsApiClient:
    """
    Low-level Azure DevOps REST API client.

    Features:
    - Personal Access Token (basic auth) authentication
    - Token-bucket rate limiting that honours Retry-After
    - Connection pooling for performance
    - Typed errors (transient / permanent / authentication)
    """

    API_VERSION = "7.0"
    BASE_URL = "https://dev.azure.com"

    DEFAULT_REQUESTS_PER_SECOND = 10.0
    DEFAULT_BURST_SIZE = 20

    DEFAULT_POOL_CONNECTIONS = 10
    DEFAULT_POOL_MAXSIZE = 10
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        base_url: str = BASE_URL,
        dry_run: bool = True,
        requests_per_second: float | None = DEFAULT_REQUESTS_PER_SECOND,
        timeout: float = DEFAULT_TIMEOUT,
        api_version: str = API_VERSION,
    ):
        """
        Initialize the Azure DevOps client.

        Args:
            organization: Organization name (dev.azure.com/<organization>)
            project: Project name
            pat: Personal Access Token with Work Items read/write scope
            base_url: Service URL (Azure DevOps Server uses its own host)
            dry_run: If True, don't make write operations
            requests_per_second: Rate limit; None disables limiting
            timeout: Request timeout in seconds
            api_version: REST API version query parameter
        """
        self.organization = organization
        self.project = project
        self.base_url = base_url.rstrip("/")
        self.dry_run = dry_run
        self.timeout = timeout
        self.api_version = api_version
        self.logger = logging.getLogger("AzureDevOpsApiClient")

        self._rate_limiter: RateLimiter | None = None
        if requests_per_second is not None and requests_per_second > 0:
            self._rate_limiter = RateLimiter(
                requests_per_second=requests_per_second,
                burst_size=self.DEFAULT_BURST_SIZE,
                name="AzureDevOpsRateLimiter",
            )

        self._session = requests.Session()
        self._session.auth = ("", pat)
        self._session.headers.update({"Accept": "application/json"})

        adapter = HTTPAdapter(
            pool_connections=self.DEFAULT_POOL_CONNECTIONS,
            pool_maxsize=self.DEFAULT_POOL_MAXSIZE,
        )
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._connection_data: dict[str, Any] | None = None

    # -------------------------------------------------------------------------
    # URL Building
    # -------------------------------------------------------------------------

    def _build_url(self, endpoint: str, area: str = "wit") -> str:
        """
        Build a full API URL.

        Args:
            endpoint: Endpoint below the area, or an absolute URL
            area: "wit" for project-scoped work item APIs, "core" for
                organization-scoped APIs
        """
        if endpoint.startswith("http"):
            return endpoint

        org = quote(self.organization, safe="")
        endpoint = endpoint.lstrip("/")
        if area == "core":
            return f"{self.base_url}/{org}/_apis/{endpoint}"

        project = quote(self.project, safe="")
        return f"{self.base_url}/{org}/{project}/_apis/{area}/{endpoint}"

    def work_item_url(self, work_item_id: int | str) -> str:
        """Browser URL of a work item."""
        return (
            f"{self.base_url}/{quote(self.organization, safe='')}/"
            f"{quote(self.project, safe='')}/_workitems/edit/{work_item_id}"
        )

    # -------------------------------------------------------------------------
    # Core Request Methods
    # -------------------------------------------------------------------------

    def request(
        self,
        method: str,
        endpoint: str,
        area: str = "wit",
        **kwargs: Any,
    ) -> dict[str, Any] | list[Any]:
        """
        Make an authenticated request to the Azure DevOps API.

        Raises:
            TransientError: On 5xx, 429, timeouts and connection failures
            AuthenticationError: On 401
            PermanentError: On other 4xx responses
        """
        url = self._build_url(endpoint, area=area)

        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("api-version", self.api_version)
        kwargs.setdefault("timeout", self.timeout)

        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        try:
            response = self._session.request(method, url, params=params, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TransientError(f"Azure DevOps request timed out: {method} {endpoint}", cause=e)
        except requests.exceptions.ConnectionError as e:
            raise TransientError(f"Azure DevOps connection failed: {method} {endpoint}", cause=e)

        if self._rate_limiter is not None:
            self._rate_limiter.update_from_response(response)

        return self._handle_response(response, endpoint)

    def get(self, endpoint: str, **kwargs: Any) -> dict[str, Any] | list[Any]:
        """Perform a GET request."""
        return self.request("GET", endpoint, **kwargs)

    def post(
        self,
        endpoint: str,
        json: dict[str, Any] | JsonPatch | None = None,
        **kwargs: Any,
    ) -> dict[str, Any] | list[Any]:
        """Perform a POST request. Respects dry_run mode."""
        if self.dry_run:
            self.logger.info(f"[DRY-RUN] Would POST to {endpoint}")
            return {}
        return self.request("POST", endpoint, json=json, **kwargs)

    def patch(
        self,
        endpoint: str,
        json: dict[str, Any] | JsonPatch | None = None,
        **kwargs: Any,
    ) -> dict[str, Any] | list[Any]:
        """Perform a PATCH request. Respects dry_run mode."""
        if self.dry_run:
            self.logger.info(f"[DRY-RUN] Would PATCH {endpoint}")
            return {}
        return self.request("PATCH", endpoint, json=json, **kwargs)

    # -------------------------------------------------------------------------
    # Response Handling
    # -------------------------------------------------------------------------

    def _handle_response(
        self, response: requests.Response, endpoint: str
    ) -> dict[str, Any] | list[Any]:
        """Handle API response and convert errors to typed exceptions."""
        # A rejected PAT gets a 203 sign-in page instead of a 401
        if response.status_code == 203:
            raise AuthenticationError(
                "Azure DevOps authentication failed. Check your PAT.", status_code=203
            )

        if response.ok:
            if response.text:
                try:
                    data = response.json()
                except ValueError:
                    return {}
                return data if isinstance(data, (dict, list)) else {}
            return {}

        status = response.status_code
        error_body = response.text[:500] if response.text else ""

        if status == 429:
            raise RateLimitError(
                f"Azure DevOps rate limit exceeded for {endpoint}",
                retry_after=get_retry_after(response),
                item_id=endpoint,
            )

        if is_retryable_status_code(status):
            raise TransientError(
                f"Azure DevOps server error {status} for {endpoint}",
                item_id=endpoint,
                status_code=status,
            )

        if status == 401:
            raise AuthenticationError(
                "Azure DevOps authentication failed. Check your PAT.", status_code=status
            )

        if status == 403:
            raise AccessDeniedError(
                f"Permission denied for {endpoint}. Check PAT scopes.",
                item_id=endpoint,
                status_code=status,
            )

        if status == 404:
            raise ResourceNotFoundError(f"Not found: {endpoint}", item_id=endpoint, status_code=status)

        if status in (400, 422):
            raise ValidationError(
                f"Azure DevOps rejected the request ({status}): {error_body}",
                item_id=endpoint,
                status_code=status,
            )

        raise PermanentError(
            f"Azure DevOps API error {status}: {error_body}", item_id=endpoint, status_code=status
        )

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def get_connection_data(self) -> dict[str, Any]:
        """Get organization connection data (cached); verifies the PAT."""
        if self._connection_data is None:
            result = self.get("connectionData", area="core")
            self._connection_data = result if isinstance(result, dict) else {}
        return self._connection_data

    def test_connection(self) -> bool:
        """Test if the API connection and credentials are valid."""
        try:
            self.get_connection_data()
            return True
        except TrackerError:
            return False

    @property
    def is_connected(self) -> bool:
        return self._connection_data is not None

    # -------------------------------------------------------------------------
    # Work Items API
    # -------------------------------------------------------------------------

    def get_work_item(self, work_item_id: int | str) -> dict[str, Any]:
        """Get a work item with its relations."""
        result = self.get(f"workitems/{work_item_id}", params={"$expand": "relations"})
        return result if isinstance(result, dict) else {}

    def create_work_item(self, work_item_type: str, operations: JsonPatch) -> dict[str, Any]:
        """
        Create a work item from JSON Patch "add" operations.

        Args:
            work_item_type: e.g. "Epic", "User Story", "Task"
            operations: JSON Patch document

        Returns:
            Work item JSON, or {} in dry-run mode
        """
        endpoint = f"workitems/${quote(work_item_type, safe='')}"
        result = self.post(
            endpoint,
            json=operations,
            headers={"Content-Type": "application/json-patch+json"},
        )
        return result if isinstance(result, dict) else {}

    def update_work_item(self, work_item_id: int | str, operations: JsonPatch) -> dict[str, Any]:
        """Apply a JSON Patch document to a work item."""
        result = self.patch(
            f"workitems/{work_item_id}",
            json=operations,
            headers={"Content-Type": "application/json-patch+json"},
        )
        return result if isinstance(result, dict) else {}

    def add_relation(
        self,
        work_item_id: int | str,
        rel: str,
        target_url: str,
    ) -> dict[str, Any]:
        """Add a link of type rel from a work item to the target work item URL."""
        operations = [
            {
                "op": "add",
                "path": "/relations/-",
                "value": {"rel": rel, "url": target_url},
            }
        ]
        return self.update_work_item(work_item_id, operations)

    def work_item_api_url(self, work_item_id: int | str) -> str:
        """API URL of a work item, used as a relation target."""
        return self._build_url(f"workItems/{work_item_id}")

    # -------------------------------------------------------------------------
    # Rate Limiting / Lifecycle
    # -------------------------------------------------------------------------

    @property
    def rate_limit_stats(self) -> dict[str, Any] | None:
        if self._rate_limiter is None:
            return None
        return self._rate_limiter.stats

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()

    def __enter__(self) -> "AzureDevOpsApiClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
