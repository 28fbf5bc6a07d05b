"""
GitHub API Client - Low-level HTTP client for the GitHub REST API.

This handles the raw HTTP communication with GitHub.
The GitHubProvider uses this to implement the TrackerProviderPort.

The client classifies failures but never retries them: the batch
scheduler owns the retry budget so attempts are counted in one place.

GitHub REST API documentation:
https://docs.github.com/en/rest/issues
"""

import logging
from typing import Any

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


class GitHubApiClient:
    """
    Low-level GitHub REST API client.

    Features:
    - Bearer token authentication
    - Token-bucket rate limiting that follows X-RateLimit-* headers
    - Connection pooling for performance
    - Typed errors (transient / permanent / authentication)
    """

    API_VERSION = "2022-11-28"
    BASE_URL = "https://api.github.com"

    # Default rate limiting (GitHub allows 5000 requests/hour authenticated)
    DEFAULT_REQUESTS_PER_SECOND = 10.0
    DEFAULT_BURST_SIZE = 10

    # Connection pool settings
    DEFAULT_POOL_CONNECTIONS = 10
    DEFAULT_POOL_MAXSIZE = 10
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        base_url: str = BASE_URL,
        dry_run: bool = True,
        requests_per_second: float | None = DEFAULT_REQUESTS_PER_SECOND,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the GitHub client.

        Args:
            token: Personal access token or fine-grained token
            owner: Repository owner (user or organization)
            repo: Repository name
            base_url: API base URL (GitHub Enterprise uses /api/v3)
            dry_run: If True, don't make write operations
            requests_per_second: Rate limit; None disables limiting
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.owner = owner
        self.repo = repo
        self.dry_run = dry_run
        self.timeout = timeout
        self.logger = logging.getLogger("GitHubApiClient")

        self._rate_limiter: RateLimiter | None = None
        if requests_per_second is not None and requests_per_second > 0:
            self._rate_limiter = RateLimiter(
                requests_per_second=requests_per_second,
                burst_size=self.DEFAULT_BURST_SIZE,
                name="GitHubRateLimiter",
            )

        self.headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": self.API_VERSION,
        }

        self._session = requests.Session()
        self._session.headers.update(self.headers)

        adapter = HTTPAdapter(
            pool_connections=self.DEFAULT_POOL_CONNECTIONS,
            pool_maxsize=self.DEFAULT_POOL_MAXSIZE,
        )
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

        self._current_user: dict[str, Any] | None = None

    # -------------------------------------------------------------------------
    # Core Request Methods
    # -------------------------------------------------------------------------

    def request(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any] | list[Any]:
        """
        Make an authenticated request to the GitHub API.

        Args:
            method: HTTP method
            endpoint: API endpoint, relative to base_url or absolute
            **kwargs: Additional arguments for requests

        Returns:
            JSON response (dict or list)

        Raises:
            TransientError: On 5xx, 429, timeouts and connection failures
            AuthenticationError: On 401
            PermanentError: On other 4xx responses
        """
        if endpoint.startswith("http"):
            url = endpoint
        else:
            url = f"{self.base_url}/{endpoint.lstrip('/')}"

        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TransientError(f"GitHub request timed out: {method} {endpoint}", cause=e)
        except requests.exceptions.ConnectionError as e:
            raise TransientError(f"GitHub connection failed: {method} {endpoint}", cause=e)

        if self._rate_limiter is not None:
            self._rate_limiter.update_from_response(response)

        return self._handle_response(response, endpoint)

    def get(self, endpoint: str, **kwargs: Any) -> dict[str, Any] | list[Any]:
        """Perform a GET request."""
        return self.request("GET", endpoint, **kwargs)

    def post(
        self,
        endpoint: str,
        json: dict[str, Any] | None = None,
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
        json: dict[str, Any] | None = None,
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
        headers = response.headers or {}

        # GitHub reports secondary rate limits as 403 with an exhausted budget
        if status == 429 or (status == 403 and headers.get("X-RateLimit-Remaining") == "0"):
            raise RateLimitError(
                f"GitHub rate limit exceeded for {endpoint}",
                retry_after=get_retry_after(response),
                item_id=endpoint,
                status_code=status,
            )

        if is_retryable_status_code(status):
            raise TransientError(
                f"GitHub server error {status} for {endpoint}",
                item_id=endpoint,
                status_code=status,
            )

        if status == 401:
            raise AuthenticationError(
                "GitHub authentication failed. Check your token.", status_code=status
            )

        if status == 403:
            raise AccessDeniedError(
                f"Permission denied for {endpoint}. Check token scopes.",
                item_id=endpoint,
                status_code=status,
            )

        if status == 404:
            raise ResourceNotFoundError(f"Not found: {endpoint}", item_id=endpoint, status_code=status)

        if status in (400, 422):
            raise ValidationError(
                f"GitHub rejected the request ({status}): {error_body}",
                item_id=endpoint,
                status_code=status,
            )

        raise PermanentError(
            f"GitHub API error {status}: {error_body}", item_id=endpoint, status_code=status
        )

    # -------------------------------------------------------------------------
    # Convenience Methods
    # -------------------------------------------------------------------------

    def repo_endpoint(self, path: str = "") -> str:
        """Build a repository-scoped endpoint."""
        base = f"repos/{self.owner}/{self.repo}"
        return f"{base}/{path.lstrip('/')}" if path else base

    def get_authenticated_user(self) -> dict[str, Any]:
        """Get the currently authenticated user (cached)."""
        if self._current_user is None:
            result = self.get("user")
            self._current_user = result if isinstance(result, dict) else {}
        return self._current_user

    def test_connection(self) -> bool:
        """Test if the API connection and credentials are valid."""
        try:
            self.get_authenticated_user()
            return True
        except TrackerError:
            return False

    @property
    def is_connected(self) -> bool:
        """Check if the client has successfully connected."""
        return self._current_user is not None

    # -------------------------------------------------------------------------
    # Issues API
    # -------------------------------------------------------------------------

    def get_issue(self, number: int | str) -> dict[str, Any]:
        """Get a single issue by number."""
        result = self.get(self.repo_endpoint(f"issues/{number}"))
        return result if isinstance(result, dict) else {}

    def create_issue(
        self,
        title: str,
        body: str | None = None,
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Create a new issue.

        Args:
            title: Issue title
            body: Markdown body
            labels: Label names (created on the fly by GitHub if missing)
            assignees: Logins to assign

        Returns:
            Issue JSON, or {} in dry-run mode
        """
        data: dict[str, Any] = {"title": title}
        if body:
            data["body"] = body
        if labels:
            data["labels"] = labels
        if assignees:
            data["assignees"] = assignees

        result = self.post(self.repo_endpoint("issues"), json=data)
        return result if isinstance(result, dict) else {}

    def update_issue(self, number: int | str, **fields: Any) -> dict[str, Any]:
        """
        Update an existing issue.

        Args:
            number: Issue number
            **fields: title, body, labels, assignees, state, ...
        """
        result = self.patch(self.repo_endpoint(f"issues/{number}"), json=fields)
        return result if isinstance(result, dict) else {}

    # -------------------------------------------------------------------------
    # Rate Limiting / Lifecycle
    # -------------------------------------------------------------------------

    @property
    def rate_limit_stats(self) -> dict[str, Any] | None:
        """Rate limiter statistics, or None if limiting is disabled."""
        if self._rate_limiter is None:
            return None
        return self._rate_limiter.stats

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()

    def __enter__(self) -> "GitHubApiClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
