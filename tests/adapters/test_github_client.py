"""
Tests for GitHubApiClient.

Tests REST API client with mocked HTTP responses.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from epicsync.adapters.github.client import GitHubApiClient
from epicsync.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    PermanentError,
    RateLimitError,
    ResourceNotFoundError,
    TransientError,
    ValidationError,
)


def _response(status_code=200, json_data=None, headers=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else {}
    response.text = text if text is not None else ("{}" if json_data is None else "json")
    return response


@pytest.fixture
def mock_issue_response():
    """Mock GitHub issue response."""
    return {
        "number": 123,
        "title": "Login",
        "body": "Body\n\nPart of #7",
        "state": "open",
        "html_url": "https://github.com/acme/app/issues/123",
        "labels": [{"name": "user-story"}],
    }


@pytest.fixture
def mock_session():
    """Create a mock requests session."""
    with patch("epicsync.adapters.github.client.requests.Session") as mock:
        session_instance = MagicMock()
        mock.return_value = session_instance
        yield session_instance


@pytest.fixture
def github_client(mock_session):
    """Create GitHubApiClient with mocked session."""
    return GitHubApiClient(
        token="ghp_test",
        owner="acme",
        repo="app",
        dry_run=False,
        requests_per_second=None,  # Disable rate limiting for tests
    )


class TestInit:
    def test_headers(self, github_client, mock_session):
        mock_session.headers.update.assert_called_once()
        headers = mock_session.headers.update.call_args[0][0]
        assert headers["Authorization"] == "Bearer ghp_test"
        assert headers["X-GitHub-Api-Version"] == GitHubApiClient.API_VERSION

    def test_rate_limiter_disabled(self, github_client):
        assert github_client.rate_limit_stats is None

    def test_rate_limiter_enabled(self, mock_session):
        client = GitHubApiClient(token="t", owner="o", repo="r", requests_per_second=5.0)
        assert client.rate_limit_stats["requests_per_second"] == 5.0

    def test_enterprise_base_url(self, mock_session):
        client = GitHubApiClient(
            token="t", owner="o", repo="r", base_url="https://ghe.example.com/api/v3/"
        )
        assert client.base_url == "https://ghe.example.com/api/v3"


class TestRequests:
    """URL building and dry-run behaviour."""

    def test_get_builds_url(self, github_client, mock_session, mock_issue_response):
        mock_session.request.return_value = _response(json_data=mock_issue_response)

        result = github_client.get_issue(123)

        assert result["number"] == 123
        method, url = mock_session.request.call_args[0]
        assert method == "GET"
        assert url == "https://api.github.com/repos/acme/app/issues/123"
        assert mock_session.request.call_args[1]["timeout"] == GitHubApiClient.DEFAULT_TIMEOUT

    def test_create_issue_payload(self, github_client, mock_session, mock_issue_response):
        mock_session.request.return_value = _response(201, json_data=mock_issue_response)

        github_client.create_issue("Login", body="Body", labels=["user-story"], assignees=["amy"])

        method, url = mock_session.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/repos/acme/app/issues")
        assert mock_session.request.call_args[1]["json"] == {
            "title": "Login",
            "body": "Body",
            "labels": ["user-story"],
            "assignees": ["amy"],
        }

    def test_update_issue_uses_patch(self, github_client, mock_session, mock_issue_response):
        mock_session.request.return_value = _response(json_data=mock_issue_response)

        github_client.update_issue(123, title="New")

        assert mock_session.request.call_args[0][0] == "PATCH"
        assert mock_session.request.call_args[1]["json"] == {"title": "New"}

    def test_dry_run_skips_writes(self, mock_session):
        client = GitHubApiClient(token="t", owner="o", repo="r", dry_run=True, requests_per_second=None)

        assert client.create_issue("Title") == {}
        assert client.update_issue(1, title="x") == {}
        mock_session.request.assert_not_called()

    def test_empty_body_returns_empty_dict(self, github_client, mock_session):
        mock_session.request.return_value = _response(204, text="")
        assert github_client.get("user") == {}

    def test_invalid_json_returns_empty_dict(self, github_client, mock_session):
        response = _response(200, text="<html>")
        response.json.side_effect = ValueError("not json")
        mock_session.request.return_value = response
        assert github_client.get("user") == {}


class TestErrorMapping:
    """HTTP status → typed exception."""

    @pytest.mark.parametrize(
        ("status", "exc_class"),
        [
            (401, AuthenticationError),
            (403, AccessDeniedError),
            (404, ResourceNotFoundError),
            (422, ValidationError),
            (400, ValidationError),
            (409, PermanentError),
            (500, TransientError),
            (502, TransientError),
            (503, TransientError),
        ],
    )
    def test_status_codes(self, github_client, mock_session, status, exc_class):
        mock_session.request.return_value = _response(status, text="error")

        with pytest.raises(exc_class) as exc_info:
            github_client.get("repos/acme/app")

        assert exc_info.value.status_code == status

    def test_429_is_rate_limit_with_retry_after(self, github_client, mock_session):
        mock_session.request.return_value = _response(429, headers={"Retry-After": "17"})

        with pytest.raises(RateLimitError) as exc_info:
            github_client.get("user")

        assert exc_info.value.retry_after == 17.0

    def test_secondary_rate_limit_403(self, github_client, mock_session):
        mock_session.request.return_value = _response(
            403, headers={"X-RateLimit-Remaining": "0"}, text="limit"
        )
        with pytest.raises(RateLimitError):
            github_client.get("user")

    def test_timeout_is_transient(self, github_client, mock_session):
        mock_session.request.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(TransientError, match="timed out"):
            github_client.get("user")

    def test_connection_error_is_transient(self, github_client, mock_session):
        mock_session.request.side_effect = requests.exceptions.ConnectionError("reset")
        with pytest.raises(TransientError, match="connection failed"):
            github_client.get("user")

    def test_client_never_retries(self, github_client, mock_session):
        mock_session.request.return_value = _response(503)

        with pytest.raises(TransientError):
            github_client.get("user")

        assert mock_session.request.call_count == 1


class TestConnection:
    def test_connection_ok_and_cached(self, github_client, mock_session):
        mock_session.request.return_value = _response(json_data={"login": "amy"})

        assert github_client.test_connection() is True
        assert github_client.is_connected
        github_client.get_authenticated_user()
        assert mock_session.request.call_count == 1

    def test_connection_failure(self, github_client, mock_session):
        mock_session.request.return_value = _response(401)
        assert github_client.test_connection() is False

    def test_context_manager_closes_session(self, mock_session):
        with GitHubApiClient(token="t", owner="o", repo="r", requests_per_second=None):
            pass
        mock_session.close.assert_called_once()
