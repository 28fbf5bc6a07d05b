"""
Tests for AzureDevOpsApiClient.

Tests REST API client with mocked HTTP responses.
"""

from unittest.mock import MagicMock, patch

import pytest

from epicsync.adapters.azure_devops.client import AzureDevOpsApiClient
from epicsync.core.exceptions import (
    AuthenticationError,
    RateLimitError,
    ResourceNotFoundError,
    TransientError,
    ValidationError,
)


def _response(status_code=200, json_data=None, headers=None, text="json"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else {}
    response.text = text
    return response


@pytest.fixture
def mock_session():
    """Create a mock requests session."""
    with patch("epicsync.adapters.azure_devops.client.requests.Session") as mock:
        session_instance = MagicMock()
        mock.return_value = session_instance
        yield session_instance


@pytest.fixture
def ado_client(mock_session):
    """Create AzureDevOpsApiClient with mocked session."""
    return AzureDevOpsApiClient(
        organization="acme",
        project="My App",
        pat="secret-pat",
        dry_run=False,
        requests_per_second=None,
    )


class TestUrls:
    def test_project_scoped_url(self, ado_client):
        assert (
            ado_client._build_url("workitems/5")
            == "https://dev.azure.com/acme/My%20App/_apis/wit/workitems/5"
        )

    def test_organization_scoped_url(self, ado_client):
        assert ado_client._build_url("connectionData", area="core") == (
            "https://dev.azure.com/acme/_apis/connectionData"
        )

    def test_work_item_browser_url(self, ado_client):
        assert ado_client.work_item_url(12) == "https://dev.azure.com/acme/My%20App/_workitems/edit/12"

    def test_pat_basic_auth(self, ado_client, mock_session):
        assert mock_session.auth == ("", "secret-pat")


class TestWorkItems:
    """JSON Patch requests."""

    def test_create_posts_json_patch(self, ado_client, mock_session):
        mock_session.request.return_value = _response(json_data={"id": 5, "fields": {}})
        operations = [{"op": "add", "path": "/fields/System.Title", "value": "Login"}]

        result = ado_client.create_work_item("User Story", operations)

        assert result["id"] == 5
        method, url = mock_session.request.call_args[0]
        kwargs = mock_session.request.call_args[1]
        assert method == "POST"
        assert url.endswith("/_apis/wit/workitems/$User%20Story")
        assert kwargs["json"] == operations
        assert kwargs["headers"]["Content-Type"] == "application/json-patch+json"
        assert kwargs["params"]["api-version"] == "7.0"

    def test_add_relation(self, ado_client, mock_session):
        mock_session.request.return_value = _response(json_data={"id": 6})

        ado_client.add_relation(6, "System.LinkTypes.Hierarchy-Reverse", "https://x/workItems/5")

        kwargs = mock_session.request.call_args[1]
        assert mock_session.request.call_args[0][0] == "PATCH"
        assert kwargs["json"] == [
            {
                "op": "add",
                "path": "/relations/-",
                "value": {"rel": "System.LinkTypes.Hierarchy-Reverse", "url": "https://x/workItems/5"},
            }
        ]

    def test_get_expands_relations(self, ado_client, mock_session):
        mock_session.request.return_value = _response(json_data={"id": 5, "fields": {}})

        ado_client.get_work_item(5)

        assert mock_session.request.call_args[1]["params"]["$expand"] == "relations"

    def test_dry_run_skips_writes(self, mock_session):
        client = AzureDevOpsApiClient("acme", "App", "pat", dry_run=True, requests_per_second=None)

        assert client.create_work_item("Task", []) == {}
        mock_session.request.assert_not_called()


class TestErrorMapping:
    def test_203_sign_in_page_is_auth_error(self, ado_client, mock_session):
        mock_session.request.return_value = _response(203, text="<html>Sign in</html>")
        with pytest.raises(AuthenticationError):
            ado_client.get_work_item(5)

    def test_401(self, ado_client, mock_session):
        mock_session.request.return_value = _response(401)
        with pytest.raises(AuthenticationError):
            ado_client.get_work_item(5)

    def test_404(self, ado_client, mock_session):
        mock_session.request.return_value = _response(404)
        with pytest.raises(ResourceNotFoundError):
            ado_client.get_work_item(5)

    def test_400(self, ado_client, mock_session):
        mock_session.request.return_value = _response(400, text="TF401320: Rule error")
        with pytest.raises(ValidationError, match="TF401320"):
            ado_client.create_work_item("Task", [])

    def test_429(self, ado_client, mock_session):
        mock_session.request.return_value = _response(429, headers={"Retry-After": "3"})
        with pytest.raises(RateLimitError) as exc_info:
            ado_client.get_work_item(5)
        assert exc_info.value.retry_after == 3.0

    def test_503(self, ado_client, mock_session):
        mock_session.request.return_value = _response(503)
        with pytest.raises(TransientError):
            ado_client.get_work_item(5)

    def test_connection_check(self, ado_client, mock_session):
        mock_session.request.return_value = _response(json_data={"authenticatedUser": {}})
        assert ado_client.test_connection() is True
        assert ado_client.is_connected
