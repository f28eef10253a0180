"""Unit tests for the GitLab fetcher (mocked python-gitlab client)."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests
from gitlab.exceptions import GitlabAuthenticationError, GitlabGetError, GitlabListError

import gitlab_service
from gitlab_service import GitLabService, GitLabServiceError, create_client, normalize_base_url
from reminders import Approval


def _mr_payload(mr_id: int, draft: bool = False) -> dict:
    return {
        "id": mr_id,
        "iid": mr_id + 100,
        "project_id": 9,
        "title": f"MR {mr_id}",
        "web_url": f"https://gitlab.com/acme/api/-/merge_requests/{mr_id + 100}",
        "author": {"username": "carol"},
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
        "reviewers": [{"username": "alice"}],
        "draft": draft,
    }


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.mark.parametrize(
    "api_url",
    ["https://gitlab.com/api/v4", "https://gitlab.com/api/v4/", "https://gitlab.com"],
)
def test_normalize_base_url(api_url: str) -> None:
    assert normalize_base_url(api_url) == "https://gitlab.com"


def test_create_client_authenticates() -> None:
    with patch.object(gitlab_service.gitlab, "Gitlab") as gitlab_cls:
        gl = create_client("https://gitlab.example.com/api/v4", "secret")

    gitlab_cls.assert_called_once_with(url="https://gitlab.example.com", private_token="secret")
    gl.auth.assert_called_once()


def test_create_client_wraps_auth_failure() -> None:
    with patch.object(gitlab_service.gitlab, "Gitlab") as gitlab_cls:
        gitlab_cls.return_value.auth.side_effect = GitlabAuthenticationError("401 Unauthorized", 401)
        with pytest.raises(GitLabServiceError, match="Failed to create gitlab api client"):
            create_client("https://gitlab.com/api/v4", "bad")


def test_list_open_merge_requests_single_page(client: MagicMock) -> None:
    client.mergerequests.list.return_value = [
        Mock(attributes=_mr_payload(1)),
        Mock(attributes=_mr_payload(2, draft=True)),
    ]
    service = GitLabService(client, per_page=500)

    mrs = service.list_open_merge_requests(order_by="created_at")

    assert [mr.id for mr in mrs] == [1]
    assert mrs[0].reviewers == ("alice",)
    client.mergerequests.list.assert_called_once_with(
        state="opened",
        scope="all",
        wip="no",
        order_by="created_at",
        page=1,
        per_page=500,
        get_all=False,
    )


def test_list_open_merge_requests_warns_on_full_page(client: MagicMock, caplog) -> None:
    client.mergerequests.list.return_value = [Mock(attributes=_mr_payload(i)) for i in range(2)]
    service = GitLabService(client, per_page=2)

    with caplog.at_level("WARNING"):
        service.list_open_merge_requests()
    assert "full page" in caplog.text


@pytest.mark.parametrize(
    "error", [GitlabListError("500 Internal Server Error", 500), requests.ConnectionError("down")]
)
def test_list_open_merge_requests_wraps_errors(client: MagicMock, error) -> None:
    client.mergerequests.list.side_effect = error
    with pytest.raises(GitLabServiceError, match="Failed to get list of merge requests"):
        GitLabService(client).list_open_merge_requests()


def test_get_approval(client: MagicMock) -> None:
    mr_manager = client.projects.get.return_value.mergerequests
    mr_manager.get.return_value.approvals.get.return_value = Mock(
        attributes={"approved_by": [{"user": {"username": "alice"}}]}
    )

    result = GitLabService(client).get_approval(9, 101, 1)

    assert result == Approval(merge_request_id=1, approved_by=frozenset({"alice"}))
    client.projects.get.assert_called_once_with(9, lazy=True)
    mr_manager.get.assert_called_once_with(101, lazy=True)


def test_get_approval_not_found_is_absent(client: MagicMock) -> None:
    mr_manager = client.projects.get.return_value.mergerequests
    mr_manager.get.return_value.approvals.get.side_effect = GitlabGetError("404 Not Found", 404)

    assert GitLabService(client).get_approval(9, 101, 1) is None


def test_get_approval_empty_payload_is_absent(client: MagicMock) -> None:
    mr_manager = client.projects.get.return_value.mergerequests
    mr_manager.get.return_value.approvals.get.return_value = Mock(attributes={})

    assert GitLabService(client).get_approval(9, 101, 1) is None


def test_get_approval_server_error_raises(client: MagicMock) -> None:
    mr_manager = client.projects.get.return_value.mergerequests
    mr_manager.get.return_value.approvals.get.side_effect = GitlabGetError("500 Error", 500)

    with pytest.raises(GitLabServiceError, match="Failed to get approvals"):
        GitLabService(client).get_approval(9, 101, 1)


def test_approval_for_uses_request_ids(client: MagicMock) -> None:
    service = GitLabService(client)
    mr = Mock(project_id=9, iid=101, id=1)
    with patch.object(service, "get_approval", return_value=None) as get_approval:
        assert service.approval_for(mr) is None
    get_approval.assert_called_once_with(9, 101, 1)


def test_full_page_warning_uses_gitlab_page_cap(client: MagicMock, caplog) -> None:
    client.mergerequests.list.return_value = [
        Mock(attributes=_mr_payload(i)) for i in range(gitlab_service.MAX_PER_PAGE)
    ]
    service = GitLabService(client)

    with caplog.at_level("WARNING"):
        mrs = service.list_open_merge_requests()

    assert len(mrs) == 100
    assert "full page" in caplog.text


def test_partial_page_does_not_warn(client: MagicMock, caplog) -> None:
    client.mergerequests.list.return_value = [Mock(attributes=_mr_payload(i)) for i in range(99)]

    with caplog.at_level("WARNING"):
        GitLabService(client).list_open_merge_requests()

    assert "full page" not in caplog.text
