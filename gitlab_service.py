# gitlab_service.py
import logging
from typing import List, Optional

import gitlab
import requests
from gitlab.exceptions import GitlabError, GitlabGetError

from config import DEFAULT_PER_PAGE
from reminders import Approval, MergeRequest

logger = logging.getLogger(__name__)

API_SUFFIX = "/api/v4"
MAX_PER_PAGE = 100  # GitLab serves at most this many items per page


class GitLabServiceError(Exception):
    """Raised when GitLab cannot be reached or rejects a request."""


def normalize_base_url(api_url: str) -> str:
    """python-gitlab wants the instance URL, not the /api/v4 endpoint."""
    url = api_url.rstrip("/")
    if url.endswith(API_SUFFIX):
        url = url[: -len(API_SUFFIX)]
    return url


def create_client(api_url: str, token: str) -> gitlab.Gitlab:
    """Create and authenticate a GitLab client."""
    gl = gitlab.Gitlab(url=normalize_base_url(api_url), private_token=token)
    try:
        gl.auth()
    except (GitlabError, requests.RequestException) as e:
        raise GitLabServiceError(f"Failed to create gitlab api client: {e}") from e
    return gl


class GitLabService:
    def __init__(self, client: gitlab.Gitlab, per_page: int = DEFAULT_PER_PAGE):
        self.client = client
        self.per_page = per_page

    def list_open_merge_requests(self, order_by: str = "updated_at") -> List[MergeRequest]:
        """All open, non-draft merge requests visible to the token, from a single page."""
        try:
            items = self.client.mergerequests.list(
                state="opened",
                scope="all",
                wip="no",
                order_by=order_by,
                page=1,
                per_page=self.per_page,
                get_all=False,
            )
        except (GitlabError, requests.RequestException) as e:
            raise GitLabServiceError(f"Failed to get list of merge requests: {e}") from e

        merge_requests = [MergeRequest.from_api(item.attributes) for item in items]
        page_size = min(self.per_page, MAX_PER_PAGE)
        if len(merge_requests) >= page_size:
            logger.warning(
                f"Got a full page of {len(merge_requests)} merge requests, older ones are not checked"
            )
        open_mrs = [mr for mr in merge_requests if not mr.draft]
        logger.info(f"Fetched {len(open_mrs)} open merge requests")
        return open_mrs

    def get_approval(self, project_id: int, iid: int, merge_request_id: int) -> Optional[Approval]:
        """Approval state of one merge request, or None when GitLab reports none."""
        try:
            project = self.client.projects.get(project_id, lazy=True)
            mr = project.mergerequests.get(iid, lazy=True)
            approvals = mr.approvals.get()
        except GitlabGetError as e:
            if e.response_code == 404:
                logger.debug(f"No approval state for !{iid} in project {project_id}")
                return None
            raise GitLabServiceError(
                f"Failed to get approvals for !{iid} in project {project_id}: {e}"
            ) from e
        except (GitlabError, requests.RequestException) as e:
            raise GitLabServiceError(
                f"Failed to get approvals for !{iid} in project {project_id}: {e}"
            ) from e

        if approvals is None or not approvals.attributes:
            return None
        return Approval.from_api(merge_request_id, approvals.attributes)

    def approval_for(self, merge_request: MergeRequest) -> Optional[Approval]:
        return self.get_approval(merge_request.project_id, merge_request.iid, merge_request.id)
