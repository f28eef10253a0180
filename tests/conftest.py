from datetime import datetime, timedelta, timezone

import pytest

from reminders import MergeRequest

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def make_mr(
    mr_id: int = 1,
    hours_ago: float = 100,
    reviewers=(),
    author: str = "carol",
    title: str = None,
    created_hours_ago: float = None,
    now: datetime = NOW,
) -> MergeRequest:
    updated_at = now - timedelta(hours=hours_ago) if hours_ago is not None else None
    if created_hours_ago is None:
        created_hours_ago = hours_ago if hours_ago is not None else 1000
    return MergeRequest(
        id=mr_id,
        iid=mr_id * 10,
        project_id=7,
        title=title or f"Change {mr_id}",
        web_url=f"https://gitlab.example.com/group/project/-/merge_requests/{mr_id * 10}",
        author=author,
        created_at=now - timedelta(hours=created_hours_ago),
        updated_at=updated_at,
        reviewers=tuple(reviewers),
    )


@pytest.fixture
def now() -> datetime:
    return NOW
