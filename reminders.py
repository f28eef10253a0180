# reminders.py
"""Stale merge request selection, reviewer attribution and digest rendering.

Nothing here talks to the network: GitLab data comes in as ``MergeRequest``
and ``Approval`` snapshots and digests go out as plain strings, so each run
builds a fresh model that is thrown away at exit.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config import TIMESTAMP_FIELDS

logger = logging.getLogger(__name__)

DIGEST_HEADER = "{count} merge requests waiting for your approval"
DIGEST_LINE = "<{url}|{title}> ({author}) - {days} days"

PendingReviews = Mapping[str, Tuple["MergeRequest", ...]]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitLab ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class MergeRequest:
    id: int
    iid: int
    project_id: int
    title: str
    web_url: str
    author: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    reviewers: Tuple[str, ...] = ()
    draft: bool = False

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "MergeRequest":
        """Build a snapshot from a GitLab REST merge request payload."""
        author = payload.get("author") or {}
        reviewers = tuple(
            r["username"] for r in payload.get("reviewers") or [] if r.get("username")
        )
        draft = payload.get("draft")
        if draft is None:
            draft = payload.get("work_in_progress", False)
        return cls(
            id=payload["id"],
            iid=payload["iid"],
            project_id=payload["project_id"],
            title=payload.get("title", ""),
            web_url=payload.get("web_url", ""),
            author=author.get("username", ""),
            created_at=parse_timestamp(payload.get("created_at")),
            updated_at=parse_timestamp(payload.get("updated_at")),
            reviewers=reviewers,
            draft=bool(draft),
        )


@dataclass(frozen=True)
class Approval:
    merge_request_id: int
    approved_by: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_api(cls, merge_request_id: int, payload: Dict[str, Any]) -> "Approval":
        approved_by = frozenset(
            entry["user"]["username"]
            for entry in payload.get("approved_by") or []
            if (entry.get("user") or {}).get("username")
        )
        return cls(merge_request_id=merge_request_id, approved_by=approved_by)


def _check_timestamp_field(timestamp_field: str) -> None:
    if timestamp_field not in TIMESTAMP_FIELDS:
        raise ValueError(
            f"Unknown timestamp field {timestamp_field!r}, expected one of {', '.join(TIMESTAMP_FIELDS)}"
        )


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def age_in_hours(merge_request: MergeRequest, timestamp_field: str, now: datetime) -> Optional[float]:
    timestamp = getattr(merge_request, timestamp_field)
    if timestamp is None:
        return None
    return (now - timestamp).total_seconds() / 3600


def filter_stale(
    merge_requests: Iterable[MergeRequest],
    threshold_hours: float,
    timestamp_field: str = "updated_at",
    now: Optional[datetime] = None,
) -> List[MergeRequest]:
    """Keep requests idle for strictly longer than ``threshold_hours``, in input order.

    A request without the chosen timestamp cannot be aged and is skipped.
    """
    _check_timestamp_field(timestamp_field)
    now = _now(now)

    stale = []
    for mr in merge_requests:
        age = age_in_hours(mr, timestamp_field, now)
        if age is None:
            logger.warning(f"Merge request {mr.web_url or mr.id} has no {timestamp_field}, skipping")
            continue
        if age > threshold_hours:
            stale.append(mr)
    return stale


def pending_reviewers(merge_request: MergeRequest, approval: Approval) -> Tuple[str, ...]:
    """Requested reviewers who have not approved, in the request's reviewer order."""
    pending = []
    for username in merge_request.reviewers:
        if username not in approval.approved_by and username not in pending:
            pending.append(username)
    return tuple(pending)


def collect_approvals(
    merge_requests: Iterable[MergeRequest],
    fetch_approval: Callable[[MergeRequest], Optional[Approval]],
) -> List[Tuple[MergeRequest, Optional[Approval]]]:
    """Fetch the approval state of each request, in order.

    Errors raised by ``fetch_approval`` propagate and abort the run.
    """
    return [(mr, fetch_approval(mr)) for mr in merge_requests]


def build_pending_reviews(
    pairs: Iterable[Tuple[MergeRequest, Optional[Approval]]],
) -> PendingReviews:
    """Group requests under every reviewer that still owes them an approval.

    Requests without approval state are left out entirely. The result is
    read-only; buckets keep the order in which requests were processed.
    """
    buckets: Dict[str, List[MergeRequest]] = {}
    for mr, approval in pairs:
        if approval is None:
            logger.debug(f"No approval state for {mr.web_url or mr.id}, skipping")
            continue
        for username in pending_reviewers(mr, approval):
            buckets.setdefault(username, []).append(mr)
    return MappingProxyType({username: tuple(mrs) for username, mrs in buckets.items()})


def days_waiting(merge_request: MergeRequest, timestamp_field: str, now: datetime) -> int:
    age = age_in_hours(merge_request, timestamp_field, now)
    if age is None:
        return 0
    return int(age // 24)


def format_digest(
    merge_requests: Sequence[MergeRequest],
    timestamp_field: str = "updated_at",
    now: Optional[datetime] = None,
) -> str:
    """Render the Slack mrkdwn digest for a list of merge requests."""
    _check_timestamp_field(timestamp_field)
    now = _now(now)

    lines = [DIGEST_HEADER.format(count=len(merge_requests)), ""]
    for mr in merge_requests:
        lines.append(
            DIGEST_LINE.format(
                url=mr.web_url,
                title=mr.title,
                author=mr.author,
                days=days_waiting(mr, timestamp_field, now),
            )
        )
    return "\n".join(lines)


def build_direct_messages(
    pending: PendingReviews,
    user_mapping: Mapping[str, str],
    timestamp_field: str = "updated_at",
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """Map each reachable reviewer's Slack ID to their personal digest.

    Usernames sharing a Slack ID get one digest with their requests merged.
    """
    now = _now(now)

    by_recipient: Dict[str, List[MergeRequest]] = {}
    for username, mrs in pending.items():
        if username not in user_mapping:
            logger.info(f"No Slack user mapped for {username}, skipping {len(mrs)} merge requests")
            continue
        recipient_id = user_mapping[username]
        if not recipient_id:
            logger.warning(f"Blank Slack ID for {username}, skipping {len(mrs)} merge requests")
            continue
        if recipient_id in by_recipient:
            logger.warning(f"Slack ID {recipient_id} is mapped to several users, merging digest for {username}")
        merged = by_recipient.setdefault(recipient_id, [])
        for mr in mrs:
            if mr not in merged:
                merged.append(mr)
    return {
        recipient_id: format_digest(mrs, timestamp_field, now)
        for recipient_id, mrs in by_recipient.items()
    }
