# app.py
import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv

from config import (
    ConfigError,
    DEFAULT_GITLAB_API_URL,
    DEFAULT_MR_TIMEOUT_HOURS,
    DEFAULT_PER_PAGE,
    DEFAULT_TIMESTAMP_FIELD,
    DEFAULT_USER_MAPPING_PATH,
    MODE_BROADCAST,
    MODE_DIRECT,
    MODES,
    TIMESTAMP_FIELDS,
    load_user_mapping,
)
from gitlab_service import GitLabService, GitLabServiceError, create_client
from reminders import (
    MergeRequest,
    build_direct_messages,
    build_pending_reviews,
    collect_approvals,
    filter_stale,
    format_digest,
)
from slack_service import DirectMessageNotifier, SlackNotifier, WebhookNotifier, deliver_all

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
BROADCAST_RECIPIENT = "webhook"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Command line options. Every option falls back to an environment variable."""
    env = os.environ
    parser = argparse.ArgumentParser(
        description="Remind reviewers about GitLab merge requests waiting for their approval."
    )
    parser.add_argument("--token", default=env.get("GITLAB_TOKEN", ""),
                        help="Token for gitlab api (GITLAB_TOKEN)")
    parser.add_argument("--gitlab-api-url", default=env.get("GITLAB_API_URL", DEFAULT_GITLAB_API_URL),
                        help="Gitlab api url (GITLAB_API_URL)")
    parser.add_argument("--slack-webhook-url", default=env.get("SLACK_WEBHOOK_URL", ""),
                        help="Slack webhook URL for broadcast notifications (SLACK_WEBHOOK_URL)")
    parser.add_argument("--slack-bot-token", default=env.get("SLACK_BOT_TOKEN", ""),
                        help="Slack bot token for direct messages (SLACK_BOT_TOKEN)")
    parser.add_argument("--mr-timeout-hours", type=int,
                        default=env.get("MR_TIMEOUT_HOURS", DEFAULT_MR_TIMEOUT_HOURS),
                        help="Timeout for merge requests in hours (MR_TIMEOUT_HOURS)")
    parser.add_argument("--timestamp-field", choices=TIMESTAMP_FIELDS, default=DEFAULT_TIMESTAMP_FIELD,
                        help="Merge request timestamp used to measure idle time")
    parser.add_argument("--mode", choices=MODES, default=env.get("NOTIFY_MODE", MODE_BROADCAST),
                        help="broadcast: one digest to the webhook; direct: one DM per reviewer")
    parser.add_argument("--user-mapping", default=env.get("USER_MAPPING_PATH", DEFAULT_USER_MAPPING_PATH),
                        help="YAML file mapping GitLab usernames to Slack user IDs (USER_MAPPING_PATH)")
    parser.add_argument("--per-page", type=int, default=DEFAULT_PER_PAGE,
                        help="Maximum number of merge requests fetched")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log the digests instead of sending them")
    parser.add_argument("--log-level", default=env.get("LOG_LEVEL", "INFO"),
                        help="Logging level (LOG_LEVEL)")
    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    if not args.token:
        raise ConfigError("Set a valid token via run options")
    if args.mode not in MODES:
        raise ConfigError(f"Unknown mode {args.mode!r}, expected one of {', '.join(MODES)}")
    if args.mr_timeout_hours < 0:
        raise ConfigError("mr-timeout-hours must not be negative")
    if args.per_page < 1:
        raise ConfigError("per-page must be positive")
    if args.dry_run:
        return
    if args.mode == MODE_BROADCAST and not args.slack_webhook_url.startswith(("https://", "http://")):
        raise ConfigError("Set a valid slack-webhook-url via run options")
    if args.mode == MODE_DIRECT and not args.slack_bot_token:
        raise ConfigError("Set a valid slack-bot-token via run options")


def build_messages(
    args: argparse.Namespace,
    service: GitLabService,
    stale: List[MergeRequest],
    user_mapping: Dict[str, str],
    now: datetime,
) -> Dict[str, str]:
    """Recipient -> digest for this run."""
    if args.mode == MODE_BROADCAST:
        return {BROADCAST_RECIPIENT: format_digest(stale, args.timestamp_field, now)}

    pending = build_pending_reviews(collect_approvals(stale, service.approval_for))
    logger.info(f"{len(pending)} reviewers have merge requests waiting for approval")
    return build_direct_messages(pending, user_mapping, args.timestamp_field, now)


def run(args: argparse.Namespace) -> int:
    validate_args(args)
    user_mapping = load_user_mapping(args.user_mapping) if args.mode == MODE_DIRECT else {}

    service = GitLabService(create_client(args.gitlab_api_url, args.token), per_page=args.per_page)
    merge_requests = service.list_open_merge_requests(order_by=args.timestamp_field)

    now = datetime.now(timezone.utc)
    stale = filter_stale(merge_requests, args.mr_timeout_hours, args.timestamp_field, now)
    if not stale:
        logger.info("There are no merge requests to notify about")
        return 0
    logger.info(f"{len(stale)} merge requests idle for more than {args.mr_timeout_hours} hours")

    messages = build_messages(args, service, stale, user_mapping, now)
    if not messages:
        logger.info("No mapped Slack users to notify")
        return 0

    if args.dry_run:
        for recipient_id, message in messages.items():
            logger.info(f"Dry run, message for {recipient_id}:\n{message}")
        return 0

    notifier: SlackNotifier
    if args.mode == MODE_BROADCAST:
        notifier = WebhookNotifier(args.slack_webhook_url)
    else:
        notifier = DirectMessageNotifier(args.slack_bot_token)

    failed = deliver_all(notifier, messages)
    if failed:
        logger.error(f"Failed to notify {len(failed)} of {len(messages)} recipients: {', '.join(failed)}")
        return 1

    logger.info(f"Successfully notified about {len(stale)} merge requests")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    level = logging.getLevelName(args.log_level.upper())
    if not isinstance(level, int):
        logging.basicConfig(format=LOG_FORMAT)
        logger.error(f"Unknown log level {args.log_level!r}")
        return 1
    logging.basicConfig(level=level, format=LOG_FORMAT)

    try:
        return run(args)
    except (ConfigError, GitLabServiceError) as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
