# config.py
import logging
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

# GitLab settings
DEFAULT_GITLAB_API_URL = "https://gitlab.com/api/v4"
DEFAULT_PER_PAGE = 1000  # One large page, results beyond it are not fetched

# Reminder settings
DEFAULT_MR_TIMEOUT_HOURS = 72  # Notify about merge requests idle for longer than this
DEFAULT_TIMESTAMP_FIELD = "updated_at"
TIMESTAMP_FIELDS = ("updated_at", "created_at")

# Delivery settings
MODE_BROADCAST = "broadcast"  # One digest to a Slack incoming webhook
MODE_DIRECT = "direct"  # One digest per reviewer, sent as a Slack DM
MODES = (MODE_BROADCAST, MODE_DIRECT)

# Map GitLab usernames to Slack User IDs, e.g.
#
#   users:
#     your-gitlab-username: U024BE7LH
#
# Find Slack User ID by clicking a user's profile -> ... -> "Copy member ID"
DEFAULT_USER_MAPPING_PATH = "users.yaml"


class ConfigError(Exception):
    """Raised when run options or the user mapping document are unusable."""


def parse_user_mapping(document: Any) -> Dict[str, str]:
    """Validate a parsed YAML document and return the username -> Slack ID mapping."""
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError("User mapping must be a YAML mapping of username to Slack ID")

    # A scalar value means a single user literally named "users"
    if set(document) == {"users"} and not isinstance(document["users"], (str, int)):
        document = document["users"] or {}
        if not isinstance(document, dict):
            raise ConfigError("'users' must be a mapping of username to Slack ID")

    mapping = {}
    for username, recipient_id in document.items():
        if isinstance(username, bool):
            raise ConfigError(
                f"Invalid username in user mapping: {username!r}, quote names like 'no' or 'on'"
            )
        if not isinstance(username, str):
            raise ConfigError(f"Invalid username in user mapping: {username!r}")
        if recipient_id is not None and not isinstance(recipient_id, (str, int)):
            raise ConfigError(f"Invalid Slack ID for {username}: {recipient_id!r}")
        mapping[username] = "" if recipient_id is None else str(recipient_id).strip()
    return mapping


def load_user_mapping(path: str) -> Dict[str, str]:
    """Load the GitLab username -> Slack ID mapping from a YAML file."""
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read user mapping {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed user mapping {path}: {e}") from e

    mapping = parse_user_mapping(document)
    if not mapping:
        logger.warning("User mapping is empty - no notifications will be sent")
    else:
        logger.info(f"Loaded {len(mapping)} user mappings from {path}")
    return mapping
