# slack_service.py
import logging
from typing import List, Mapping, Protocol

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.webhook import WebhookClient

logger = logging.getLogger(__name__)

SLACK_RESPONSE_OK = "ok"


class SlackNotifier(Protocol):
    def deliver(self, recipient_id: str, message: str) -> bool:
        ...


class WebhookNotifier:
    """Posts the digest to a Slack incoming webhook. Every recipient gets the same channel."""

    def __init__(self, webhook_url: str, client: WebhookClient = None):
        self.client = client or WebhookClient(webhook_url)

    def deliver(self, recipient_id: str, message: str) -> bool:
        try:
            response = self.client.send(text=message)
        except (OSError, ValueError, SlackClientError) as e:
            logger.error(f"Failed to make notification request: {e}")
            return False

        if response.body != SLACK_RESPONSE_OK:
            logger.error(f"Slack webhook answered {response.status_code}: {response.body}")
            return False
        return True


class DirectMessageNotifier:
    """Sends the digest as a Direct Message to a Slack user."""

    def __init__(self, token: str, client: WebClient = None):
        self.client = client or WebClient(token=token)

    def deliver(self, recipient_id: str, message: str) -> bool:
        try:
            self.client.chat_postMessage(channel=recipient_id, text=message)
        except SlackApiError as e:
            logger.error(f"Error sending Slack message to {recipient_id}: {e.response['error']}")
            return False
        except (OSError, SlackClientError) as e:
            logger.error(f"Failed to reach Slack for {recipient_id}: {e}")
            return False
        logger.info(f"Sent notification to Slack user {recipient_id}")
        return True


def deliver_all(notifier: SlackNotifier, messages: Mapping[str, str]) -> List[str]:
    """Deliver every message, carrying on past failures. Returns the recipients that failed."""
    failed = []
    for recipient_id, message in messages.items():
        if not notifier.deliver(recipient_id, message):
            failed.append(recipient_id)
    return failed
