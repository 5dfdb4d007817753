"""Completion notifications: a fire-and-forget side channel.

Every notifier method is an at-most-once attempt that never raises.
Delivery failures are logged and dropped; the job that triggered the
notification has already reached its terminal state and is unaffected.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)

JOB_COMPLETE_EVENT = "generation_complete"
BATCH_COMPLETE_EVENT = "batch_generation_complete"


class Notifier(Protocol):
    def notify_job_complete(self, owner: str, summary: Dict[str, Any]) -> None: ...

    def notify_batch_complete(self, owner: str, summary: Dict[str, Any]) -> None: ...


def _event(name: str, owner: str, summary: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "event": name,
        "owner": owner,
        "data": summary,
        "sent_at": datetime.now(timezone.utc).isoformat(),
    }


class LogNotifier:
    """Writes events to the application log. Used when no transport is configured."""

    def notify_job_complete(self, owner: str, summary: Dict[str, Any]) -> None:
        logger.info(JOB_COMPLETE_EVENT, extra={"owner": owner, "summary": summary})

    def notify_batch_complete(self, owner: str, summary: Dict[str, Any]) -> None:
        logger.info(BATCH_COMPLETE_EVENT, extra={"owner": owner, "summary": summary})


class WebhookNotifier:
    """POSTs each event as JSON to a configured URL.

    A single attempt per event; retrying belongs to whatever sits behind
    the webhook.
    """

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def _send(self, event: Dict[str, Any]) -> None:
        try:
            resp = self._get_client().post(self.url, json=event)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Notification %s for %s not delivered: %s", event["event"], event["owner"], e)
        except Exception as e:  # noqa: BLE001
            logger.error("Notification %s failed unexpectedly: %s", event["event"], e, exc_info=True)

    def notify_job_complete(self, owner: str, summary: Dict[str, Any]) -> None:
        self._send(_event(JOB_COMPLETE_EVENT, owner, summary))

    def notify_batch_complete(self, owner: str, summary: Dict[str, Any]) -> None:
        self._send(_event(BATCH_COMPLETE_EVENT, owner, summary))


def build_notifier(settings: Settings) -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url, settings.notification_timeout)
    return LogNotifier()


def notify_safely(callback, owner: str, summary: Dict[str, Any]) -> None:
    """Invoke a notifier method, absorbing any error a custom notifier raises."""
    try:
        callback(owner, summary)
    except Exception as e:  # noqa: BLE001
        logger.warning("Notifier raised and was ignored: %s", e)
