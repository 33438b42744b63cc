"""Best-effort notification of the internal tracker"""
import logging
from typing import Optional

import httpx

from tracker.services.item_query import ItemView

logger = logging.getLogger(__name__)


class InternalTrackerNotifier:
    """Posts items flagged sync-to-internal to an internal issue endpoint.

    Fire-and-forget: failures are logged and never raised.
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url or None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> "InternalTrackerNotifier":
        return cls(settings.internal_tracker_url, timeout=settings.request_timeout_seconds)

    @property
    def enabled(self) -> bool:
        return self.url is not None

    @staticmethod
    def payload_for(item: ItemView) -> dict:
        return {
            "repo": item.repo_full_name,
            "title": item.title,
            "link": item.url,
            "priority": item.priority,
            "assignee": item.assignee,
        }

    def notify(self, item: ItemView) -> bool:
        """Send the notification; returns whether it was accepted."""
        if not self.enabled:
            return False
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.url, json=self.payload_for(item))
                response.raise_for_status()
        except Exception as e:
            logger.warning(
                f"Internal tracker notification failed for "
                f"{item.kind} {item.repo_full_name}#{item.external_key}: {e}"
            )
            return False
        logger.info(f"Notified internal tracker of {item.kind} {item.repo_full_name}#{item.external_key}")
        return True
