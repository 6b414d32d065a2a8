"""
Notification dispatcher
Delivers operation events to the broadcast service over a webhook
"""
import httpx
import logging
from typing import Iterable, Optional
from smartwaste.config import settings
from smartwaste.services.events import Event

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Best-effort delivery of events; failures are logged, never raised"""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds

    async def dispatch(self, events: Iterable[Event]) -> int:
        """
        Deliver events in order

        Returns:
            Number of events delivered
        """
        events = list(events)
        if not events:
            return 0

        if not self.webhook_url:
            for event in events:
                logger.info(f"Event {event.name} -> {event.room}: {event.payload}")
            return 0

        delivered = 0
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                for event in events:
                    if await self._send(client, event):
                        delivered += 1
        except Exception as e:
            logger.warning(f"Notification dispatch failed: {e}")
        return delivered

    async def _send(self, client: httpx.AsyncClient, event: Event) -> bool:
        try:
            response = await client.post(
                self.webhook_url,
                json={"event": event.name, "room": event.room, "data": event.payload},
                headers={"Content-Type": "application/json"}
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver {event.name} to {event.room}: {e}")
            return False


# Global dispatcher instance
dispatcher = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher
