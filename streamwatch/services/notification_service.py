"""Notification dispatch for detected online transitions.

Public facade used by both pipelines; internally builds typed events and
routes them through a dispatcher to the configured channels.
"""

from __future__ import annotations

import logging
from typing import Optional

from streamwatch.notifications.channels.webhook import WebhookChannel
from streamwatch.notifications.dispatcher import NotificationDispatcher
from streamwatch.notifications.events import (
    AuthorizationNeeded,
    NotificationEvent,
    StreamOnline,
)
from streamwatch.services.config_schema import WebhooksConfig
from streamwatch.services.models import ChannelRecord, LiveStream
from streamwatch.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


class NotificationService:
    """Deliver "went live" notifications to the configured channels."""

    def __init__(
        self,
        webhooks: Optional[WebhooksConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.dispatcher = dispatcher if dispatcher is not None else NotificationDispatcher()
        self.webhook_service: WebhookService | None = None

        if webhooks is not None:
            self.webhook_service = WebhookService(webhooks.model_dump(mode="json"))
            if self.webhook_service.enabled:
                self.dispatcher.register(WebhookChannel(self.webhook_service))

    def _emit(self, event: NotificationEvent) -> bool:
        if not self.dispatcher.channels():
            logger.warning(
                "No notification channel configured, %s dropped", event.event_type()
            )
            return False
        results = self.dispatcher.dispatch(event)
        return bool(results) and all(results.values())

    def notify(self, record: ChannelRecord, live: Optional[LiveStream] = None) -> bool:
        """Announce that ``record`` went live. Returns True when delivered."""
        event = StreamOnline(
            channel_id=record.channel_id,
            handle=record.handle,
            display_name=record.display_name or record.handle,
            url=record.url,
            title=live.title if live else None,
            category=live.category if live else None,
            viewer_count=live.viewer_count if live else None,
            started_at=live.started_at if live else None,
        )
        return self._emit(event)

    def notify_authorization_needed(self, auth_url: str) -> bool:
        return self._emit(AuthorizationNeeded(auth_url=auth_url))


__all__ = ["NotificationService"]
