"""Notification channel backed by the webhook service."""

from __future__ import annotations

from streamwatch.services.webhook_service import WebhookService

from ..events import NotificationEvent


class WebhookChannel:
    name = "webhook"

    def __init__(self, webhook_service: WebhookService):
        self._svc = webhook_service

    # Event filtering per provider is done by WebhookService from config
    def supports(self, event: NotificationEvent) -> bool:  # pragma: no cover - trivial
        return True

    def send(self, event: NotificationEvent) -> bool:
        payload = event.to_payload()
        event_type = payload.pop("event_type")
        payload.pop("timestamp", None)
        compact = {k: v for k, v in payload.items() if v is not None}
        results = self._svc.notify(event_type, compact)
        return bool(results) and all(results.values())


__all__ = ["WebhookChannel"]
