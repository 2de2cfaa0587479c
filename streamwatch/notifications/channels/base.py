"""Notification channel interface."""

from __future__ import annotations

from typing import Protocol

from ..events import NotificationEvent


class NotificationChannel(Protocol):
    name: str

    def supports(
        self, event: NotificationEvent
    ) -> bool:  # pragma: no cover (interface)
        ...

    def send(self, event: NotificationEvent) -> bool:  # pragma: no cover (interface)
        ...


__all__ = ["NotificationChannel"]
