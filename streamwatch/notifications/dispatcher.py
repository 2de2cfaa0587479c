"""Dispatcher that routes events to registered channels."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .channels.base import NotificationChannel
from .events import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, channels: Iterable[NotificationChannel] = ()):
        self._channels: List[NotificationChannel] = list(channels)

    def register(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    def channels(self) -> List[NotificationChannel]:
        return list(self._channels)

    def dispatch(self, event: NotificationEvent) -> Dict[str, bool]:
        """Send ``event`` to every channel that supports it.

        A failing channel does not prevent delivery to the others; its
        result is reported as False.
        """
        results = {}
        for ch in self._channels:
            if not ch.supports(event):
                continue
            try:
                results[ch.name] = bool(ch.send(event))
            except Exception as e:
                logger.exception("Channel %s failed on %s: %s", ch.name, event.event_type(), e)
                results[ch.name] = False
        return results


__all__ = ["NotificationDispatcher"]
