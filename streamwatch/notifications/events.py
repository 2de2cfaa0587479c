"""Typed notification events.

Each event is an immutable dataclass; ``event_type`` gives the key that
channels and webhook templates are selected by.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict


@dataclass(frozen=True)
class NotificationEvent:
    # kw_only so that subclasses can declare required fields
    timestamp: datetime = field(default_factory=lambda: datetime.now(), kw_only=True)

    def event_type(self) -> str:
        # CamelCase -> snake_case
        name = self.__class__.__name__
        out = []
        for i, c in enumerate(name):
            if c.isupper() and i and (not name[i - 1].isupper()):
                out.append("_")
            out.append(c.lower())
        return "".join(out)

    def to_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type()
        return data


@dataclass(frozen=True)
class StreamOnline(NotificationEvent):
    channel_id: str
    handle: str
    display_name: str
    url: str
    title: str | None = None
    category: str | None = None
    viewer_count: int | None = None
    started_at: str | None = None


@dataclass(frozen=True)
class AuthorizationNeeded(NotificationEvent):
    auth_url: str
    reason: str = "No valid user access token for event subscriptions"


__all__ = [
    "NotificationEvent",
    "StreamOnline",
    "AuthorizationNeeded",
]
