"""Data model shared by the registry, the pipelines and the API client."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidHandle, InvalidPriority

HANDLE_PATTERN = re.compile(r"^[a-z0-9_]{1,25}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"

    def __str__(self) -> str:
        return self.value


class DeliveryMode(str, Enum):
    PUSH = "push"
    PULL = "pull"

    def __str__(self) -> str:
        return self.value


# Values written by the first deployment, before push/pull were named.
_LEGACY_MODES = {"websocket": DeliveryMode.PUSH, "polling": DeliveryMode.PULL}


def normalize_handle(raw: str) -> str:
    """Return the canonical form of a user supplied handle.

    Strips whitespace and a leading ``@`` and lower-cases the rest.

    Raises:
        InvalidHandle: if nothing usable is left.
    """
    handle = (raw or "").strip().lstrip("@").lower()
    if not HANDLE_PATTERN.match(handle):
        raise InvalidHandle(raw)
    return handle


def parse_priority(value: str | Priority) -> Priority:
    if isinstance(value, Priority):
        return value
    try:
        return Priority((value or "").strip().lower())
    except ValueError:
        raise InvalidPriority(value) from None


class ChannelRecord(BaseModel):
    """One tracked channel, as stored in the registry file."""

    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(validation_alias=AliasChoices("channel_id", "user_id"))
    handle: str = Field(validation_alias=AliasChoices("handle", "username"))
    display_name: str = ""
    is_live: bool = False
    last_checked: datetime = Field(default_factory=utcnow)
    priority: Priority = Priority.NORMAL
    delivery_mode: DeliveryMode = Field(
        default=DeliveryMode.PULL,
        validation_alias=AliasChoices("delivery_mode", "notification_mode"),
    )

    @field_validator("handle")
    @classmethod
    def _normalize_handle(cls, value: str) -> str:
        try:
            return normalize_handle(value)
        except InvalidHandle as e:
            raise ValueError(str(e)) from e

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value):
        return value or Priority.NORMAL

    @field_validator("delivery_mode", mode="before")
    @classmethod
    def _legacy_mode(cls, value):
        if not value:
            return DeliveryMode.PULL
        return _LEGACY_MODES.get(value, value)

    @property
    def url(self) -> str:
        return f"https://twitch.tv/{self.handle}"


class Credential(BaseModel):
    """An access token with its absolute expiry."""

    token: str
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return bool(self.token) and (now or utcnow()) < self.expires_at


class Identity(BaseModel):
    channel_id: str
    handle: str
    display_name: str


class LiveStream(BaseModel):
    """Metadata of a channel that is currently live."""

    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(validation_alias=AliasChoices("channel_id", "user_id"))
    handle: str = Field(
        default="", validation_alias=AliasChoices("handle", "user_login")
    )
    display_name: str = Field(
        default="", validation_alias=AliasChoices("display_name", "user_name")
    )
    title: str = ""
    category: str = Field(
        default="", validation_alias=AliasChoices("category", "game_name")
    )
    viewer_count: int = 0
    started_at: Optional[str] = None


__all__ = [
    "Priority",
    "DeliveryMode",
    "ChannelRecord",
    "Credential",
    "Identity",
    "LiveStream",
    "normalize_handle",
    "parse_priority",
    "utcnow",
]
