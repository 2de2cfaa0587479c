import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator

MIN_POLLING_SECONDS = 30
_INTERVAL_RE = re.compile(r"^(\d+)([smh])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def parse_interval(value: str) -> int:
    """Convert an interval such as ``90s``, ``5m`` or ``1h`` to seconds."""
    match = _INTERVAL_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid interval format: {value}")
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


class TwitchConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8080/oauth/callback"
    scopes: List[str] = ["user:read:email"]
    timeout: int = Field(default=10, gt=0)


class StorageConfig(BaseModel):
    registry_path: str = "data/channels.json"
    token_path: str = "data/user_token.json"


class PollingConfig(BaseModel):
    interval: str = "90s"
    batch_delay: float = Field(default=1.0, ge=0)

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value: str) -> str:
        seconds = parse_interval(value)
        if seconds < MIN_POLLING_SECONDS:
            raise ValueError(
                f"Polling interval {value} is below the {MIN_POLLING_SECONDS}s minimum"
            )
        return value.strip()

    @property
    def interval_seconds(self) -> int:
        return parse_interval(self.interval)


class PushConfig(BaseModel):
    enabled: bool = True
    capacity: int = Field(default=3, ge=0)
    endpoint: str = "wss://eventsub.wss.twitch.tv/ws"
    handshake_timeout: float = 15.0
    read_timeout: float = 70.0
    reconnect_cooldown: float = 2.0
    retry_delay: float = 5.0
    error_cooldown: float = 30.0
    max_consecutive_errors: int = Field(default=5, gt=0)
    subscribe_delay: float = 0.1


class NotificationField(BaseModel):
    """Configuration for a field in a notification."""

    name: str
    value: str
    short: bool = True  # For Slack
    inline: bool = True  # For Discord


class SlackTemplateConfig(BaseModel):
    title: str
    text: str
    color: str = "#9146ff"
    fields: List[NotificationField] = []


class DiscordTemplateConfig(BaseModel):
    title: str
    description: str
    color: int = 9520895  # Twitch purple in decimal
    fields: List[NotificationField] = []


class SlackConfig(BaseModel):
    enabled: bool = False
    webhook_url: HttpUrl
    channel: str = ""
    username: str = "Stream Watch"
    timeout: int = 10
    events: List[str] = ["stream_online"]
    templates: Dict[str, SlackTemplateConfig] = {}


class DiscordConfig(BaseModel):
    enabled: bool = False
    webhook_url: HttpUrl
    username: str = "Stream Watch"
    avatar_url: Optional[HttpUrl] = None
    timeout: int = 10
    events: List[str] = ["stream_online"]
    templates: Dict[str, DiscordTemplateConfig] = {}


class GenericWebhookConfig(BaseModel):
    enabled: bool = False
    webhook_url: HttpUrl
    timeout: int = 10
    events: List[str] = ["stream_online", "authorization_needed"]


class WebhooksConfig(BaseModel):
    """Global webhook configuration."""

    enabled: bool = False
    timeout: int = 10
    retry_count: int = 2
    retry_delay: int = 2
    slack: Optional[SlackConfig] = None
    discord: Optional[DiscordConfig] = None
    generic: Optional[GenericWebhookConfig] = None


class LoggingConfig(BaseModel):
    level: str = "INFO"


class FullConfig(BaseModel):
    twitch: TwitchConfig = TwitchConfig()
    storage: StorageConfig = StorageConfig()
    polling: PollingConfig = PollingConfig()
    push: PushConfig = PushConfig()
    webhooks: Optional[WebhooksConfig] = None
    logging: LoggingConfig = LoggingConfig()
