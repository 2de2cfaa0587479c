"""
Outgoing webhook service.
Formats stream notifications for Slack, Discord or a generic JSON endpoint
and posts them with a bounded retry.
"""

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "stream_online": {
        "title": "🔴 {display_name} is now live!",
        "text": "📺 {title}\n🎮 {category}\n👥 {viewer_count} viewers\n\n🔗 {url}",
    },
    "authorization_needed": {
        "title": "🔐 Authorization required",
        "text": "{reason}. Authorize the application: {auth_url}",
    },
}


class WebhookProvider(Enum):
    """Supported webhook provider types."""

    SLACK = "slack"
    DISCORD = "discord"
    GENERIC = "generic"

    def __str__(self) -> str:
        return self.value


class _BlankDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


class WebhookService:
    """Send notifications to every configured webhook provider."""

    def __init__(self, config: Optional[Dict[str, Any]]):
        """
        Initialize the webhook service.

        Args:
            config: the ``webhooks`` section of the configuration, as a dict
        """
        self.config = config or {}
        self.enabled = self.config.get("enabled", False)
        self.timeout = self.config.get("timeout", 10)
        self.retry_count = self.config.get("retry_count", 2)
        self.retry_delay = self.config.get("retry_delay", 2)

        self.providers: Dict[str, Dict[str, Any]] = {}

        if self.enabled:
            self._init_providers()

    def _init_providers(self) -> None:
        for provider in WebhookProvider:
            provider_config = self.config.get(provider.value)
            if provider_config and provider_config.get("enabled", False):
                logger.info("Webhook provider %s enabled", provider.value)
                self.providers[provider.value] = provider_config

    def notify(self, event_type: str, data: Dict[str, Any]) -> Dict[str, bool]:
        """
        Send a notification to all providers subscribed to ``event_type``.

        Returns:
            Dictionary with provider names as keys and delivery status as values
        """
        if not self.enabled:
            logger.info("Webhook service disabled, %s not sent", event_type)
            return {}

        results = {}
        for provider_name, provider_config in self.providers.items():
            if event_type not in provider_config.get("events", []):
                continue
            success = self._send_notification(
                provider_name, event_type, data, provider_config
            )
            results[provider_name] = success
            if success:
                logger.info("Notification %s sent to %s", event_type, provider_name)
            else:
                logger.error(
                    "Failed to send notification %s via %s", event_type, provider_name
                )
        return results

    def _send_notification(
        self,
        provider: str,
        event_type: str,
        data: Dict[str, Any],
        config: Dict[str, Any],
    ) -> bool:
        webhook_url = config.get("webhook_url")
        if not webhook_url:
            logger.error("Missing webhook URL for provider %s", provider)
            return False

        if provider == WebhookProvider.SLACK.value:
            payload = self._format_slack_payload(event_type, data, config)
        elif provider == WebhookProvider.DISCORD.value:
            payload = self._format_discord_payload(event_type, data, config)
        else:
            payload = self._format_generic_payload(event_type, data)

        return self._send_with_retry(str(webhook_url), payload, config)

    def _send_with_retry(
        self, url: str, payload: Dict[str, Any], config: Dict[str, Any]
    ) -> bool:
        """
        Post ``payload`` to ``url``, retrying ``retry_count`` times.

        Returns:
            True if a 2xx response was received
        """
        provider_timeout = config.get("timeout", self.timeout)
        headers = {"Content-Type": "application/json"}

        for attempt in range(self.retry_count + 1):
            try:
                response = requests.post(
                    url, json=payload, headers=headers, timeout=provider_timeout
                )
                if 200 <= response.status_code < 300:
                    return True
                logger.warning(
                    "Attempt %d/%d: status %s: %s",
                    attempt + 1,
                    self.retry_count + 1,
                    response.status_code,
                    response.text,
                )
            except requests.RequestException as e:
                logger.warning(
                    "Attempt %d/%d: %s", attempt + 1, self.retry_count + 1, e
                )

            if attempt < self.retry_count:
                time.sleep(self.retry_delay)

        return False

    def _template(self, event_type: str, config: Dict[str, Any]) -> Dict[str, Any]:
        templates = config.get("templates", {})
        return (
            templates.get(event_type)
            or templates.get("default")
            or DEFAULT_TEMPLATES.get(event_type)
            or {"title": event_type.replace("_", " ").title(), "text": ""}
        )

    def _format_slack_payload(
        self, event_type: str, data: Dict[str, Any], config: Dict[str, Any]
    ) -> Dict[str, Any]:
        template = self._template(event_type, config)
        attachment = {
            "color": template.get("color", "#9146ff"),
            "title": self._format_string(template.get("title", ""), data),
            "text": self._format_string(template.get("text", ""), data),
            "fields": [
                {
                    "title": self._format_string(f.get("name", ""), data),
                    "value": self._format_string(f.get("value", ""), data),
                    "short": f.get("short", True),
                }
                for f in template.get("fields", [])
            ],
            "footer": f"Stream Watch • {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "mrkdwn_in": ["text", "fields"],
        }
        payload = {
            "username": config.get("username", "Stream Watch"),
            "attachments": [attachment],
        }
        if config.get("channel"):
            payload["channel"] = config["channel"]
        return payload

    def _format_discord_payload(
        self, event_type: str, data: Dict[str, Any], config: Dict[str, Any]
    ) -> Dict[str, Any]:
        template = self._template(event_type, config)
        description = template.get("description", template.get("text", ""))
        embed = {
            "title": self._format_string(template.get("title", ""), data),
            "description": self._format_string(description, data),
            "color": template.get("color", 9520895),
            "fields": [
                {
                    "name": self._format_string(f.get("name", ""), data),
                    "value": self._format_string(f.get("value", ""), data),
                    "inline": f.get("inline", True),
                }
                for f in template.get("fields", [])
            ],
            "timestamp": datetime.now().isoformat(),
        }
        if data.get("url"):
            embed["url"] = data["url"]
        payload = {
            "username": config.get("username", "Stream Watch"),
            "embeds": [embed],
        }
        if config.get("avatar_url"):
            payload["avatar_url"] = str(config["avatar_url"])
        return payload

    def _format_generic_payload(
        self, event_type: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        return {
            "event_type": event_type,
            "timestamp": datetime.now().isoformat(),
            "data": data,
        }

    def _format_string(self, template_str: str, data: Dict[str, Any]) -> str:
        """Replace ``{var}`` placeholders; unknown variables become empty."""
        try:
            return template_str.format_map(_BlankDict(data))
        except (ValueError, IndexError, AttributeError) as e:
            logger.warning("Error formatting template %r: %s", template_str, e)
            return template_str
