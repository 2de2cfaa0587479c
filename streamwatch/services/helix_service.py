"""Thin client for the Twitch Helix endpoints the pipelines rely on."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config_schema import TwitchConfig
from .credential_service import CredentialService
from .errors import HelixError, IdentityNotFound
from .models import Identity, LiveStream

logger = logging.getLogger(__name__)

HELIX_URL = "https://api.twitch.tv/helix"
MAX_IDS_PER_REQUEST = 100


class HelixService:
    """Liveness query, identity lookup and event subscription calls.

    Read calls use the service credential, subscription calls use the
    user-delegated one. Every request carries an explicit timeout.
    """

    def __init__(self, config: TwitchConfig, credentials: CredentialService):
        self.config = config
        self.credentials = credentials

    def query_liveness(self, channel_ids: Sequence[str]) -> List[LiveStream]:
        """Return the currently live members of ``channel_ids``.

        Offline channels are simply absent from the result.
        """
        if not channel_ids:
            return []
        if len(channel_ids) > MAX_IDS_PER_REQUEST:
            raise ValueError(
                f"At most {MAX_IDS_PER_REQUEST} channels per request, got {len(channel_ids)}"
            )
        params = [("user_id", cid) for cid in channel_ids]
        params.append(("first", str(MAX_IDS_PER_REQUEST)))
        payload = self._app_request("GET", "/streams", params=params)
        return [LiveStream.model_validate(item) for item in payload.get("data", [])]

    def resolve_identity(self, handle: str) -> Identity:
        payload = self._app_request("GET", "/users", params={"login": handle})
        users = payload.get("data", [])
        if not users:
            raise IdentityNotFound(handle)
        user = users[0]
        return Identity(
            channel_id=user["id"],
            handle=user["login"],
            display_name=user.get("display_name") or user["login"],
        )

    def create_subscription(self, kind: str, channel_id: str, session_id: str) -> str:
        """Subscribe ``kind`` events of a channel to a websocket session."""
        body = {
            "type": kind,
            "version": "1",
            "condition": {"broadcaster_user_id": channel_id},
            "transport": {"method": "websocket", "session_id": session_id},
        }
        response = self._send(
            "POST",
            "/eventsub/subscriptions",
            token=self.credentials.user_token(),
            json=body,
        )
        if response.status_code != 202:
            raise HelixError(response.status_code, response.text)
        data = response.json().get("data", [])
        if not data:
            raise HelixError(response.status_code, "no subscription created")
        return data[0]["id"]

    def delete_subscription(self, subscription_id: str) -> None:
        response = self._send(
            "DELETE",
            "/eventsub/subscriptions",
            token=self.credentials.user_token(),
            params={"id": subscription_id},
        )
        if response.status_code not in (204, 404):
            raise HelixError(response.status_code, response.text)

    # --- helpers ----------------------------------------------------------
    def _app_request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self._send(
            method, path, token=self.credentials.service_token(), **kwargs
        )
        if response.status_code == 401:
            # Token revoked server side; next call exchanges a fresh one.
            self.credentials.invalidate_service_token()
        if response.status_code != 200:
            raise HelixError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise HelixError(response.status_code, f"invalid JSON: {e}") from e

    def _send(
        self, method: str, path: str, token: str, **kwargs: Any
    ) -> requests.Response:
        headers = {
            "Client-ID": self.config.client_id,
            "Authorization": f"Bearer {token}",
        }
        try:
            return requests.request(
                method,
                HELIX_URL + path,
                headers=headers,
                timeout=self.config.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise HelixError(None, str(e)) from e

    def stream_for(self, channel_id: str) -> Optional[LiveStream]:
        streams = self.query_liveness([channel_id])
        return streams[0] if streams else None


__all__ = ["HelixService", "HELIX_URL", "MAX_IDS_PER_REQUEST"]
