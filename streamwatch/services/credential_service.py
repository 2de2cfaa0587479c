"""Service and user-delegated credentials for the Twitch API."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from .config_schema import TwitchConfig
from .errors import AuthorizationRequired, CredentialError
from .models import Credential, utcnow

logger = logging.getLogger(__name__)

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
AUTHORIZE_URL = "https://id.twitch.tv/oauth2/authorize"


class CredentialService:
    """Own the two credentials every API call depends on.

    The service credential (client credentials grant) is refreshed silently
    whenever it is missing or expired. The user-delegated credential can only
    be obtained through ``complete_authorization``; it is persisted to
    ``token_path`` so it survives restarts.
    """

    def __init__(
        self,
        config: TwitchConfig,
        token_path: str | Path,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self._token_path = Path(token_path)
        self._clock = clock
        self._lock = threading.Lock()
        self._service: Optional[Credential] = None
        self._token_mtime = self._token_file_mtime()
        self._user: Optional[Credential] = self._load_user_credential()

    # --- service credential -----------------------------------------------
    def service_token(self) -> str:
        """Return a valid app access token, exchanging a new one if needed.

        Raises:
            CredentialError: if the exchange fails.
        """
        with self._lock:
            if self._service is None or not self._service.is_valid(self._clock()):
                self._service = self._exchange({"grant_type": "client_credentials"})
                logger.info("Obtained new service access token")
            return self._service.token

    def invalidate_service_token(self) -> None:
        with self._lock:
            self._service = None

    # --- user-delegated credential ----------------------------------------
    def user_token(self) -> str:
        """Return the user access token.

        Raises:
            AuthorizationRequired: if no valid user credential is available.
        """
        with self._lock:
            user = self._current_user()
        if user is None:
            raise AuthorizationRequired(self.authorization_url())
        return user.token

    def has_user_credential(self) -> bool:
        with self._lock:
            return self._current_user() is not None

    def authorization_url(self) -> str:
        query = urlencode(
            {
                "client_id": self.config.client_id,
                "redirect_uri": self.config.redirect_uri,
                "response_type": "code",
                "scope": " ".join(self.config.scopes),
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    def complete_authorization(self, code: str) -> Credential:
        """Exchange an authorization code for the user credential."""
        credential = self._exchange(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
            }
        )
        with self._lock:
            self._user = credential
            try:
                self._save_user_credential(credential)
            except OSError as e:
                logger.warning("Failed to save user token to %s: %s", self._token_path, e)
            self._token_mtime = self._token_file_mtime()
        logger.info("Obtained user access token via authorization code")
        return credential

    # --- helpers ----------------------------------------------------------
    def _exchange(self, grant: Dict[str, str]) -> Credential:
        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            **grant,
        }
        try:
            response = requests.post(TOKEN_URL, data=data, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise CredentialError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            raise CredentialError(
                f"Token exchange failed with status {response.status_code}: {response.text}"
            )
        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialError(f"Malformed token response: {e}") from e

        return Credential(
            token=token, expires_at=self._clock() + timedelta(seconds=expires_in)
        )

    def _current_user(self) -> Optional[Credential]:
        """Return the valid user credential, or None. Caller must hold the lock.

        When the credential in memory is missing or expired and the token
        file has been replaced since it was last read (for instance by
        ``streamwatch authorize --code`` in another process), it is read again.
        """
        now = self._clock()
        if self._user is None or not self._user.is_valid(now):
            mtime = self._token_file_mtime()
            if mtime is not None and mtime != self._token_mtime:
                self._token_mtime = mtime
                self._user = self._load_user_credential() or self._user
        if self._user is not None and self._user.is_valid(now):
            return self._user
        return None

    def _token_file_mtime(self) -> Optional[int]:
        try:
            return self._token_path.stat().st_mtime_ns
        except OSError:
            return None

    def _load_user_credential(self) -> Optional[Credential]:
        if not self._token_path.exists():
            return None
        try:
            raw = json.loads(self._token_path.read_text(encoding="utf-8"))
            credential = Credential.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable user token file %s: %s", self._token_path, e)
            return None
        logger.info("Loaded user access token (expires %s)", credential.expires_at)
        return credential

    def _save_user_credential(self, credential: Credential) -> None:
        self._token_path.parent.mkdir(parents=True, exist_ok=True)
        self._token_path.write_text(
            json.dumps(credential.model_dump(mode="json"), indent=2), encoding="utf-8"
        )


__all__ = ["CredentialService", "TOKEN_URL", "AUTHORIZE_URL"]
