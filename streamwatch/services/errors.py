"""Exceptions raised by the stream watch services.

Callers are expected to distinguish validation problems (bad input, unknown
channel), authorization problems (a user must authorize the application) and
transient failures of the remote API.
"""

from __future__ import annotations

from typing import Any, Optional


class StreamWatchError(Exception):
    """Base class for every error raised by streamwatch."""


# Validation / lookup ---------------------------------------------------------


class InvalidHandle(StreamWatchError):
    def __init__(self, handle: str):
        super().__init__(f"Invalid channel handle: {handle!r}")
        self.handle = handle


class InvalidPriority(StreamWatchError):
    def __init__(self, priority: str):
        super().__init__(
            f"Invalid priority {priority!r}, expected 'high' or 'normal'"
        )
        self.priority = priority


class ChannelNotFound(StreamWatchError):
    def __init__(self, key: str):
        super().__init__(f"Channel {key} is not tracked")
        self.key = key


class ChannelAlreadyTracked(StreamWatchError):
    def __init__(self, existing: Any):
        super().__init__(f"Channel {existing.handle} is already tracked")
        self.existing = existing


class IdentityNotFound(StreamWatchError):
    def __init__(self, handle: str):
        super().__init__(f"No channel found for handle {handle!r}")
        self.handle = handle


# Persistence -----------------------------------------------------------------


class PersistenceError(StreamWatchError):
    """The in-memory change was applied but could not be written to disk."""


# Credentials / remote API ----------------------------------------------------


class CredentialError(StreamWatchError):
    """A token exchange with the authorization server failed."""


class AuthorizationRequired(StreamWatchError):
    """No valid user-delegated credential; a user must authorize the app."""

    def __init__(self, auth_url: str):
        super().__init__(f"User authorization required: {auth_url}")
        self.auth_url = auth_url


class HelixError(StreamWatchError):
    def __init__(self, status_code: Optional[int], body: str = ""):
        super().__init__(f"API request failed with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


# Push session ----------------------------------------------------------------


class SessionFault(StreamWatchError):
    """Protocol or transport problem that forces the push session to reconnect."""


class ReconnectInProgress(StreamWatchError):
    def __init__(self):
        super().__init__("Reconnection already in progress")


__all__ = [
    "StreamWatchError",
    "InvalidHandle",
    "InvalidPriority",
    "ChannelNotFound",
    "ChannelAlreadyTracked",
    "IdentityNotFound",
    "PersistenceError",
    "CredentialError",
    "AuthorizationRequired",
    "HelixError",
    "SessionFault",
    "ReconnectInProgress",
]
