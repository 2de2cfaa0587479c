"""Entrypoint for services package."""

from streamwatch.services.channel_registry import ChannelRegistry
from streamwatch.services.config_service import ConfigService
from streamwatch.services.credential_service import CredentialService
from streamwatch.services.helix_service import HelixService

__all__ = ["ChannelRegistry", "ConfigService", "CredentialService", "HelixService"]
