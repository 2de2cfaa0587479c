"""Facade wiring the registry, credentials and both delivery pipelines.

Command surfaces such as the CLI talk to ``StreamMonitor`` only; the
pipelines communicate exclusively through the registry and the
notification service.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .channel_registry import ChannelRegistry
from .config_schema import FullConfig
from .credential_service import CredentialService
from .errors import ChannelAlreadyTracked, StreamWatchError
from .helix_service import MAX_IDS_PER_REQUEST, HelixService
from .models import (
    ChannelRecord,
    DeliveryMode,
    LiveStream,
    Priority,
    normalize_handle,
    parse_priority,
)
from .notification_service import NotificationService
from .poller_service import PollerService
from .push_service import PushService, spawn_thread

logger = logging.getLogger(__name__)


class StreamMonitor:
    def __init__(
        self,
        config: FullConfig,
        registry: Optional[ChannelRegistry] = None,
        credentials: Optional[CredentialService] = None,
        helix: Optional[HelixService] = None,
        notifier: Optional[NotificationService] = None,
        poller: Optional[PollerService] = None,
        push: Optional[PushService] = None,
        spawn: Callable[..., Any] = spawn_thread,
    ):
        self.config = config
        self.stop_event = threading.Event()
        self._spawn = spawn
        self._assign_lock = threading.Lock()

        # An empty registry is falsy (it has __len__), so compare with None.
        if registry is None:
            registry = ChannelRegistry(Path(config.storage.registry_path))
        if credentials is None:
            credentials = CredentialService(config.twitch, config.storage.token_path)
        if helix is None:
            helix = HelixService(config.twitch, credentials)
        if notifier is None:
            notifier = NotificationService(config.webhooks)
        if poller is None:
            poller = PollerService(
                registry, helix, notifier, config.polling, self.stop_event
            )
        if push is None:
            push = PushService(
                registry,
                helix,
                credentials,
                notifier,
                config.push,
                self.stop_event,
                spawn=spawn,
            )

        self.registry = registry
        self.credentials = credentials
        self.helix = helix
        self.notifier = notifier
        self.poller = poller
        self.push = push

    @property
    def capacity(self) -> int:
        return self.config.push.capacity if self.config.push.enabled else 0

    # --- lifecycle --------------------------------------------------------
    def start(self) -> None:
        self.reassign()
        self.poller.start()
        # Brings push up once another process stores a user token.
        self.poller.add_job(self._reassign_quietly)
        if self.registry.list_by_mode(DeliveryMode.PUSH):
            if not self.credentials.has_user_credential():
                logger.warning(
                    "Push channels configured but no user authorization, "
                    "authorize at %s",
                    self.credentials.authorization_url(),
                )

    def stop(self) -> None:
        logger.info("Shutting down")
        self.stop_event.set()
        self.poller.stop()
        self.push.disconnect()

    # --- assignment -------------------------------------------------------
    def reassign(self) -> bool:
        """Recompute the push/pull partition and align the push session."""
        with self._assign_lock:
            try:
                changed = self.registry.assign_modes(self.capacity)
            except StreamWatchError as e:
                # Persistence failed but the new modes are live in memory.
                logger.error("Error saving reassigned notification modes: %s", e)
                changed = True
            if changed:
                logger.info("Notification modes reassigned")
            self.push.resync()
        return changed

    def reassign_offline(self) -> bool:
        """Recompute modes without touching the push session."""
        return self.registry.assign_modes(self.capacity)

    def schedule_reassignment(self) -> None:
        self._spawn(self._reassign_quietly)

    def _reassign_quietly(self) -> None:
        try:
            self.reassign()
        except Exception as e:
            logger.exception("Error during reassignment: %s", e)

    # --- channel commands -------------------------------------------------
    def add_channel(self, handle: str, priority: str | Priority = Priority.NORMAL) -> ChannelRecord:
        """Track a new channel.

        Raises:
            InvalidHandle, InvalidPriority: bad input
            ChannelAlreadyTracked: handle or channel id already present
            IdentityNotFound: the handle does not exist remotely
            PersistenceError: tracked in memory but not saved
        """
        handle = normalize_handle(handle)
        level = parse_priority(priority)
        existing = self.registry.get(handle)
        if existing is not None:
            raise ChannelAlreadyTracked(existing)

        identity = self.helix.resolve_identity(handle)
        existing = self.registry.get_by_channel_id(identity.channel_id)
        if existing is not None:
            raise ChannelAlreadyTracked(existing)

        is_live = False
        try:
            is_live = self.helix.stream_for(identity.channel_id) is not None
        except (StreamWatchError, ValueError) as e:
            logger.warning("Error checking stream status for %s: %s", identity.handle, e)

        record = ChannelRecord(
            channel_id=identity.channel_id,
            handle=identity.handle,
            display_name=identity.display_name,
            is_live=is_live,
            priority=level,
        )
        try:
            record = self.registry.add(record)
        finally:
            self.schedule_reassignment()
        logger.info("Added %s (%s) with %s priority", record.display_name, record.handle, level)
        return record

    def remove_channel(self, handle: str) -> ChannelRecord:
        record = self.registry.get(normalize_handle(handle))
        try:
            record = self.registry.remove(handle)
        finally:
            if record is not None:
                if record.delivery_mode == DeliveryMode.PUSH:
                    self._spawn(self.push.forget_channel, record.channel_id)
                self.schedule_reassignment()
        logger.info("Removed %s", record.handle)
        return record

    def set_priority(self, handle: str, priority: str | Priority) -> ChannelRecord:
        level = parse_priority(priority)
        try:
            record = self.registry.set_priority(handle, level)
        finally:
            self.schedule_reassignment()
        logger.info("Priority of %s set to %s", record.handle, level)
        return record

    def get_channel(self, handle: str) -> Optional[ChannelRecord]:
        return self.registry.get(handle)

    def list_channels(self) -> List[ChannelRecord]:
        return self.registry.list()

    def check_now(self) -> List[Tuple[ChannelRecord, Optional[LiveStream]]]:
        """Query every channel now and record liveness without notifying."""
        channels = self.registry.list()
        results: List[Tuple[ChannelRecord, Optional[LiveStream]]] = []
        for start in range(0, len(channels), MAX_IDS_PER_REQUEST):
            batch = channels[start : start + MAX_IDS_PER_REQUEST]
            live = {
                s.channel_id: s
                for s in self.helix.query_liveness([c.channel_id for c in batch])
            }
            for channel in batch:
                stream = live.get(channel.channel_id)
                if (stream is not None) != channel.is_live:
                    try:
                        channel = self.registry.update_liveness(
                            channel.channel_id, stream is not None
                        )
                    except StreamWatchError as e:
                        logger.warning("Could not record status of %s: %s", channel.handle, e)
                results.append((channel, stream))
        return results

    # --- authorization ----------------------------------------------------
    def authorization_url(self) -> str:
        return self.credentials.authorization_url()

    def complete_authorization(self, code: str) -> None:
        """Store the user credential obtained from an authorization code.

        Raises:
            CredentialError: if the code could not be exchanged
        """
        self.credentials.complete_authorization(code)
        if self.registry.list_by_mode(DeliveryMode.PUSH):
            if not self.push.start():
                self._spawn(self.push.resync)

    def status(self) -> Dict[str, Any]:
        channels = self.registry.list()
        push_count = sum(1 for c in channels if c.delivery_mode == DeliveryMode.PUSH)
        return {
            "channels": len(channels),
            "live": sum(1 for c in channels if c.is_live),
            "push_channels": push_count,
            "pull_channels": len(channels) - push_count,
            "capacity": self.capacity,
            "authorized": self.credentials.has_user_credential(),
            "push": self.push.status(),
            "polling_interval": self.config.polling.interval,
        }


__all__ = ["StreamMonitor"]
