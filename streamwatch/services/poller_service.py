"""Periodic batch polling of pull-mode channels."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import schedule

from .channel_registry import ChannelRegistry
from .config_schema import PollingConfig
from .errors import StreamWatchError
from .helix_service import HelixService
from .models import ChannelRecord, DeliveryMode
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


@dataclass
class PollResult:
    checked: int = 0
    went_live: int = 0
    went_offline: int = 0
    failed_batches: int = 0


class PollerService:
    """Query liveness of every pull-mode channel on a fixed interval."""

    def __init__(
        self,
        registry: ChannelRegistry,
        helix: HelixService,
        notifier: NotificationService,
        config: PollingConfig,
        stop_event: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.helix = helix
        self.notifier = notifier
        self.config = config
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.scheduler = schedule.Scheduler()
        self._thread: Optional[threading.Thread] = None

    def poll(self) -> PollResult:
        """Run one polling tick over all pull-mode channels."""
        result = PollResult()
        channels = self.registry.list_by_mode(DeliveryMode.PULL)
        if not channels:
            return result

        for start in range(0, len(channels), BATCH_SIZE):
            batch = channels[start : start + BATCH_SIZE]
            try:
                went_live, went_offline = self._poll_batch(batch)
                result.went_live += went_live
                result.went_offline += went_offline
                result.checked += len(batch)
            except (StreamWatchError, ValueError) as e:
                result.failed_batches += 1
                logger.error(
                    "Error polling batch %d-%d: %s", start, start + len(batch) - 1, e
                )

            if start + BATCH_SIZE < len(channels):
                if self.stop_event.wait(self.config.batch_delay):
                    break

        return result

    def _poll_batch(self, batch: List[ChannelRecord]) -> tuple[int, int]:
        streams = self.helix.query_liveness([c.channel_id for c in batch])
        live = {s.channel_id: s for s in streams}
        went_live = went_offline = 0

        for channel in batch:
            stream = live.get(channel.channel_id)
            if stream is not None and not channel.is_live:
                logger.info(
                    "Polling detected stream online: %s (%s)",
                    channel.display_name,
                    channel.handle,
                )
                if not self.notifier.notify(channel, stream):
                    logger.error("Notification for %s was not delivered", channel.handle)
                self._record(channel, True)
                went_live += 1
            elif stream is None and channel.is_live:
                logger.info(
                    "Polling detected stream offline: %s (%s)",
                    channel.display_name,
                    channel.handle,
                )
                self._record(channel, False)
                went_offline += 1

        return went_live, went_offline

    def _record(self, channel: ChannelRecord, is_live: bool) -> None:
        try:
            self.registry.update_liveness(channel.channel_id, is_live)
        except StreamWatchError as e:
            # Removed meanwhile, or the write failed; memory already holds it.
            logger.warning("Could not record status of %s: %s", channel.handle, e)

    def _run_pending(self) -> None:
        while not self.stop_event.is_set():
            self.scheduler.run_pending()
            self.stop_event.wait(1)
        self.scheduler.clear()

    def _tick(self) -> None:
        try:
            self.poll()
        except Exception as e:
            logger.exception("Error during polling: %s", e)

    def start(self) -> None:
        """Schedule the polling job and run it in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self.scheduler.clear()
        self.scheduler.every(self.config.interval_seconds).seconds.do(self._tick)
        logger.info("Starting polling manager with interval %s", self.config.interval)
        self._thread = threading.Thread(
            target=self._run_pending, name="pull-poller", daemon=True
        )
        self._thread.start()

    def add_job(self, job: Callable[[], None]) -> None:
        """Run ``job`` on the polling thread at the polling interval.

        Must be called after ``start``, which clears the scheduler.
        """
        self.scheduler.every(self.config.interval_seconds).seconds.do(job)

    def stop(self) -> None:
        self.stop_event.set()
        self.scheduler.clear()
        logger.info("Polling manager stopping")


__all__ = ["PollerService", "PollResult", "BATCH_SIZE"]
