"""Persistent registry of tracked channels."""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import ValidationError

from .errors import (
    ChannelAlreadyTracked,
    ChannelNotFound,
    InvalidHandle,
    PersistenceError,
)
from .mode_assignment import assign_modes
from .models import ChannelRecord, DeliveryMode, Priority, normalize_handle, utcnow

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ChannelRegistry:
    """Thread-safe store of ``ChannelRecord`` keyed by handle.

    Every mutation is written through to ``path`` before the call returns.
    When the write fails the in-memory change is kept and
    ``PersistenceError`` is raised, the running process stays authoritative.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = ReadWriteLock()
        self._channels: Dict[str, ChannelRecord] = {}
        self._load()

    # --- persistence ------------------------------------------------------
    def _load(self) -> None:
        if not self._path.exists():
            logger.info("Registry file %s does not exist, starting empty", self._path)
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            logger.error("Error reading registry file %s: %s", self._path, e)
            return
        if not isinstance(raw, list):
            logger.error("Error reading registry file %s: expected a list", self._path)
            return

        records = []
        for item in raw:
            try:
                records.append(ChannelRecord.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping invalid entry in %s: %s", self._path, e)

        seen = set()
        with self._lock.write():
            for record in records:
                if record.channel_id in seen:
                    logger.warning(
                        "Dropping duplicate entry %s (%s)",
                        record.handle,
                        record.channel_id,
                    )
                    continue
                seen.add(record.channel_id)
                self._channels[record.handle] = record

            if len(self._channels) != len(records):
                try:
                    self._persist()
                except PersistenceError:
                    pass  # already logged, memory stays authoritative

        logger.info("Loaded %d channels from %s", len(self._channels), self._path)

    def _persist(self) -> None:
        """Write the whole snapshot. Caller must hold the write lock."""
        data = [r.model_dump(mode="json") for r in self._channels.values()]
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            logger.error("Error writing registry file %s: %s", self._path, e)
            raise PersistenceError(f"Could not save {self._path}: {e}") from e

    # --- mutations --------------------------------------------------------
    def add(self, record: ChannelRecord) -> ChannelRecord:
        record = record.model_copy()
        with self._lock.write():
            existing = self._channels.get(record.handle) or self._find_by_channel_id(
                record.channel_id
            )
            if existing is not None:
                raise ChannelAlreadyTracked(existing.model_copy())
            self._channels[record.handle] = record
            self._persist()
        return record.model_copy()

    def remove(self, handle: str) -> ChannelRecord:
        handle = normalize_handle(handle)
        with self._lock.write():
            record = self._channels.pop(handle, None)
            if record is None:
                raise ChannelNotFound(handle)
            self._persist()
        return record

    def set_priority(self, handle: str, priority: Priority) -> ChannelRecord:
        handle = normalize_handle(handle)
        with self._lock.write():
            record = self._channels.get(handle)
            if record is None:
                raise ChannelNotFound(handle)
            record.priority = priority
            self._persist()
            return record.model_copy()

    def update_liveness(self, channel_id: str, is_live: bool) -> ChannelRecord:
        with self._lock.write():
            record = self._find_by_channel_id(channel_id)
            if record is None:
                raise ChannelNotFound(channel_id)
            record.is_live = is_live
            record.last_checked = utcnow()
            self._persist()
            return record.model_copy()

    def assign_modes(self, capacity: int) -> bool:
        """Re-run push/pull assignment. Returns True if any mode changed."""
        with self._lock.write():
            result = assign_modes(list(self._channels.values()), capacity)
            if not result.changed:
                return False
            self._channels = {r.handle: r for r in result.records}
            self._persist()
        return True

    # --- queries ----------------------------------------------------------
    def get(self, handle: str) -> Optional[ChannelRecord]:
        try:
            handle = normalize_handle(handle)
        except InvalidHandle:
            return None
        with self._lock.read():
            record = self._channels.get(handle)
            return record.model_copy() if record else None

    def get_by_channel_id(self, channel_id: str) -> Optional[ChannelRecord]:
        with self._lock.read():
            record = self._find_by_channel_id(channel_id)
            return record.model_copy() if record else None

    def list(self) -> List[ChannelRecord]:
        with self._lock.read():
            return [r.model_copy() for r in self._channels.values()]

    def list_by_mode(self, mode: DeliveryMode) -> List[ChannelRecord]:
        with self._lock.read():
            return [
                r.model_copy()
                for r in self._channels.values()
                if r.delivery_mode == mode
            ]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._channels)

    def _find_by_channel_id(self, channel_id: str) -> Optional[ChannelRecord]:
        for record in self._channels.values():
            if record.channel_id == channel_id:
                return record
        return None


__all__ = ["ChannelRegistry", "ReadWriteLock"]
