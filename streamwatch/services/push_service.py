"""Push delivery over the EventSub websocket session.

The session moves through an explicit state machine::

    DISCONNECTED -> CONNECTING -> SESSION_ESTABLISHED -> SUBSCRIBING -> ACTIVE
                        ^                                                 |
                        +------------------ RECONNECTING <----------------+

Subscriptions are bound to a session id, so they are rebuilt from scratch
every time a new session is welcomed. The transport, session id and
subscription map are guarded by a session lock distinct from the registry
lock; network calls never run while holding it.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import websocket
from pydantic import BaseModel, ValidationError

from .channel_registry import ChannelRegistry
from .config_schema import PushConfig
from .credential_service import CredentialService
from .errors import (
    AuthorizationRequired,
    ReconnectInProgress,
    SessionFault,
    StreamWatchError,
)
from .helix_service import HelixService
from .models import ChannelRecord, DeliveryMode, LiveStream
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

STREAM_ONLINE = "stream.online"
STREAM_OFFLINE = "stream.offline"
EVENT_KINDS = (STREAM_ONLINE, STREAM_OFFLINE)
MAX_ERROR_COOLDOWN = 300.0
USER_AGENT = "User-Agent: streamwatch/0.1"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SESSION_ESTABLISHED = "session_established"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"

    def __str__(self) -> str:
        return self.value


# Wire format -----------------------------------------------------------------


class MessageMetadata(BaseModel):
    message_type: str
    message_id: str = ""


class SessionInfo(BaseModel):
    id: str
    status: Optional[str] = None
    reconnect_url: Optional[str] = None


class SubscriptionInfo(BaseModel):
    id: str = ""
    type: str = ""
    status: str = ""
    condition: Dict[str, Any] = {}


class MessagePayload(BaseModel):
    session: Optional[SessionInfo] = None
    subscription: Optional[SubscriptionInfo] = None
    event: Optional[Dict[str, Any]] = None


class EventSubMessage(BaseModel):
    metadata: MessageMetadata
    payload: MessagePayload = MessagePayload()


def spawn_thread(target: Callable[..., Any], *args: Any) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class PushService:
    """Low latency delivery for the capacity-limited set of push channels."""

    def __init__(
        self,
        registry: ChannelRegistry,
        helix: HelixService,
        credentials: CredentialService,
        notifier: NotificationService,
        config: PushConfig,
        stop_event: Optional[threading.Event] = None,
        connect: Optional[Callable[..., Any]] = None,
        spawn: Callable[..., Any] = spawn_thread,
    ):
        self.registry = registry
        self.helix = helix
        self.credentials = credentials
        self.notifier = notifier
        self.config = config
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self._connect_fn = connect or websocket.create_connection
        self._spawn = spawn

        self._session_lock = threading.RLock()
        self._reconnect_guard = threading.Lock()
        self._transport: Any = None
        self._state = SessionState.DISCONNECTED
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._restart_pending = False
        self._resync_pending = False
        self.session_id: Optional[str] = None
        self.subscriptions: Dict[Tuple[str, str], str] = {}
        self.consecutive_errors = 0

    # --- state ------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug("Event session %s -> %s", self._state, state)
            self._state = state

    def push_channels(self) -> List[ChannelRecord]:
        return self.registry.list_by_mode(DeliveryMode.PUSH)

    def status(self) -> Dict[str, Any]:
        with self._session_lock:
            return {
                "state": self._state.value,
                "session_id": self.session_id,
                "subscriptions": len(self.subscriptions),
            }

    # --- lifecycle --------------------------------------------------------
    def start(self) -> bool:
        """Open a session if push channels exist and none is running."""
        if not self.config.enabled or not self.push_channels():
            return False
        with self._session_lock:
            if self._running:
                if self._state == SessionState.DISCONNECTED:
                    # The loop is winding down; it restarts itself on exit.
                    self._restart_pending = True
                return False
            if self._state != SessionState.DISCONNECTED:
                return False
            self._running = True
            self._set_state(SessionState.CONNECTING)
        logger.info("Starting event session handler")
        self._thread = self._spawn(self.run)
        return True

    def run(self) -> None:
        """Blocking receive loop.

        Returns on shutdown, when no push channel is left, or when the
        session was closed because user authorization is missing. A start
        requested while the loop was exiting spawns a fresh loop.
        """
        with self._session_lock:
            self._running = True
            if self._state == SessionState.DISCONNECTED:
                self._set_state(SessionState.CONNECTING)
        try:
            while not self.stop_event.is_set():
                if self._state == SessionState.DISCONNECTED:
                    return
                if not self.push_channels():
                    logger.info("No push channels - closing event session")
                    self.disconnect()
                    return

                if self._transport is None:
                    if self._reconnect_guard.locked():
                        self.stop_event.wait(0.5)
                        continue
                    try:
                        self._connect()
                    except (websocket.WebSocketException, OSError, SessionFault) as e:
                        logger.error("Failed to connect to event session: %s", e)
                        if not self._note_failure() or self.stop_event.wait(
                            self.config.retry_delay
                        ):
                            return
                    continue

                try:
                    message = self._read()
                except (websocket.WebSocketException, OSError, SessionFault) as e:
                    if self.stop_event.is_set() or self._state == SessionState.DISCONNECTED:
                        return
                    logger.error("Error reading event session message: %s", e)
                    if not self._recover():
                        return
                    continue

                self.consecutive_errors = 0
                try:
                    self.handle_message(message)
                except SessionFault as e:
                    logger.warning("Event session fault: %s", e)
                    if not self._recover():
                        return
                    continue

                if self._state == SessionState.DISCONNECTED:
                    return
        finally:
            if self.stop_event.is_set():
                self.disconnect()
            logger.info("Event session handler stopped")
            self._finish_run()

    def _finish_run(self) -> None:
        with self._session_lock:
            restart = (
                self._restart_pending
                and not self.stop_event.is_set()
                and self._state == SessionState.DISCONNECTED
            )
            self._restart_pending = False
            self._running = restart
            if restart:
                self._set_state(SessionState.CONNECTING)
        if restart:
            logger.info("Restarting event session handler")
            self._thread = self._spawn(self.run)

    def _note_failure(self) -> bool:
        """Count a failure and apply the escalating cooldown past the threshold.

        Returns False when shutdown was requested during the wait.
        """
        self.consecutive_errors += 1
        excess = self.consecutive_errors - self.config.max_consecutive_errors
        if excess < 0:
            return True
        delay = min(self.config.error_cooldown * (excess + 1), MAX_ERROR_COOLDOWN)
        logger.warning(
            "Too many consecutive errors (%d), backing off for %.0fs",
            self.consecutive_errors,
            delay,
        )
        return not self.stop_event.wait(delay)

    def _recover(self) -> bool:
        if not self._note_failure():
            return False
        if not self.push_channels():
            logger.info("No push channels - closing event session after error")
            self.disconnect()
            return False
        try:
            self.reconnect()
        except ReconnectInProgress:
            logger.info("Reconnection already in progress")
        except (websocket.WebSocketException, OSError, SessionFault) as e:
            logger.error("Failed to reconnect: %s", e)
            if self.stop_event.wait(self.config.retry_delay):
                return False
        return True

    def reconnect(self) -> None:
        """Drop the current session and dial a new one.

        Raises:
            ReconnectInProgress: if another reconnect is already running.
        """
        if not self._reconnect_guard.acquire(blocking=False):
            raise ReconnectInProgress()
        try:
            logger.info("Attempting to reconnect event session...")
            with self._session_lock:
                self._set_state(SessionState.RECONNECTING)
                self._close_transport()
                self.session_id = None
                self.subscriptions = {}
            if self.stop_event.wait(self.config.reconnect_cooldown):
                return
            self._connect(reconnecting=True)
            logger.info("Event session reconnection successful")
        finally:
            self._reconnect_guard.release()

    def disconnect(self) -> None:
        with self._session_lock:
            self._close_transport()
            self.session_id = None
            self.subscriptions = {}
            self._resync_pending = False
            self._set_state(SessionState.DISCONNECTED)
        logger.info("Event session closed")

    def _connect(self, reconnecting: bool = False) -> None:
        with self._session_lock:
            expected = SessionState.RECONNECTING if reconnecting else None
            if expected is not None and self._state != expected:
                raise SessionFault("session closed while reconnecting")
            self._set_state(SessionState.CONNECTING)
        transport = self._connect_fn(
            self.config.endpoint,
            timeout=self.config.handshake_timeout,
            header=[USER_AGENT],
        )
        transport.settimeout(self.config.read_timeout)
        with self._session_lock:
            if self._state != SessionState.CONNECTING:
                transport.close()
                raise SessionFault("session closed while connecting")
            self._transport = transport
        logger.info("Event session connection established")

    def _close_transport(self) -> None:
        if self._transport is None:
            return
        try:
            self._transport.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.debug("Error closing event session transport: %s", e)
        self._transport = None

    def _read(self) -> EventSubMessage:
        with self._session_lock:
            transport = self._transport
        if transport is None:
            raise SessionFault("no open transport")
        raw = transport.recv()
        try:
            return EventSubMessage.model_validate_json(raw)
        except ValidationError as e:
            raise SessionFault(f"malformed frame: {e}") from e

    # --- inbound messages -------------------------------------------------
    def handle_message(self, message: EventSubMessage) -> None:
        kind = message.metadata.message_type
        payload = message.payload

        if kind == "session_welcome":
            self._on_welcome(payload.session)
        elif kind == "notification":
            if payload.subscription is not None and payload.event is not None:
                self.handle_event(payload.subscription.type, payload.event)
        elif kind == "session_keepalive":
            pass
        elif kind == "session_reconnect":
            raise SessionFault("server requested a reconnect")
        elif kind == "revocation":
            if payload.subscription is not None:
                channel_id = payload.subscription.condition.get("broadcaster_user_id", "")
                logger.warning(
                    "Subscription %s revoked (%s)",
                    payload.subscription.id,
                    payload.subscription.status,
                )
                self._drop_bookkeeping(channel_id)
        else:
            logger.warning("Unknown message type: %s", kind)

    def _on_welcome(self, session: Optional[SessionInfo]) -> None:
        if session is None or not session.id:
            raise SessionFault("welcome message without session id")
        with self._session_lock:
            self.session_id = session.id
            self.subscriptions = {}
            self._set_state(SessionState.SESSION_ESTABLISHED)
        logger.info("Event session established: %s", session.id)

        try:
            self.credentials.user_token()
        except AuthorizationRequired as e:
            logger.warning(
                "No user access token for event subscriptions, closing session. "
                "Authorize at %s",
                e.auth_url,
            )
            self.disconnect()
            self.notifier.notify_authorization_needed(e.auth_url)
            return

        self._spawn(self.subscribe_all)

    def handle_event(self, kind: str, event: Dict[str, Any]) -> None:
        channel_id = event.get("broadcaster_user_id", "")
        channel = self.registry.get_by_channel_id(channel_id)
        if channel is None:
            logger.warning("Received %s for unknown channel %s", kind, channel_id)
            return

        if kind == STREAM_ONLINE:
            if channel.is_live:
                return
            logger.info("Stream online: %s (%s)", channel.display_name, channel.handle)
            stream: Optional[LiveStream] = None
            try:
                stream = self.helix.stream_for(channel_id)
            except (StreamWatchError, ValueError) as e:
                logger.error("Error getting stream info for %s: %s", channel.handle, e)
            if not self.notifier.notify(channel, stream):
                logger.error("Notification for %s was not delivered", channel.handle)
            self._record(channel, True)
        elif kind == STREAM_OFFLINE:
            if not channel.is_live:
                return
            logger.info("Stream offline: %s (%s)", channel.display_name, channel.handle)
            self._record(channel, False)
        else:
            logger.warning("Unknown subscription type: %s", kind)

    def _record(self, channel: ChannelRecord, is_live: bool) -> None:
        try:
            self.registry.update_liveness(channel.channel_id, is_live)
        except StreamWatchError as e:
            logger.warning("Could not record status of %s: %s", channel.handle, e)

    # --- subscriptions ----------------------------------------------------
    def subscribe_all(self) -> int:
        """Subscribe every push channel to the current session.

        Returns the number of channels fully subscribed.
        """
        with self._session_lock:
            session_id = self.session_id
            if session_id is None:
                logger.warning("No event session available for subscriptions")
                return 0
            self._set_state(SessionState.SUBSCRIBING)
            self.subscriptions = {}
            self._resync_pending = False

        channels = self.push_channels()
        logger.info("Subscribing to %d push channels", len(channels))
        count = self._subscribe_channels(channels, session_id)

        with self._session_lock:
            if self.session_id != session_id:
                return count
            self._set_state(SessionState.ACTIVE)
            pending, self._resync_pending = self._resync_pending, False
        if pending:
            self.resync()
        return count

    def _subscribe_channels(self, channels: List[ChannelRecord], session_id: str) -> int:
        count = 0
        for i, channel in enumerate(channels):
            if i and self.stop_event.wait(self.config.subscribe_delay):
                break
            try:
                self.subscribe_channel(channel.channel_id, session_id)
                count += 1
            except AuthorizationRequired as e:
                logger.warning("Authorization lost while subscribing: %s", e.auth_url)
                break
            except (StreamWatchError, ValueError, KeyError) as e:
                logger.error("Failed to subscribe to events for %s: %s", channel.handle, e)
        return count

    def subscribe_channel(self, channel_id: str, session_id: Optional[str] = None) -> None:
        session_id = session_id or self.session_id
        if not session_id:
            raise SessionFault("no event session available")
        for kind in EVENT_KINDS:
            with self._session_lock:
                if (channel_id, kind) in self.subscriptions:
                    continue
            subscription_id = self.helix.create_subscription(kind, channel_id, session_id)
            with self._session_lock:
                if self.session_id != session_id:
                    return
                self.subscriptions[(channel_id, kind)] = subscription_id
        logger.info("Subscribed to events for channel %s", channel_id)

    def _drop_bookkeeping(self, channel_id: str) -> List[str]:
        with self._session_lock:
            return [
                sub_id
                for sub_id in (
                    self.subscriptions.pop((channel_id, kind), None)
                    for kind in EVENT_KINDS
                )
                if sub_id
            ]

    def forget_channel(self, channel_id: str) -> None:
        """Cancel the remote subscriptions of a channel that left push mode."""
        for subscription_id in self._drop_bookkeeping(channel_id):
            try:
                self.helix.delete_subscription(subscription_id)
            except StreamWatchError as e:
                logger.warning("Could not delete subscription %s: %s", subscription_id, e)

    def resync(self) -> None:
        """Bring the session in line with the current push/pull partition."""
        channels = self.push_channels()
        if not channels:
            if self._state != SessionState.DISCONNECTED:
                logger.info("No push channels - closing unused event session")
                self.disconnect()
            return

        with self._session_lock:
            state, session_id = self._state, self.session_id
            if state == SessionState.SUBSCRIBING:
                self._resync_pending = True
                return
        if state == SessionState.DISCONNECTED:
            if self.credentials.has_user_credential():
                self.start()
            return
        if state != SessionState.ACTIVE or session_id is None:
            return  # the next welcome subscribes the whole set

        wanted = {c.channel_id for c in channels}
        with self._session_lock:
            subscribed = {channel_id for channel_id, _kind in self.subscriptions}
        for channel_id in subscribed - wanted:
            self.forget_channel(channel_id)
        missing = [c for c in channels if c.channel_id not in subscribed]
        if missing:
            self._subscribe_channels(missing, session_id)


__all__ = ["PushService", "SessionState", "EventSubMessage", "EVENT_KINDS"]
