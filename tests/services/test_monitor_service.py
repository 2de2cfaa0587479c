"""Tests for the StreamMonitor facade."""

from unittest import mock

import pytest

from streamwatch.services.config_schema import FullConfig
from streamwatch.services.credential_service import CredentialService
from streamwatch.services.errors import (
    ChannelAlreadyTracked,
    ChannelNotFound,
    IdentityNotFound,
    InvalidHandle,
    InvalidPriority,
    PersistenceError,
)
from streamwatch.services.helix_service import HelixService
from streamwatch.services.models import DeliveryMode, Identity, LiveStream, Priority
from streamwatch.services.monitor_service import StreamMonitor
from streamwatch.services.notification_service import NotificationService
from streamwatch.services.poller_service import PollerService
from streamwatch.services.push_service import PushService


@pytest.fixture
def helix():
    client = mock.create_autospec(HelixService, instance=True)
    client.resolve_identity.side_effect = lambda handle: Identity(
        channel_id=f"id-{handle}", handle=handle, display_name=handle.title()
    )
    client.stream_for.return_value = None
    client.query_liveness.return_value = []
    return client


@pytest.fixture
def credentials():
    creds = mock.create_autospec(CredentialService, instance=True)
    creds.has_user_credential.return_value = True
    creds.authorization_url.return_value = "https://auth.example"
    return creds


@pytest.fixture
def parts(registry, helix, credentials):
    return dict(
        registry=registry,
        credentials=credentials,
        helix=helix,
        notifier=mock.create_autospec(NotificationService, instance=True),
        poller=mock.create_autospec(PollerService, instance=True),
        push=mock.create_autospec(PushService, instance=True),
    )


@pytest.fixture
def make_monitor(parts, sync_spawn):
    def _factory(**config):
        cfg = FullConfig.model_validate(config or {"push": {"capacity": 1}})
        return StreamMonitor(cfg, spawn=sync_spawn, **parts)

    return _factory


@pytest.fixture
def monitor(make_monitor):
    return make_monitor()


def modes(monitor):
    return {c.handle: c.delivery_mode for c in monitor.list_channels()}


def test_injected_empty_registry_is_used(parts, sync_spawn):
    assert len(parts["registry"]) == 0

    monitor = StreamMonitor(FullConfig(), spawn=sync_spawn, **parts)

    for name, part in parts.items():
        assert getattr(monitor, name) is part


def test_capacity_is_zero_when_push_disabled(make_monitor):
    assert make_monitor(push={"capacity": 4}).capacity == 4
    assert make_monitor(push={"capacity": 4, "enabled": False}).capacity == 0


def test_add_channel_resolves_and_reassigns(monitor, helix, parts):
    helix.stream_for.return_value = LiveStream(channel_id="id-alpha")

    record = monitor.add_channel(" @Alpha ", "high")

    assert record.channel_id == "id-alpha"
    assert record.is_live is True
    helix.resolve_identity.assert_called_once_with("alpha")
    assert monitor.get_channel("alpha").delivery_mode == DeliveryMode.PUSH
    parts["push"].resync.assert_called()


def test_add_channel_rejects_invalid_input(monitor, helix):
    with pytest.raises(InvalidHandle):
        monitor.add_channel("not valid!")
    with pytest.raises(InvalidPriority):
        monitor.add_channel("alpha", "urgent")
    helix.resolve_identity.assert_not_called()


def test_add_channel_rejects_duplicates(monitor, helix):
    monitor.add_channel("alpha")

    with pytest.raises(ChannelAlreadyTracked):
        monitor.add_channel("ALPHA")
    assert helix.resolve_identity.call_count == 1

    helix.resolve_identity.side_effect = lambda handle: Identity(
        channel_id="id-alpha", handle=handle, display_name="Renamed"
    )
    with pytest.raises(ChannelAlreadyTracked):
        monitor.add_channel("renamed")
    assert len(monitor.list_channels()) == 1


def test_add_unknown_channel(monitor, helix):
    helix.resolve_identity.side_effect = IdentityNotFound("ghost")
    with pytest.raises(IdentityNotFound):
        monitor.add_channel("ghost")
    assert monitor.list_channels() == []


def test_remove_promotes_next_high_priority_channel(monitor, parts):
    monitor.add_channel("a", "high")
    monitor.add_channel("b", "high")
    monitor.add_channel("c")
    assert modes(monitor) == {
        "a": DeliveryMode.PUSH,
        "b": DeliveryMode.PULL,
        "c": DeliveryMode.PULL,
    }

    monitor.remove_channel("a")

    assert modes(monitor) == {"b": DeliveryMode.PUSH, "c": DeliveryMode.PULL}
    parts["push"].forget_channel.assert_called_once_with("id-a")


def test_remove_unknown_channel(monitor):
    with pytest.raises(ChannelNotFound):
        monitor.remove_channel("ghost")


def test_lowering_priority_frees_the_slot(monitor):
    monitor.add_channel("a", "high")
    monitor.add_channel("b", "high")

    record = monitor.set_priority("a", "normal")

    assert record.priority == Priority.NORMAL
    assert modes(monitor) == {"a": DeliveryMode.PULL, "b": DeliveryMode.PUSH}


def test_reassign_survives_persistence_failure(monitor, parts, monkeypatch):
    monkeypatch.setattr(
        parts["registry"],
        "assign_modes",
        mock.MagicMock(side_effect=PersistenceError("disk full")),
    )
    assert monitor.reassign() is True
    parts["push"].resync.assert_called_once()


def test_reassign_always_resyncs_push(monitor, parts):
    assert monitor.reassign() is False
    parts["push"].resync.assert_called_once()


def test_check_now_updates_without_notifying(monitor, helix, parts):
    monitor.add_channel("alpha")
    monitor.add_channel("beta")
    helix.query_liveness.return_value = [LiveStream(channel_id="id-beta", title="Hi")]

    results = monitor.check_now()

    assert [(c.handle, s is not None) for c, s in results] == [
        ("alpha", False),
        ("beta", True),
    ]
    assert monitor.get_channel("beta").is_live is True
    parts["notifier"].notify.assert_not_called()


def test_start_and_stop(monitor, parts):
    monitor.start()
    parts["poller"].start.assert_called_once()
    parts["push"].resync.assert_called_once()

    monitor.stop()
    assert monitor.stop_event.is_set()
    parts["poller"].stop.assert_called_once()
    parts["push"].disconnect.assert_called_once()


def test_start_schedules_periodic_reassignment(monitor, parts):
    monitor.start()

    parts["poller"].add_job.assert_called_once_with(monitor._reassign_quietly)
    monitor._reassign_quietly()
    assert parts["push"].resync.call_count == 2


def test_complete_authorization_starts_push(monitor, parts, credentials):
    monitor.add_channel("alpha", "high")
    parts["push"].start.return_value = False

    monitor.complete_authorization("code")

    credentials.complete_authorization.assert_called_once_with("code")
    parts["push"].start.assert_called_once()
    assert parts["push"].resync.call_count >= 2


def test_status(monitor, parts):
    monitor.add_channel("alpha", "high")
    monitor.add_channel("beta")
    parts["push"].status.return_value = {"state": "active"}

    status = monitor.status()

    assert status["channels"] == 2
    assert status["push_channels"] == 1
    assert status["pull_channels"] == 1
    assert status["capacity"] == 1
    assert status["authorized"] is True
    assert status["push"] == {"state": "active"}
    assert status["polling_interval"] == "90s"
    assert monitor.authorization_url() == "https://auth.example"
