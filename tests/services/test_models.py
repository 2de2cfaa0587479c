from datetime import timedelta

import pytest
from pydantic import ValidationError

from streamwatch.services.errors import InvalidHandle, InvalidPriority
from streamwatch.services.models import (
    ChannelRecord,
    Credential,
    DeliveryMode,
    LiveStream,
    Priority,
    normalize_handle,
    parse_priority,
    utcnow,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("alpha", "alpha"),
        ("  Alpha ", "alpha"),
        ("@Some_Streamer", "some_streamer"),
        ("ABC123", "abc123"),
    ],
)
def test_normalize_handle(raw, expected):
    assert normalize_handle(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "@", "has space", "bad-char!", "x" * 26])
def test_normalize_handle_rejects_invalid(raw):
    with pytest.raises(InvalidHandle):
        normalize_handle(raw)


def test_parse_priority():
    assert parse_priority("HIGH") == Priority.HIGH
    assert parse_priority(" normal ") == Priority.NORMAL
    assert parse_priority(Priority.HIGH) is Priority.HIGH
    with pytest.raises(InvalidPriority):
        parse_priority("urgent")


def test_enum_str():
    assert str(Priority.HIGH) == "high"
    assert str(DeliveryMode.PUSH) == "push"


def test_channel_record_handle_matches_normalize_handle():
    assert ChannelRecord(channel_id="1", handle=" @Alpha ").handle == "alpha"
    with pytest.raises(ValidationError):
        ChannelRecord(channel_id="1", handle="not valid!")


def test_channel_record_defaults_and_url():
    record = ChannelRecord(channel_id="1", handle="Alpha")
    assert record.handle == "alpha"
    assert record.priority == Priority.NORMAL
    assert record.delivery_mode == DeliveryMode.PULL
    assert record.is_live is False
    assert record.url == "https://twitch.tv/alpha"


def test_channel_record_reads_legacy_fields():
    record = ChannelRecord.model_validate(
        {
            "user_id": "42",
            "username": "Legacy",
            "display_name": "Legacy",
            "is_live": True,
            "last_checked": "2025-05-01T10:00:00Z",
            "priority": "",
            "notification_mode": "websocket",
        }
    )
    assert record.channel_id == "42"
    assert record.handle == "legacy"
    assert record.priority == Priority.NORMAL
    assert record.delivery_mode == DeliveryMode.PUSH

    polling = ChannelRecord.model_validate(
        {"user_id": "43", "username": "other", "notification_mode": "polling"}
    )
    assert polling.delivery_mode == DeliveryMode.PULL


def test_credential_validity():
    now = utcnow()
    credential = Credential(token="t", expires_at=now + timedelta(minutes=5))
    assert credential.is_valid(now)
    assert not credential.is_valid(now + timedelta(minutes=6))
    assert not Credential(token="", expires_at=now + timedelta(hours=1)).is_valid(now)


def test_live_stream_from_api_payload():
    stream = LiveStream.model_validate(
        {
            "user_id": "1",
            "user_login": "alpha",
            "user_name": "Alpha",
            "title": "Speedrun",
            "game_name": "Celeste",
            "viewer_count": 12,
            "started_at": "2026-01-01T10:00:00Z",
        }
    )
    assert stream.channel_id == "1"
    assert stream.handle == "alpha"
    assert stream.category == "Celeste"
    assert stream.viewer_count == 12
