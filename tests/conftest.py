"""Global fixtures and pytest configuration.

- Blocks every outgoing HTTP request (token exchange, Helix, webhooks)
- Provides factories for channel records and HTTP responses
- Exposes a shared CliRunner for CLI tests
"""

import types
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from streamwatch.services.channel_registry import ChannelRegistry
from streamwatch.services.config_schema import TwitchConfig
from streamwatch.services.models import ChannelRecord


@pytest.fixture(autouse=True)
def http():
    """Prevent any real network access through requests during tests."""
    with patch("requests.post") as mock_post, patch("requests.request") as mock_request:
        mock_post.return_value.status_code = 200
        mock_post.return_value.text = "MOCKED"
        mock_request.return_value.status_code = 200
        mock_request.return_value.json.return_value = {"data": []}
        yield types.SimpleNamespace(post=mock_post, request=mock_request)


@pytest.fixture(autouse=True)
def isolate_env_and_sleep(monkeypatch):
    """No Twitch credentials from the environment and no webhook retry sleeps."""
    monkeypatch.delenv("TWITCH_CLIENT_ID", raising=False)
    monkeypatch.delenv("TWITCH_CLIENT_SECRET", raising=False)
    monkeypatch.setattr(
        "streamwatch.services.webhook_service.time.sleep",
        lambda *_args, **_kwargs: None,
    )


@pytest.fixture
def make_response():
    """Factory for fake ``requests.Response`` objects."""

    def _factory(status_code=200, json_data=None, text=""):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = json_data if json_data is not None else {}
        response.text = text
        return response

    return _factory


@pytest.fixture
def make_record():
    """Factory for channel records with sensible defaults."""

    def _factory(
        channel_id, handle, priority="normal", mode="pull", is_live=False, **extra
    ):
        return ChannelRecord(
            channel_id=channel_id,
            handle=handle,
            display_name=extra.pop("display_name", handle.title()),
            is_live=is_live,
            priority=priority,
            delivery_mode=mode,
            **extra,
        )

    return _factory


@pytest.fixture
def registry(tmp_path):
    """Empty registry persisted in a temporary directory."""
    return ChannelRegistry(tmp_path / "channels.json")


@pytest.fixture
def twitch_config():
    return TwitchConfig(client_id="cid", client_secret="secret", timeout=5)


@pytest.fixture
def sync_spawn():
    """Run spawned work inline and remember what was spawned."""
    calls = []

    def _spawn(target, *args):
        calls.append((target, args))
        target(*args)

    _spawn.calls = calls
    return _spawn


@pytest.fixture(scope="session")
def cli():
    """Shared CliRunner for all CLI tests."""
    return CliRunner()
