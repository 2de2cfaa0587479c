"""Tests for service and user-delegated credentials."""

import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from streamwatch.services.credential_service import TOKEN_URL, CredentialService
from streamwatch.services.errors import AuthorizationRequired, CredentialError


FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(twitch_config, tmp_path, clock):
    return CredentialService(twitch_config, tmp_path / "user_token.json", clock=clock)


def token_response(make_response, token="tok", expires_in=3600):
    return make_response(200, {"access_token": token, "expires_in": expires_in})


def test_service_token_is_exchanged_once_while_valid(service, http, make_response):
    http.post.return_value = token_response(make_response, "app-1")

    assert service.service_token() == "app-1"
    assert service.service_token() == "app-1"

    http.post.assert_called_once()
    args, kwargs = http.post.call_args
    assert args[0] == TOKEN_URL
    assert kwargs["data"]["grant_type"] == "client_credentials"
    assert kwargs["data"]["client_id"] == "cid"
    assert kwargs["timeout"] == 5


def test_service_token_is_refreshed_after_expiry(service, http, make_response, clock):
    http.post.side_effect = [
        token_response(make_response, "app-1", expires_in=60),
        token_response(make_response, "app-2", expires_in=60),
    ]

    assert service.service_token() == "app-1"
    clock.now = FIXED_NOW + timedelta(seconds=61)
    assert service.service_token() == "app-2"


def test_invalidate_forces_new_exchange(service, http, make_response):
    http.post.return_value = token_response(make_response)
    service.service_token()
    service.invalidate_service_token()
    service.service_token()
    assert http.post.call_count == 2


def test_failed_exchange_raises(service, http, make_response):
    http.post.return_value = make_response(400, text="invalid client")
    with pytest.raises(CredentialError):
        service.service_token()

    http.post.return_value = make_response(200, {"unexpected": True})
    with pytest.raises(CredentialError):
        service.service_token()

    http.post.side_effect = requests.ConnectionError("down")
    with pytest.raises(CredentialError):
        service.service_token()


def test_user_token_requires_authorization(service):
    assert service.has_user_credential() is False
    with pytest.raises(AuthorizationRequired) as excinfo:
        service.user_token()

    url = excinfo.value.auth_url
    assert url.startswith("https://id.twitch.tv/oauth2/authorize?")
    assert "client_id=cid" in url
    assert "response_type=code" in url


def test_complete_authorization_persists_credential(
    service, http, make_response, twitch_config, tmp_path, clock
):
    http.post.return_value = token_response(make_response, "user-1")

    service.complete_authorization("the-code")

    assert service.user_token() == "user-1"
    assert http.post.call_args.kwargs["data"]["code"] == "the-code"
    saved = json.loads((tmp_path / "user_token.json").read_text())
    assert saved["token"] == "user-1"

    restarted = CredentialService(twitch_config, tmp_path / "user_token.json", clock=clock)
    assert restarted.has_user_credential() is True
    assert restarted.user_token() == "user-1"


def test_expired_user_credential_is_not_usable(
    service, http, make_response, twitch_config, tmp_path
):
    http.post.return_value = token_response(make_response, "user-1", expires_in=60)
    service.complete_authorization("code")

    later = Clock(FIXED_NOW + timedelta(hours=1))
    restarted = CredentialService(twitch_config, tmp_path / "user_token.json", clock=later)
    assert restarted.has_user_credential() is False
    with pytest.raises(AuthorizationRequired):
        restarted.user_token()


def test_unreadable_token_file_is_ignored(twitch_config, tmp_path, clock):
    path = tmp_path / "user_token.json"
    path.write_text("garbage")
    assert CredentialService(twitch_config, path, clock=clock).has_user_credential() is False


def test_token_written_by_another_process_is_picked_up(
    service, http, make_response, twitch_config, tmp_path, clock
):
    assert service.has_user_credential() is False

    http.post.return_value = token_response(make_response, "user-2")
    other = CredentialService(twitch_config, tmp_path / "user_token.json", clock=clock)
    other.complete_authorization("code")

    assert service.has_user_credential() is True
    assert service.user_token() == "user-2"


def test_valid_user_credential_is_not_reread(service, http, make_response, tmp_path):
    http.post.return_value = token_response(make_response, "user-1")
    service.complete_authorization("code")
    (tmp_path / "user_token.json").write_text("garbage")

    assert service.user_token() == "user-1"
