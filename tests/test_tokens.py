import json

import pytest
import requests

from spotify_tracker.tokens import (
    TOKEN_URL, AuthTokens, RefreshFailed, TokenRefresher, TokenStore, Unauthenticated,
)
from tests.conftest import FakeResponse, FakeSession


def test_load_without_file_is_unauthenticated(tmp_path, clock):
    store = TokenStore(str(tmp_path / "tokens.json"), clock=clock)
    assert store.load() is None


def test_save_computes_expiry_in_ms(tmp_path, clock):
    store = TokenStore(str(tmp_path / "tokens.json"), clock=clock)
    tokens = store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 3600})

    assert tokens.expires_at == int(clock.now * 1000) + 3_600_000
    on_disk = json.loads((tmp_path / "tokens.json").read_text())
    assert on_disk == {"access_token": "a1", "refresh_token": "r1", "expires_at": tokens.expires_at}


def test_save_keeps_previous_refresh_token_when_missing(tmp_path, clock):
    store = TokenStore(str(tmp_path / "tokens.json"), clock=clock)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 3600})
    store.save({"access_token": "a2", "expires_in": 3600})

    loaded = store.load()
    assert loaded.access_token == "a2"
    assert loaded.refresh_token == "r1"


def test_save_leaves_no_temp_file(tmp_path, clock):
    store = TokenStore(str(tmp_path / "tokens.json"), clock=clock)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})
    assert sorted(p.name for p in tmp_path.iterdir()) == ["tokens.json"]


def test_corrupt_file_reads_as_unauthenticated(tmp_path, clock):
    path = tmp_path / "tokens.json"
    path.write_text("{not json")
    assert TokenStore(str(path), clock=clock).load() is None


def _refresher(tmp_path, clock, session):
    store = TokenStore(str(tmp_path / "tokens.json"), clock=clock)
    return store, TokenRefresher(store, "cid", "secret", session=session, clock=clock)


def test_valid_token_is_returned_without_refresh(tmp_path, clock):
    session = FakeSession()
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 3600})

    assert refresher.get_valid_access_token() == "a1"
    assert session.calls == []


def test_no_tokens_raises_unauthenticated(tmp_path, clock):
    _, refresher = _refresher(tmp_path, clock, FakeSession())
    with pytest.raises(Unauthenticated):
        refresher.get_valid_access_token()


def test_expired_token_is_refreshed(tmp_path, clock):
    session = FakeSession()
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "a2", "expires_in": 3600}))
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})
    clock.advance(61)

    assert refresher.get_valid_access_token() == "a2"
    _, _, kwargs = session.calls[0]
    assert kwargs["data"] == {
        "grant_type": "refresh_token",
        "refresh_token": "r1",
        "client_id": "cid",
        "client_secret": "secret",
    }
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert store.load().refresh_token == "r1"


def test_expiry_boundary_counts_as_expired(tmp_path, clock):
    session = FakeSession()
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "a2", "expires_in": 3600}))
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})
    clock.advance(60)

    assert refresher.get_valid_access_token() == "a2"


def test_rejected_refresh_raises_refresh_failed(tmp_path, clock):
    session = FakeSession()
    session.add("POST", TOKEN_URL, FakeResponse(400, {"error": "invalid_grant"}))
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})
    clock.advance(120)

    with pytest.raises(RefreshFailed):
        refresher.get_valid_access_token()
    assert store.load().access_token == "a1"


def test_network_error_during_refresh_keeps_cause(tmp_path, clock):
    session = FakeSession()
    boom = requests.ConnectionError("down")
    session.add("POST", TOKEN_URL, boom)
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})

    with pytest.raises(RefreshFailed) as excinfo:
        refresher.refresh()
    assert excinfo.value.__cause__ is boom


def test_exchange_code_uses_basic_auth(tmp_path, clock):
    session = FakeSession()
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "a1", "refresh_token": "r1", "expires_in": 3600}))
    store, refresher = _refresher(tmp_path, clock, session)

    tokens = refresher.exchange_code("the-code", "http://localhost/callback")

    assert isinstance(tokens, AuthTokens)
    _, _, kwargs = session.calls[0]
    # base64("cid:secret")
    assert kwargs["headers"]["Authorization"] == "Basic Y2lkOnNlY3JldA=="
    assert kwargs["data"] == {
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "http://localhost/callback",
    }
    assert store.load().refresh_token == "r1"


def test_rejected_refresh_keeps_http_status_as_cause(tmp_path, clock):
    session = FakeSession()
    session.add("POST", TOKEN_URL, FakeResponse(400, {"error": "invalid_grant"}, text='{"error": "invalid_grant"}'))
    store, refresher = _refresher(tmp_path, clock, session)
    store.save({"access_token": "a1", "refresh_token": "r1", "expires_in": 60})

    with pytest.raises(RefreshFailed) as excinfo:
        refresher.refresh()
    assert isinstance(excinfo.value.__cause__, requests.HTTPError)
    assert "400" in str(excinfo.value)
    assert "invalid_grant" in str(excinfo.value)
