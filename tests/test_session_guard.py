import time

import pytest
from starlette.requests import Request

from conftest import FakeProvider
from mindconnect.auth import SessionExpired, Unauthorized, admit, require_session
from mindconnect.session import SESSION_KEY, SessionState


def _request(session):
    return Request({"type": "http", "method": "GET", "path": "/", "headers": [], "session": session})


def _expired(refresh_token="rt-old"):
    return SessionState(
        user_id="oidc-user",
        claims={"sub": "oidc-user"},
        access_token="at-old",
        refresh_token=refresh_token,
        expires_at=int(time.time()) - 60,
    )


def test_missing_principal_is_unauthorized():
    with pytest.raises(Unauthorized) as info:
        admit(None, FakeProvider())
    assert info.value.status_code == 401


def test_unexpired_session_is_admitted_without_refresh():
    provider = FakeProvider()
    state = SessionState(user_id="u1", expires_at=int(time.time()) + 600)
    assert admit(state, provider) is state
    assert provider.refresh_calls == []


def test_session_without_expiry_is_admitted():
    state = SessionState(user_id="u1")
    assert admit(state, None) is state


def test_expiry_boundary_is_strict():
    state = SessionState(user_id="u1", expires_at=1000)
    assert admit(state, None, now=1000) is state
    with pytest.raises(SessionExpired):
        admit(state, None, now=1001)


def test_expiry_compares_whole_seconds():
    state = SessionState(user_id="u1", expires_at=1000)
    assert not state.is_expired(1000.5)
    assert admit(state, None, now=1000.9) is state
    with pytest.raises(SessionExpired):
        admit(state, None, now=1001.2)


def test_expired_without_refresh_token_is_rejected():
    provider = FakeProvider()
    with pytest.raises(SessionExpired) as info:
        admit(_expired(refresh_token=None), provider)
    assert info.value.status_code == 401
    assert info.value.detail == "Session expired"
    assert provider.refresh_calls == []


def test_expired_without_provider_is_rejected():
    with pytest.raises(SessionExpired):
        admit(_expired(), None)


def test_failed_refresh_is_attempted_once_then_rejected():
    provider = FakeProvider(refresh_ok=False)
    with pytest.raises(SessionExpired):
        admit(_expired(), provider)
    assert provider.refresh_calls == ["rt-old"]


def test_successful_refresh_returns_new_state():
    provider = FakeProvider()
    old = _expired()
    new = admit(old, provider)
    assert new is not old
    assert old.access_token == "at-old"
    assert new.access_token == "at-new"
    assert new.refresh_token == "rt-new"
    assert new.expires_at > time.time()
    assert provider.refresh_calls == ["rt-old"]


def test_refresh_keeps_previous_refresh_token_when_omitted():
    class NoRotation(FakeProvider):
        def refresh(self, refresh_token):
            self.refresh_calls.append(refresh_token)
            return self._tokens("oidc-user", refresh_token=None)

    new = admit(_expired(), NoRotation())
    assert new.refresh_token == "rt-old"


def test_guard_writes_refreshed_state_back_to_session():
    provider = FakeProvider()
    session = {SESSION_KEY: _expired().to_session()}
    request = _request(session)

    state = require_session(request, provider)
    assert session[SESSION_KEY]["access_token"] == "at-new"
    assert session[SESSION_KEY]["expires_at"] == state.expires_at
    assert request.state.session_state is state

    # A second check inside the new window admits without another refresh.
    again = require_session(_request(session), provider)
    assert again.expires_at == state.expires_at
    assert provider.refresh_calls == ["rt-old"]


def test_guard_rejects_empty_session():
    with pytest.raises(Unauthorized):
        require_session(_request({}), FakeProvider())


def test_session_state_is_immutable():
    state = SessionState(user_id="u1", claims={"sub": "u1"})
    with pytest.raises(Exception):
        state.user_id = "u2"
    with pytest.raises(TypeError):
        state.claims["sub"] = "u2"
