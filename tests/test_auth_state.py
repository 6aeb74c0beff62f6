from datetime import datetime, timedelta

import pytest

from finmon.auth_client import AuthError, Session, User
from finmon.auth_state import CLOSED, SUBSCRIBED, AuthState, RecordingNavigator
from finmon.config import ConfigurationError
from finmon.events import SIGNED_IN, SIGNED_OUT, EventBus


def make_session(email="baker@example.com"):
    now = datetime(2024, 1, 1, 12)
    return Session(
        access_token="access",
        refresh_token="refresh",
        user=User(id="user-1", email=email),
        issued_at=now,
        expires_at=now + timedelta(hours=1),
    )


class FakeClient:
    def __init__(self, session=None, error=None, sign_out_error=None):
        self.session = session
        self.error = error
        self.sign_out_error = sign_out_error
        self.events = EventBus()

    def get_session(self):
        if self.error:
            raise self.error
        return self.session

    def on_auth_state_change(self, handler):
        return self.events.subscribe(handler)

    def sign_out(self):
        if self.sign_out_error:
            raise self.sign_out_error
        self.session = None
        self.events.publish(SIGNED_OUT, None)


def state_for(path, client):
    return AuthState(client, RecordingNavigator(path)).init()


def test_signed_in_on_auth_page_goes_to_dashboard():
    state = state_for("/auth", FakeClient(make_session()))
    assert state.navigator.calls == ["/dashboard"]
    assert state.user.email == "baker@example.com"
    assert state.status == SUBSCRIBED
    assert not state.is_loading


def test_signed_out_on_protected_page_goes_to_auth():
    state = state_for("/dashboard/x", FakeClient())
    assert state.navigator.calls == ["/auth"]


def test_signed_out_on_public_page_stays():
    state = state_for("/", FakeClient())
    assert state.navigator.calls == []
    assert state.pending_redirect is None


def test_policy_does_not_navigate_twice():
    state = state_for("/auth", FakeClient(make_session()))
    state._apply_routing_policy()
    state.on_session_change("TOKEN_REFRESHED", make_session())
    assert state.navigator.calls == ["/dashboard"]


@pytest.mark.parametrize("error", [AuthError("boom"), ConfigurationError("missing")])
def test_session_lookup_failure_reads_as_signed_out(error):
    state = state_for("/dashboard", FakeClient(make_session(), error=error))
    assert state.session is None
    assert state.user is None
    assert state.pending_redirect == "/auth"


def test_sign_in_event_moves_off_auth_page():
    client = FakeClient()
    state = state_for("/auth", client)
    assert state.navigator.calls == []
    client.events.publish(SIGNED_IN, make_session())
    assert state.user.id == "user-1"
    assert state.navigator.calls == ["/dashboard"]


def test_sign_out_navigates_to_auth():
    client = FakeClient(make_session())
    state = state_for("/dashboard/revenue", client)
    state.sign_out()
    assert state.session is None
    assert state.navigator.calls == ["/auth"]


def test_sign_out_navigates_even_when_provider_fails():
    client = FakeClient(make_session(), sign_out_error=AuthError("offline"))
    state = state_for("/dashboard", client)
    state.sign_out()
    assert state.pending_redirect == "/auth"


def test_closed_state_ignores_events():
    client = FakeClient()
    with AuthState(client, RecordingNavigator("/auth")) as state:
        pass
    assert state.status == CLOSED
    assert client.events.publish(SIGNED_IN, make_session()) == 0
    assert state.session is None
    assert state.navigator.calls == []


def test_unexpected_provider_error_reads_as_signed_out():
    state = state_for("/dashboard", FakeClient(make_session(), error=RuntimeError("provider returned garbage")))
    assert state.get_current_session() == (None, None)
    assert state.user is None
    assert state.pending_redirect == "/auth"
