from datetime import datetime, timedelta

import pytest

from finmon.auth_client import STORAGE_KEY, AuthClient, AuthError
from finmon.config import ConfigurationError, Settings
from finmon.events import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED
from finmon.models import AuthSession, LoginCode, Profile, User as UserRow


class Clock:
    def __init__(self):
        self.now = datetime(2024, 6, 1, 8)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def auth(database, clock):
    settings = Settings(session_ttl=3600, refresh_ttl=86400, login_code_ttl=600)
    return AuthClient(database, {}, settings, clock=clock)


def event_names(client):
    return [event.name for event in client.events.history]


def test_sign_up_starts_session_and_creates_profile(auth, database):
    session = auth.sign_up("Baker@Example.com", "secret1")
    assert session.user.email == "baker@example.com"
    assert auth.storage[STORAGE_KEY] == session.access_token
    assert event_names(auth) == [SIGNED_IN]

    with database.session_scope() as db:
        profile = db.get(Profile, session.user.id)
        assert profile.email == "baker@example.com"
        assert profile.role == "user"


def test_duplicate_sign_up_fails(auth):
    auth.sign_up("baker@example.com", "secret1")
    with pytest.raises(AuthError, match="already registered"):
        auth.sign_up("baker@example.com", "other-secret")


def test_sign_in_with_password(auth, database, clock):
    auth.sign_up("baker@example.com", "secret1")
    other = AuthClient(database, {}, auth.settings, clock=clock)
    with pytest.raises(AuthError, match="Invalid login credentials"):
        other.sign_in_with_password("baker@example.com", "wrong")
    session = other.sign_in_with_password("baker@example.com", "secret1")
    assert other.get_session().user.id == session.user.id


def test_get_session_without_token_needs_no_database():
    client = AuthClient(None, {})
    assert client.get_session() is None
    with pytest.raises(ConfigurationError):
        client.sign_in_with_password("baker@example.com", "secret1")


def test_session_refreshes_inside_refresh_window(auth, clock):
    first = auth.sign_up("baker@example.com", "secret1")
    clock.advance(hours=2)
    session = auth.get_session()
    assert session.access_token != first.access_token
    assert session.user.id == first.user.id
    assert auth.storage[STORAGE_KEY] == session.access_token
    assert event_names(auth)[-1] == TOKEN_REFRESHED


def test_session_ends_after_refresh_window(auth, clock):
    auth.sign_up("baker@example.com", "secret1")
    clock.advance(days=2)
    assert auth.get_session() is None
    assert STORAGE_KEY not in auth.storage
    assert event_names(auth)[-1] == SIGNED_OUT


def test_unknown_token_is_dropped(auth):
    auth.storage[STORAGE_KEY] = "stale"
    assert auth.get_session() is None
    assert STORAGE_KEY not in auth.storage


def test_refresh_session(auth):
    first = auth.sign_up("baker@example.com", "secret1")
    session = auth.refresh_session()
    assert session.access_token != first.access_token
    auth.storage.clear()
    with pytest.raises(AuthError):
        auth.refresh_session()


def test_login_code_exchange(auth, database, clock):
    auth.sign_up("baker@example.com", "secret1")
    auth.sign_out()
    code = auth.issue_login_code("baker@example.com")

    session = auth.exchange_code_for_session(code)
    assert session.user.email == "baker@example.com"
    with database.session_scope() as db:
        assert db.get(LoginCode, code).used_at == clock.now

    with pytest.raises(AuthError, match="Invalid login code"):
        auth.exchange_code_for_session(code)


def test_login_code_expires(auth, clock):
    auth.sign_up("baker@example.com", "secret1")
    code = auth.issue_login_code("baker@example.com")
    clock.advance(minutes=11)
    with pytest.raises(AuthError, match="expired"):
        auth.exchange_code_for_session(code)


def test_login_code_for_unknown_email(auth):
    with pytest.raises(AuthError):
        auth.issue_login_code("nobody@example.com")


def test_sign_out(auth):
    auth.sign_up("baker@example.com", "secret1")
    seen = []
    subscription = auth.on_auth_state_change(lambda name, session: seen.append((name, session)))
    auth.sign_out()
    assert auth.get_session() is None
    assert seen == [(SIGNED_OUT, None)]
    subscription.unsubscribe()
    assert not subscription.active


def test_session_of_deleted_user_is_dropped(auth, database):
    session = auth.sign_up("baker@example.com", "secret1")
    with database.session_scope() as db:
        db.query(UserRow).delete()

    assert auth.get_session() is None
    assert STORAGE_KEY not in auth.storage
    with database.session_scope() as db:
        assert db.get(AuthSession, session.access_token) is None
