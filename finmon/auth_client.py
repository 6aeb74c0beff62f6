"""Session provider client.

One ``AuthClient`` exists per browser context. It keeps the access token in
that context's storage (the signed session cookie) and notifies subscribers
about sign-in, sign-out and token refresh.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, MutableMapping, Optional

from passlib.hash import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import ConfigurationError, Settings
from .database import Database
from .events import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, EventBus, Subscription
from .models import AuthSession, LoginCode, User as UserRow, utcnow

logger = logging.getLogger(__name__)

STORAGE_KEY = "financial-monitor-auth"


class AuthError(Exception):
    pass


@dataclass(frozen=True)
class User:
    id: str
    email: str


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    user: User
    issued_at: datetime
    expires_at: datetime


def _to_session(row: AuthSession, user: UserRow) -> Session:
    return Session(
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        user=User(id=user.id, email=user.email),
        issued_at=row.issued_at,
        expires_at=row.expires_at,
    )


class AuthClient:
    def __init__(
        self,
        database: Optional[Database],
        storage: MutableMapping,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.storage = storage
        self.settings = settings or Settings()
        self.clock = clock
        self.events = EventBus()

    # subscriptions

    def on_auth_state_change(self, handler) -> Subscription:
        return self.events.subscribe(handler)

    # helpers

    def _require_database(self) -> Database:
        if self.database is None:
            raise ConfigurationError("Auth provider is not configured (missing: DATABASE_URL)")
        return self.database

    @property
    def stored_token(self) -> Optional[str]:
        return self.storage.get(STORAGE_KEY)

    def _store(self, session: Session) -> None:
        self.storage[STORAGE_KEY] = session.access_token

    def _clear(self) -> None:
        self.storage.pop(STORAGE_KEY, None)

    def _new_session_row(self, user_id: str) -> AuthSession:
        now = self.clock()
        return AuthSession(
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            user_id=user_id,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.settings.session_ttl),
            refresh_expires_at=now + timedelta(seconds=self.settings.refresh_ttl),
        )

    def _start_session(self, db, user: UserRow) -> Session:
        row = self._new_session_row(user.id)
        db.add(row)
        db.flush()
        return _to_session(row, user)

    # session lifecycle

    def get_session(self) -> Optional[Session]:
        token = self.stored_token
        if not token:
            return None

        database = self._require_database()
        now = self.clock()
        event = None
        try:
            with database.session_scope() as db:
                row = db.get(AuthSession, token)
                if row is None:
                    session = None
                elif row.user is None:
                    # owner was deleted; the token is as good as unknown
                    db.delete(row)
                    session = None
                elif now < row.expires_at:
                    session = _to_session(row, row.user)
                elif now < row.refresh_expires_at:
                    session = self._rotate(db, row)
                    event = TOKEN_REFRESHED
                else:
                    db.delete(row)
                    session = None
                    event = SIGNED_OUT
        except SQLAlchemyError as e:
            raise AuthError(f"Could not retrieve session: {e}") from e

        if session is None:
            self._clear()
        else:
            self._store(session)
        if event:
            self.events.publish(event, session)
        return session

    def _rotate(self, db, row: AuthSession) -> Session:
        user = row.user
        db.delete(row)
        db.flush()
        return self._start_session(db, user)

    def refresh_session(self) -> Session:
        token = self.stored_token
        if not token:
            raise AuthError("No session to refresh")

        database = self._require_database()
        try:
            with database.session_scope() as db:
                row = db.get(AuthSession, token)
                if row is None or self.clock() >= row.refresh_expires_at:
                    raise AuthError("Refresh token is invalid or expired")
                session = self._rotate(db, row)
        except SQLAlchemyError as e:
            raise AuthError(f"Could not refresh session: {e}") from e

        self._store(session)
        self.events.publish(TOKEN_REFRESHED, session)
        return session

    def sign_up(self, email: str, password: str) -> Session:
        database = self._require_database()
        email = email.strip().lower()
        try:
            with database.session_scope() as db:
                user = UserRow(email=email, password=bcrypt.hash(password), created_at=self.clock())
                db.add(user)
                db.flush()
                session = self._start_session(db, user)
        except IntegrityError as e:
            raise AuthError("User already registered") from e
        except SQLAlchemyError as e:
            raise AuthError(f"Could not sign up: {e}") from e

        logger.info("New user signed up: %s", email)
        self._store(session)
        self.events.publish(SIGNED_IN, session)
        return session

    def sign_in_with_password(self, email: str, password: str) -> Session:
        database = self._require_database()
        email = email.strip().lower()
        try:
            with database.session_scope() as db:
                user = db.query(UserRow).filter(UserRow.email == email).first()
                if not user or not bcrypt.verify(password, user.password):
                    raise AuthError("Invalid login credentials")
                session = self._start_session(db, user)
        except SQLAlchemyError as e:
            raise AuthError(f"Could not sign in: {e}") from e

        self._store(session)
        self.events.publish(SIGNED_IN, session)
        return session

    def issue_login_code(self, email: str) -> str:
        database = self._require_database()
        email = email.strip().lower()
        try:
            with database.session_scope() as db:
                user = db.query(UserRow).filter(UserRow.email == email).first()
                if not user:
                    raise AuthError("No user registered with this email")
                code = secrets.token_urlsafe(24)
                db.add(LoginCode(
                    code=code,
                    user_id=user.id,
                    expires_at=self.clock() + timedelta(seconds=self.settings.login_code_ttl),
                ))
        except SQLAlchemyError as e:
            raise AuthError(f"Could not issue login code: {e}") from e
        return code

    def exchange_code_for_session(self, code: str) -> Session:
        database = self._require_database()
        now = self.clock()
        try:
            with database.session_scope() as db:
                login = db.get(LoginCode, code)
                if login is None or login.used_at is not None:
                    raise AuthError("Invalid login code")
                if now >= login.expires_at:
                    raise AuthError("Login code has expired")
                login.used_at = now
                user = db.get(UserRow, login.user_id)
                session = self._start_session(db, user)
        except SQLAlchemyError as e:
            raise AuthError(f"Could not exchange code: {e}") from e

        self._store(session)
        self.events.publish(SIGNED_IN, session)
        return session

    def sign_out(self) -> None:
        token = self.stored_token
        if token:
            database = self._require_database()
            try:
                with database.session_scope() as db:
                    row = db.get(AuthSession, token)
                    if row is not None:
                        db.delete(row)
            except SQLAlchemyError as e:
                raise AuthError(f"Could not sign out: {e}") from e

        self._clear()
        self.events.publish(SIGNED_OUT, None)
