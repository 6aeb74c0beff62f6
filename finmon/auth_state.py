"""Per-browser-context view of the current session.

``AuthState`` mirrors the provider's session and keeps the visitor on the
right side of the auth wall: lifecycle is ``created -> subscribed -> closed``.
Routes receive it through a FastAPI dependency instead of looking it up from
module globals.
"""

import logging
from typing import List, Optional, Tuple

from .auth_client import AuthClient, AuthError, Session, User
from .config import ConfigurationError
from .routing import AUTH_PATH, redirect_target

logger = logging.getLogger(__name__)

CREATED = "created"
SUBSCRIBED = "subscribed"
CLOSED = "closed"


class Navigator:
    """Replace-style navigation: the current location is swapped, history does not grow."""

    def __init__(self, path: str):
        self.location = path

    def replace(self, path: str) -> None:
        self.location = path


class RecordingNavigator(Navigator):
    def __init__(self, path: str):
        super().__init__(path)
        self.calls: List[str] = []

    def replace(self, path: str) -> None:
        self.calls.append(path)
        super().replace(path)

    @property
    def redirect(self) -> Optional[str]:
        return self.calls[-1] if self.calls else None


class AuthState:
    def __init__(self, client: AuthClient, navigator: Navigator):
        self.client = client
        self.navigator = navigator
        self.session: Optional[Session] = None
        self.user: Optional[User] = None
        self.is_loading = True
        self.status = CREATED
        self._subscription = None

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def pending_redirect(self) -> Optional[str]:
        return getattr(self.navigator, "redirect", None)

    def init(self) -> "AuthState":
        self.session, self.user = self.get_current_session()
        self._subscription = self.client.on_auth_state_change(self.on_session_change)
        self.status = SUBSCRIBED
        self.is_loading = False
        self._apply_routing_policy()
        return self

    def get_current_session(self) -> Tuple[Optional[Session], Optional[User]]:
        # any failure reads as "signed out"
        try:
            session = self.client.get_session()
        except (AuthError, ConfigurationError) as e:
            logger.error("Error getting session: %s", e)
            return None, None
        except Exception:
            logger.exception("Unexpected error getting session")
            return None, None
        if session is None:
            return None, None
        return session, session.user

    def on_session_change(self, event: str, session: Optional[Session]) -> None:
        if self.status == CLOSED:
            return
        logger.info("Session change %s for %s", event, session.user.email if session else "anonymous")
        self.session = session
        self.user = session.user if session else None
        self.is_loading = False
        self._apply_routing_policy()

    def _navigate(self, target: str) -> None:
        if self.navigator.location != target:
            self.navigator.replace(target)

    def _apply_routing_policy(self) -> None:
        target = redirect_target(self.navigator.location, self.session is not None)
        if target:
            self._navigate(target)

    def sign_out(self) -> None:
        try:
            self.client.sign_out()
            logger.info("User signed out")
        except (AuthError, ConfigurationError) as e:
            logger.error("Error signing out: %s", e)
        self._navigate(AUTH_PATH)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.status = CLOSED
