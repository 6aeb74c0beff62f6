from typing import Optional

PROTECTED_PREFIX = "/dashboard"
AUTH_PATH = "/auth"
CALLBACK_PATH = "/auth/callback"


def is_protected(path: str) -> bool:
    return path == PROTECTED_PREFIX or path.startswith(PROTECTED_PREFIX + "/")


def is_auth_page(path: str) -> bool:
    return path.rstrip("/") == AUTH_PATH


def guarded(path: str) -> bool:
    """Paths the edge guard inspects; everything else passes untouched."""
    return is_protected(path) or is_auth_page(path)


def redirect_target(path: str, has_session: bool) -> Optional[str]:
    """Where a visitor on ``path`` should be sent, or None to stay.

    Depends only on the path and whether a session exists, so applying it
    twice never produces a second redirect.
    """
    if has_session and is_auth_page(path):
        return PROTECTED_PREFIX
    if not has_session and is_protected(path):
        return AUTH_PATH
    return None
