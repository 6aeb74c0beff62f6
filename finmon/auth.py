# finmon/auth.py

import logging
import re
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Request
from starlette.responses import RedirectResponse

from .auth_client import AuthError
from .auth_state import AuthState
from .config import ConfigurationError
from .deps import get_auth_state, make_auth_client, render
from .routing import AUTH_PATH, CALLBACK_PATH, PROTECTED_PREFIX

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 6


def is_valid_email(email: str) -> bool:
    pattern = r"^[\w\.\+-]+@[\w\.-]+\.\w+$"
    return re.match(pattern, email.strip()) is not None


def _follow(auth: AuthState) -> Optional[RedirectResponse]:
    if auth.pending_redirect:
        return RedirectResponse(auth.pending_redirect, status_code=302)
    return None


@router.get(AUTH_PATH)
def auth_page(request: Request, error: Optional[str] = None, auth: AuthState = Depends(get_auth_state)):
    redirect = _follow(auth)
    if redirect:
        return redirect
    return render(request, "auth.html", auth, {"error": error})


# Sign in, sign up and magic link all post back to the auth page itself, so a
# successful sign-in is routed by the same policy that guards the page.
@router.post(AUTH_PATH)
def auth_submit(
    request: Request,
    mode: str = Form("signin"),
    email: str = Form(...),
    password: str = Form(""),
    auth: AuthState = Depends(get_auth_state),
):
    if not is_valid_email(email):
        return render(request, "auth.html", auth, {"error": "Invalid email format.", "email": email, "mode": mode},
                      status_code=400)

    try:
        if mode == "signup":
            if len(password) < MIN_PASSWORD_LENGTH:
                raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
            auth.client.sign_up(email, password)
        elif mode == "magic-link":
            code = auth.client.issue_login_code(email)
            # delivery happens outside this app; the link is only logged
            logger.info("Magic link for %s: %s", email, str(request.url_for("auth_callback")) + f"?code={code}")
            return render(request, "auth.html", auth,
                          {"message": "Check your email for the login link.", "email": email, "mode": mode})
        else:
            auth.client.sign_in_with_password(email, password)
    except (AuthError, ConfigurationError) as e:
        logger.error("Authentication failed for %s: %s", email, e)
        return render(request, "auth.html", auth, {"error": str(e), "email": email, "mode": mode}, status_code=400)

    return _follow(auth) or RedirectResponse(PROTECTED_PREFIX, status_code=302)


@router.get(CALLBACK_PATH, name="auth_callback")
def auth_callback(request: Request, code: Optional[str] = None):
    try:
        logger.info("Auth callback received, code exists: %s", bool(code))
        if code:
            client = make_auth_client(request)
            try:
                client.exchange_code_for_session(code)
            except AuthError as e:
                logger.error("Error exchanging code for session: %s", e)
                return RedirectResponse(f"{AUTH_PATH}?error={quote(str(e))}", status_code=302)
            logger.info("Successfully exchanged code for session")
        else:
            logger.warning("No code parameter found in callback URL")

        return RedirectResponse(PROTECTED_PREFIX, status_code=302)
    except Exception:
        logger.exception("Unexpected error in auth callback")
        return RedirectResponse(f"{AUTH_PATH}?error=unexpected_error", status_code=302)


@router.api_route(AUTH_PATH + "/signout", methods=["GET", "POST"])
def sign_out(auth: AuthState = Depends(get_auth_state)):
    auth.sign_out()
    return _follow(auth) or RedirectResponse(AUTH_PATH, status_code=302)
