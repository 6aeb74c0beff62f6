# finmon/middleware.py

import logging
from typing import Callable

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from .routing import guarded, redirect_target

logger = logging.getLogger(__name__)

DEBUG_HEADER = "x-auth-debug"


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Redirects around the auth wall before a guarded page is served.

    Needs ``request.session``, so it must sit inside SessionMiddleware.
    A failed session lookup lets the request through unchanged: the page
    itself still refuses to render without a session.
    """

    def __init__(self, app, client_factory: Callable[[Request], object]):
        super().__init__(app)
        self.client_factory = client_factory

    def _resolve_session(self, request: Request):
        return self.client_factory(request).get_session()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not guarded(path):
            return await call_next(request)

        try:
            session = await run_in_threadpool(self._resolve_session, request)
        except Exception:
            logger.exception("Error in route guard for %s", path)
            return await call_next(request)

        marker = "has-session" if session else "no-session"
        logger.debug("Route guard: %s for path: %s", marker, path)

        target = redirect_target(path, session is not None)
        if target:
            return RedirectResponse(target, status_code=302)

        response = await call_next(request)
        response.headers[DEBUG_HEADER] = marker
        return response
