import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from starlette.middleware.sessions import SessionMiddleware

from finmon.middleware import DEBUG_HEADER, RouteGuardMiddleware


class StubClient:
    def __init__(self, session=None, error=None):
        self.session = session
        self.error = error

    def get_session(self):
        if self.error:
            raise self.error
        return self.session


def guarded_app(client):
    app = FastAPI()

    @app.get("/dashboard/{page}")
    def page(page: str):
        return PlainTextResponse(page)

    @app.get("/auth")
    def auth():
        return PlainTextResponse("auth")

    @app.get("/other")
    def other():
        return PlainTextResponse("other")

    app.add_middleware(RouteGuardMiddleware, client_factory=lambda request: client)
    app.add_middleware(SessionMiddleware, secret_key="test")
    return TestClient(app)


@pytest.mark.parametrize("has_session, path, location", [
    (False, "/dashboard/x", "/auth"),
    (True, "/auth", "/dashboard"),
])
def test_redirects(has_session, path, location):
    client = guarded_app(StubClient(session=object() if has_session else None))
    response = client.get(path, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == location


def test_passes_with_marker():
    client = guarded_app(StubClient(session=object()))
    response = client.get("/dashboard/x")
    assert response.text == "x"
    assert response.headers[DEBUG_HEADER] == "has-session"

    response = guarded_app(StubClient()).get("/auth")
    assert response.headers[DEBUG_HEADER] == "no-session"


def test_unguarded_path_is_untouched():
    response = guarded_app(StubClient(error=RuntimeError("never called"))).get("/other")
    assert response.text == "other"
    assert DEBUG_HEADER not in response.headers


def test_lookup_failure_lets_request_through():
    client = guarded_app(StubClient(error=RuntimeError("provider down")))
    response = client.get("/dashboard/x", follow_redirects=False)
    assert response.status_code == 200
    assert response.text == "x"
