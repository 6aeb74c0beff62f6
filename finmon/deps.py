# finmon/deps.py

from pathlib import Path
from typing import Optional

from fastapi import Depends, Request
from fastapi.templating import Jinja2Templates

from .auth_client import AuthClient
from .auth_state import AuthState, RecordingNavigator
from .config import configuration_message
from .database import DataSource

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def make_auth_client(request: Request) -> AuthClient:
    # one client per browser context: its storage is that visitor's cookie session
    return AuthClient(request.app.state.database, request.session, request.app.state.settings)


def get_auth_state(request: Request):
    state = AuthState(make_auth_client(request), RecordingNavigator(request.url.path))
    state.init()
    try:
        yield state
    finally:
        state.close()


def get_data_source(request: Request, auth: AuthState = Depends(get_auth_state)) -> DataSource:
    return DataSource(
        request.app.state.database,
        auth.user.id if auth.user else None,
        missing=request.app.state.settings.missing(),
    )


def config_error(request: Request) -> Optional[str]:
    missing = request.app.state.settings.missing()
    return configuration_message(missing) if missing else None


def render(request: Request, name: str, auth: Optional[AuthState] = None, context: Optional[dict] = None,
           status_code: int = 200):
    data = {
        "user": auth.user if auth else None,
        "config_error": config_error(request),
        "errors": [],
        "path": request.url.path,
    }
    data.update(context or {})
    return templates.TemplateResponse(request, name, data, status_code=status_code)
