# finmon/main.py

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Form, Query, Request
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import RedirectResponse, Response

from . import auth, crud, views
from .auth_state import AuthState
from .config import ConfigurationError, Settings, configuration_message
from .database import DataAccessError, Database, DataSource
from .deps import get_auth_state, get_data_source, make_auth_client, render
from .loading import LoadCancelled, LoadScope
from .middleware import RouteGuardMiddleware
from .routing import AUTH_PATH, PROTECTED_PREFIX
from .schemas import ExpenseIn, ProfileIn
from .status import check_connection

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
EXPENSE_FIELDS = ("date", "category_id", "description", "amount", "quantity", "unit", "note")

router = APIRouter(prefix=PROTECTED_PREFIX)
api = APIRouter(prefix="/api")


def _follow(auth: AuthState) -> Optional[RedirectResponse]:
    if auth.pending_redirect:
        return RedirectResponse(auth.pending_redirect, status_code=302)
    if auth.user is None:
        return RedirectResponse(AUTH_PATH, status_code=302)
    return None


def validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{field}: {item['msg']}")
    return "; ".join(parts)


# Dashboard

@router.get("", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    context = await views.load_dashboard(source, LoadScope.for_request(request))
    return render(request, "dashboard.html", auth, context)


# Expenses

@router.get("/expenses", response_class=HTMLResponse)
async def expenses(
    request: Request,
    q: str = "",
    category_id: str = "",
    error: Optional[str] = None,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    context = await views.load_expenses(source, LoadScope.for_request(request), q, category_id)
    if error == "delete_failed":
        context["errors"].append("Failed to delete expense")
    return render(request, "expenses.html", auth, context)


async def _expense_form(request, auth, source, expense: dict, error: Optional[str] = None, status_code: int = 200):
    categories = await crud.fetch_categories(source)
    errors = [categories.error] if categories.error else []
    context = {
        "expense": expense,
        "categories": categories.data,
        "form_error": error,
        "errors": errors,
    }
    return render(request, "expense_form.html", auth, context, status_code=status_code)


async def _save_expense(request: Request, auth: AuthState, source: DataSource, expense_id: Optional[int] = None):
    form = await request.form()
    values = {field: form.get(field) for field in EXPENSE_FIELDS}
    if expense_id is not None:
        values["id"] = expense_id

    try:
        data = ExpenseIn(**values)
        if expense_id is None:
            await crud.insert_expense(source, data)
        else:
            await crud.update_expense(source, expense_id, data)
    except ValidationError as e:
        return await _expense_form(request, auth, source, values, validation_message(e), status_code=400)
    except (DataAccessError, ConfigurationError) as e:
        logger.error("Error saving expense: %s", e)
        return await _expense_form(request, auth, source, values, str(e), status_code=500)

    return RedirectResponse(f"{PROTECTED_PREFIX}/expenses", status_code=302)


@router.get("/expenses/add", response_class=HTMLResponse)
async def add_expense_form(
    request: Request,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    return await _expense_form(request, auth, source, {"date": date.today().isoformat()})


@router.post("/expenses/add")
async def add_expense(
    request: Request,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    return await _save_expense(request, auth, source)


@router.get("/expenses/{expense_id}/edit", response_class=HTMLResponse)
async def edit_expense_form(
    expense_id: int,
    request: Request,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    result = await crud.fetch_expense(source, expense_id)
    if result.ok and result.data is None:
        return render(request, "expense_form.html", auth,
                      {"expense": {}, "categories": [], "form_error": "Expense not found"}, status_code=404)
    if not result.ok:
        return render(request, "expense_form.html", auth,
                      {"expense": {}, "categories": [], "errors": [result.error]}, status_code=500)
    return await _expense_form(request, auth, source, result.data)


@router.post("/expenses/{expense_id}/edit")
async def edit_expense(
    expense_id: int,
    request: Request,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    return await _save_expense(request, auth, source, expense_id)


@router.post("/expenses/{expense_id}/delete")
async def delete_expense(
    expense_id: int,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    try:
        deleted = await crud.delete_expense(source, expense_id)
    except (DataAccessError, ConfigurationError) as e:
        logger.error("Error deleting expense %s: %s", expense_id, e)
        return RedirectResponse(f"{PROTECTED_PREFIX}/expenses?error=delete_failed", status_code=302)
    if not deleted:
        logger.warning("Expense %s not found for delete", expense_id)
    return RedirectResponse(f"{PROTECTED_PREFIX}/expenses", status_code=302)


# Revenue, reports and analytics

@router.get("/revenue", response_class=HTMLResponse)
async def revenue(
    request: Request,
    q: str = "",
    source_filter: str = Query("all", alias="source", pattern="^(all|orders|markets|courses)$"),
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    context = await views.load_revenue(source, LoadScope.for_request(request), q, source_filter)
    return render(request, "revenue.html", auth, context)


@router.get("/reports", response_class=HTMLResponse)
async def reports(
    request: Request,
    year: Optional[int] = Query(None, ge=1, le=9999),
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    context = await views.load_reports(source, LoadScope.for_request(request), year or date.today().year)
    return render(request, "reports.html", auth, context)


@router.get("/analytics", response_class=HTMLResponse)
async def analytics(
    request: Request,
    year: Optional[int] = Query(None, ge=1, le=9999),
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    context = await views.load_analytics(source, LoadScope.for_request(request), year or date.today().year)
    return render(request, "analytics.html", auth, context)


# Profile

@router.get("/profile", response_class=HTMLResponse)
async def profile(
    request: Request,
    saved: bool = False,
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    result = await crud.fetch_profile(source, auth.user.id)
    errors = [result.error] if result.error else []
    return render(request, "profile.html", auth, {"profile": result.data, "errors": errors, "saved": saved})


@router.post("/profile")
async def update_profile(
    request: Request,
    full_name: str = Form(""),
    auth: AuthState = Depends(get_auth_state),
    source: DataSource = Depends(get_data_source),
):
    redirect = _follow(auth)
    if redirect:
        return redirect
    try:
        await crud.update_profile(source, auth.user.id, auth.user.email, ProfileIn(full_name=full_name.strip()))
    except ValidationError as e:
        return render(request, "profile.html", auth,
                      {"profile": {"full_name": full_name, "email": auth.user.email},
                       "form_error": validation_message(e)}, status_code=400)
    except (DataAccessError, ConfigurationError) as e:
        logger.error("Error updating profile: %s", e)
        return render(request, "profile.html", auth,
                      {"profile": {"full_name": full_name, "email": auth.user.email}, "form_error": str(e)},
                      status_code=500)
    return RedirectResponse(f"{PROTECTED_PREFIX}/profile?saved=true", status_code=302)


# JSON endpoints

@api.get("/status")
async def status(request: Request):
    source = DataSource(request.app.state.database, missing=request.app.state.settings.missing())
    result = await check_connection(source)
    return {"status": result.status, "connected": result.connected, "message": result.message}


@api.get("/session")
def session_info(auth: AuthState = Depends(get_auth_state)):
    session = auth.session
    return {
        "authenticated": session is not None,
        "user": {"id": auth.user.id, "email": auth.user.email} if auth.user else None,
        "expires_at": session.expires_at.isoformat() if session else None,
    }


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    missing = settings.missing()
    if missing:
        logger.error(configuration_message(missing))
    if database is None and settings.is_configured:
        database = Database(settings.database_url)
    if database is not None and settings.create_tables:
        try:
            database.create_all()
        except SQLAlchemyError as e:
            logger.error("Could not create tables: %s", e)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if database is not None:
            database.dispose()

    app = FastAPI(title="Financial Monitor", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    secret_key = settings.secret_key
    if not secret_key:
        logger.error("SECRET_KEY is not set, sessions will not survive a restart")
        secret_key = secrets.token_hex(32)

    # the guard reads request.session, so SessionMiddleware (added last) wraps it
    app.add_middleware(RouteGuardMiddleware, client_factory=make_auth_client)
    app.add_middleware(SessionMiddleware, secret_key=secret_key, session_cookie="finmon_session", same_site="lax")

    @app.exception_handler(LoadCancelled)
    async def load_cancelled(request: Request, exc: LoadCancelled):
        logger.info("Client went away before %s finished loading", request.url.path)
        return Response(status_code=499)

    @app.get("/")
    def home():
        return RedirectResponse(PROTECTED_PREFIX, status_code=302)

    app.include_router(auth.router)
    app.include_router(router)
    app.include_router(api)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("finmon.main:app", host="0.0.0.0", port=8000, reload=True)
