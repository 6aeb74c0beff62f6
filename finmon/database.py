# finmon/database.py

import logging
from contextlib import contextmanager
from typing import Any, Callable, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from starlette.concurrency import run_in_threadpool

from .config import ConfigurationError, configuration_message
from .results import CONFIG_ERROR, FetchResult

logger = logging.getLogger(__name__)

Base = declarative_base()

# RLS policies read the caller's identity from this setting (auth.uid()).
RLS_CLAIM = "request.jwt.claim.sub"


class DataAccessError(Exception):
    pass


class Database:
    def __init__(self, url: str, **engine_kwargs):
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        self.engine = create_engine(url, pool_pre_ping=True, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    @property
    def supports_rls(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def create_all(self) -> None:
        # models register themselves on Base when imported
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self, user_id: Optional[str] = None):
        db = self.SessionLocal()
        try:
            if user_id and self.supports_rls:
                db.execute(
                    text("select set_config(:claim, :sub, true)"),
                    {"claim": RLS_CLAIM, "sub": str(user_id)},
                )
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


class DataSource:
    """Reads and writes on behalf of one signed-in user.

    Every call opens its own session, so reads issued together through
    ``asyncio.gather`` run concurrently in the thread pool.
    """

    def __init__(self, database: Optional[Database], user_id: Optional[str] = None, missing=None):
        self.database = database
        self.user_id = user_id
        self.missing = list(missing or ([] if database else ["DATABASE_URL"]))

    @property
    def configured(self) -> bool:
        return self.database is not None

    def _run(self, op: Callable[[Session], Any]):
        with self.database.session_scope(self.user_id) as db:
            return op(db)

    async def read(self, query: Callable[[Session], Any], default: Any, entity: str) -> FetchResult:
        if not self.configured:
            return FetchResult.failure(default, configuration_message(self.missing), CONFIG_ERROR)
        try:
            return FetchResult.success(await run_in_threadpool(self._run, query))
        except SQLAlchemyError as e:
            logger.error("Error fetching %s: %s", entity, e)
            return FetchResult.failure(default, f"Failed to load {entity}")

    async def write(self, op: Callable[[Session], Any], entity: str):
        if not self.configured:
            raise ConfigurationError(configuration_message(self.missing))
        try:
            return await run_in_threadpool(self._run, op)
        except SQLAlchemyError as e:
            logger.error("Error writing %s: %s", entity, e)
            raise DataAccessError(f"Failed to save {entity}") from e
