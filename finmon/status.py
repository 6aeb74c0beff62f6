import logging
from dataclasses import dataclass
from typing import Optional

from .database import DataSource
from .models import Expense

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStatus:
    status: str
    message: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status == "connected"


async def check_connection(source: DataSource) -> ConnectionStatus:
    result = await source.read(lambda db: db.query(Expense.id).limit(1).all(), None, "connection check")
    if result.ok:
        return ConnectionStatus("connected", "Successfully connected to the database")
    logger.error("Database connection error: %s", result.error)
    return ConnectionStatus("error", result.error or "Could not connect to the database")
