# finmon/config.py

import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

load_dotenv()

REQUIRED_VARIABLES = ("DATABASE_URL", "SECRET_KEY")


class ConfigurationError(RuntimeError):
    pass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    secret_key: str = ""
    session_ttl: int = 3600
    refresh_ttl: int = 30 * 24 * 3600
    login_code_ttl: int = 600
    log_level: str = "INFO"
    create_tables: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", ""),
            secret_key=os.getenv("SECRET_KEY", ""),
            session_ttl=int(os.getenv("SESSION_TTL_SECONDS", 3600)),
            refresh_ttl=int(os.getenv("REFRESH_TTL_SECONDS", 30 * 24 * 3600)),
            login_code_ttl=int(os.getenv("LOGIN_CODE_TTL_SECONDS", 600)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            create_tables=_env_bool("CREATE_TABLES", True),
        )

    def missing(self) -> List[str]:
        values = {"DATABASE_URL": self.database_url, "SECRET_KEY": self.secret_key}
        return [name for name in REQUIRED_VARIABLES if not values[name]]

    @property
    def is_configured(self) -> bool:
        return not self.missing()

    def require(self) -> "Settings":
        missing = self.missing()
        if missing:
            raise ConfigurationError(configuration_message(missing))
        return self


def configuration_message(missing: List[str]) -> str:
    return f"Database credentials are not configured properly (missing: {', '.join(missing)})"
