"""Runtime configuration and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DELIMITER_ALIASES = {"comma": ",", "semicolon": ";", "tab": "\t", "\\t": "\t"}


def parse_delimiter(value: str) -> str:
    delimiter = DELIMITER_ALIASES.get(value.lower(), value) if value else ","
    if delimiter not in {",", ";", "\t"}:
        raise ValueError(f"Unsupported CSV delimiter {value!r}")
    return delimiter


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Values controlling storage, authentication and alerting."""

    database_path: str = "toolwear.sqlite3"
    in_memory: bool = False
    jwt_secret: str = "change-this-secret"
    token_ttl_hours: float = 8.0
    warning_threshold: int = 5000
    record_alert_threshold: int = 1000
    record_row_threshold: int = 500
    csv_delimiter: str = ","
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3001

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        defaults = cls()
        return cls(
            database_path=environ.get("TOOLWEAR_DATABASE", defaults.database_path),
            in_memory=_flag(environ.get("TOOLWEAR_IN_MEMORY")),
            jwt_secret=environ.get("TOOLWEAR_JWT_SECRET", defaults.jwt_secret),
            token_ttl_hours=float(environ.get("TOOLWEAR_TOKEN_HOURS", defaults.token_ttl_hours)),
            warning_threshold=int(
                environ.get("TOOLWEAR_WARNING_THRESHOLD", defaults.warning_threshold)
            ),
            record_alert_threshold=int(
                environ.get("TOOLWEAR_RECORD_ALERT_THRESHOLD", defaults.record_alert_threshold)
            ),
            record_row_threshold=int(
                environ.get("TOOLWEAR_RECORD_ROW_THRESHOLD", defaults.record_row_threshold)
            ),
            csv_delimiter=parse_delimiter(
                environ.get("TOOLWEAR_CSV_DELIMITER", defaults.csv_delimiter)
            ),
            log_level=environ.get("TOOLWEAR_LOG_LEVEL", defaults.log_level).upper(),
            host=environ.get("HOST", defaults.host),
            port=int(environ.get("PORT", defaults.port)),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


__all__ = ["Settings", "configure_logging", "parse_delimiter", "LOG_FORMAT"]
