"""SQLite-backed persistence helpers for the tool wear tracker."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, Type, TypeVar

from .domain import (
    FailureEvent,
    FailureSeverity,
    ProductionRecord,
    Tool,
    ToolStatus,
    User,
    UserRole,
    as_utc,
)
from .repository import (
    DuplicateRecordError,
    RecordNotFoundError,
    ReferentialIntegrityError,
    RepositoryError,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

# Children first so foreign keys never block the drop.
TABLES = ("tool_failures", "production_records", "tools", "users")


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return as_utc(datetime.fromisoformat(value))


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


_DECODERS: Dict[type, Dict[str, Callable[[Any], Any]]] = {
    Tool: {"status": ToolStatus, "created_at": _parse_datetime},
    ProductionRecord: {
        "entry_datetime": _parse_datetime,
        "exit_datetime": _parse_datetime,
        "created_at": _parse_datetime,
    },
    FailureEvent: {
        "failure_datetime": _parse_datetime,
        "severity": FailureSeverity,
        "maintenance_required": bool,
        "created_at": _parse_datetime,
    },
    User: {"role": UserRole, "created_at": _parse_datetime},
}


def _translate_integrity_error(exc: sqlite3.IntegrityError, item_id: str) -> RepositoryError:
    message = str(exc)
    if "UNIQUE" in message:
        return DuplicateRecordError(f"Record {item_id!r} violates a unique constraint: {message}")
    if "FOREIGN KEY" in message:
        return ReferentialIntegrityError(f"Record {item_id!r} is referenced by other records")
    return RepositoryError(message)


class SQLiteRepository(Generic[T]):
    """Repository that maps one dataclass onto the columns of one table."""

    def __init__(self, connection: sqlite3.Connection, table: str, model: Type[T]) -> None:
        self._connection = connection
        self._table = table
        self._model = model
        self._columns: Tuple[str, ...] = tuple(item.name for item in fields(model))
        self._decoders = _DECODERS.get(model, {})

    def _to_row(self, item: T) -> Tuple[Any, ...]:
        return tuple(_encode(getattr(item, column)) for column in self._columns)

    def _from_row(self, row: sqlite3.Row) -> T:
        values = {}
        for column in self._columns:
            raw = row[column]
            decoder = self._decoders.get(column)
            values[column] = decoder(raw) if decoder is not None and raw is not None else raw
        return self._model(**values)

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        cursor = self._connection.execute(
            f"SELECT 1 FROM {self._table} WHERE id = ? LIMIT 1", (item_id,)  # nosec - static table names
        )
        return cursor.fetchone() is not None

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        cursor = self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
        value = cursor.fetchone()
        return int(value[0]) if value else 0

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        placeholders = ", ".join("?" for _ in self._columns)
        try:
            self._connection.execute(
                f"INSERT INTO {self._table} ({', '.join(self._columns)}) VALUES ({placeholders})",
                self._to_row(item),
            )
        except sqlite3.IntegrityError as exc:
            self._connection.rollback()
            raise _translate_integrity_error(exc, item_id) from exc
        self._connection.commit()

    def upsert(self, item_id: str, item: T) -> None:
        placeholders = ", ".join("?" for _ in self._columns)
        updates = ", ".join(
            f"{column} = excluded.{column}" for column in self._columns if column != "id"
        )
        try:
            self._connection.execute(
                f"INSERT INTO {self._table} ({', '.join(self._columns)}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                self._to_row(item),
            )
        except sqlite3.IntegrityError as exc:
            self._connection.rollback()
            raise _translate_integrity_error(exc, item_id) from exc
        self._connection.commit()

    def get(self, item_id: str) -> T:
        cursor = self._connection.execute(
            f"SELECT * FROM {self._table} WHERE id = ?", (item_id,)
        )
        row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return self._from_row(row)

    def remove(self, item_id: str) -> None:
        try:
            cursor = self._connection.execute(
                f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
            )
        except sqlite3.IntegrityError as exc:
            self._connection.rollback()
            raise _translate_integrity_error(exc, item_id) from exc
        if cursor.rowcount == 0:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        self._connection.commit()

    def clear(self) -> None:
        self._connection.execute(f"DELETE FROM {self._table}")
        self._connection.commit()

    def list(self) -> List[T]:
        cursor = self._connection.execute(f"SELECT * FROM {self._table} ORDER BY rowid")
        return [self._from_row(row) for row in cursor.fetchall()]


class ToolwearDatabase:
    """Convenience facade bundling SQLite repositories for all aggregates."""

    kind = "sqlite"

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        self._connection = connection
        self._path = path
        self.initialize()
        self.tools = SQLiteRepository[Tool](connection, "tools", Tool)
        self.records = SQLiteRepository[ProductionRecord](
            connection, "production_records", ProductionRecord
        )
        self.failures = SQLiteRepository[FailureEvent](connection, "tool_failures", FailureEvent)
        self.users = SQLiteRepository[User](connection, "users", User)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def initialize(self, drop_existing: bool = False) -> None:
        """Create the schema from the bundled script, optionally dropping it first."""

        if drop_existing:
            for table in TABLES:
                self._connection.execute(f"DROP TABLE IF EXISTS {table}")
            logger.warning("Dropped existing schema in %s", self._path)
        self._connection.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        self._connection.commit()
        logger.info("Schema initialised in %s", self._path)

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "ToolwearDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "ToolwearDatabase", "SCHEMA_PATH"]
