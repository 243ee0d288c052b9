"""Core data structures for the tool wear tracking system."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a timestamp to aware UTC; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ToolStatus(str, Enum):
    """Administrative state of a tool in the crib."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class FailureSeverity(str, Enum):
    """Severity reported by the operator when a tool breaks or wears out."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UserRole(str, Enum):
    OPERATOR = "operator"
    MANAGER = "manager"
    OWNER = "owner"


RECORD_FAILED = "failed"


@dataclass(slots=True)
class Tool:
    """A cutting tool whose wear is tracked across production records."""

    id: str
    code: str
    description: str
    brand: Optional[str] = None
    type: Optional[str] = None
    diameter: Optional[float] = None
    length: Optional[float] = None
    material: Optional[str] = None
    coating: Optional[str] = None
    max_rpm: Optional[int] = None
    cutting_edges: Optional[int] = None
    notes: Optional[str] = None
    status: ToolStatus = ToolStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class ProductionRecord:
    """Pieces produced with one tool on one machine."""

    id: str
    tool_id: str
    machine: str
    pieces: int
    entry_datetime: Optional[datetime] = None
    exit_datetime: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    status: Optional[str] = None

    @property
    def reference_time(self) -> Optional[datetime]:
        """Timestamp used to place the record on the tool's timeline."""

        return self.entry_datetime or self.created_at


@dataclass(slots=True)
class FailureEvent:
    """An append-only tool failure report."""

    id: str
    tool_id: str
    operator_id: Optional[str]
    failure_datetime: datetime
    severity: FailureSeverity
    reason: str
    failure_type: Optional[str] = None
    machine: Optional[str] = None
    operation_type: Optional[str] = None
    material_processed: Optional[str] = None
    cutting_parameters: Optional[str] = None
    action_taken: Optional[str] = None
    maintenance_required: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class User:
    """Shop floor account identified by its CPF."""

    id: str
    name: str
    cpf: str
    password_hash: str
    role: UserRole = UserRole.OPERATOR
    created_at: datetime = field(default_factory=utcnow)


def to_payload(item: Any, *, exclude: tuple = ()) -> Dict[str, Any]:
    """Flatten a domain record into JSON friendly values."""

    payload: Dict[str, Any] = {}
    for item_field in fields(item):
        if item_field.name in exclude:
            continue
        value = getattr(item, item_field.name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        payload[item_field.name] = value
    return payload


__all__ = [
    "ToolStatus",
    "FailureSeverity",
    "UserRole",
    "RECORD_FAILED",
    "Tool",
    "ProductionRecord",
    "FailureEvent",
    "User",
    "utcnow",
    "as_utc",
    "to_payload",
]
