"""Service layer that implements the tool tracking use-cases."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

from .domain import (
    RECORD_FAILED,
    FailureEvent,
    FailureSeverity,
    ProductionRecord,
    Tool,
    ToolStatus,
    User,
    UserRole,
    as_utc,
    to_payload,
    utcnow,
)
from .events import (
    FAILURE_CREATED,
    RECORD_CREATED,
    RECORD_DELETED,
    TOOL_CREATED,
    TOOL_DELETED,
    TOOL_UPDATED,
    EventBroadcaster,
)
from .reports import (
    ExportKind,
    ReportPeriod,
    ReportSummary,
    build_summary,
    export_failures_csv,
    export_records_csv,
    filter_failures,
    filter_records,
    period_start,
)
from .repository import (
    DuplicateRecordError,
    InMemoryStore,
    RecordNotFoundError,
    ReferentialIntegrityError,
)
from .security import AuthenticationError, TokenIssuer, hash_password, verify_password
from .storage import ToolwearDatabase
from .validation import (
    ValidationError,
    validate_cpf,
    validate_name,
    validate_password,
)
from .wear import ToolHealth, ToolSeverity, accumulated_for_record, tool_health

logger = logging.getLogger(__name__)

Store = Union[InMemoryStore, ToolwearDatabase]

TOOL_ATTRIBUTES = (
    "code",
    "description",
    "brand",
    "type",
    "diameter",
    "length",
    "material",
    "coating",
    "max_rpm",
    "cutting_edges",
    "notes",
    "status",
)

DASHBOARD_TOP_TOOLS = 6
RECENT_RECORDS = 10


@dataclass(slots=True)
class AlertOptions:
    """Thresholds driving dashboard severities and alerts."""

    warning_threshold: int = 5000
    record_alert_threshold: int = 1000
    record_row_threshold: int = 500


@dataclass(slots=True)
class Alert:
    severity: ToolSeverity
    message: str
    tool_id: str
    at: datetime
    record_id: Optional[str] = None


@dataclass(slots=True)
class RecordRow:
    """A production record as listed on the records screen."""

    record: ProductionRecord
    tool: Optional[Tool]
    accumulated: int
    row_status: str


@dataclass(slots=True)
class FailureRow:
    failure: FailureEvent
    tool_code: Optional[str]
    tool_description: Optional[str]
    operator_name: Optional[str]


@dataclass(slots=True)
class DashboardSnapshot:
    generated_at: datetime
    tools: List[ToolHealth]
    total_records: int
    total_pieces: int
    today_records: int
    pieces_by_tool: List[Dict[str, Any]]
    recent_records: List[ProductionRecord]
    alerts: List[Alert] = field(default_factory=list)


def _required_text(value: Optional[str], label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required")
    return cleaned


def _parse_tool_status(value: Union[str, ToolStatus, None]) -> ToolStatus:
    if value is None:
        return ToolStatus.ACTIVE
    try:
        return ToolStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown tool status {value!r}") from exc


class ToolTrackingService:
    """Facade that exposes the shop floor use-cases to clients."""

    def __init__(
        self,
        store: Store,
        *,
        tokens: TokenIssuer,
        broadcaster: Optional[EventBroadcaster] = None,
        alert_options: Optional[AlertOptions] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.broadcaster = broadcaster if broadcaster is not None else EventBroadcaster()
        self.alert_options = alert_options if alert_options is not None else AlertOptions()
        self._clock = clock

    @property
    def tools(self):
        return self.store.tools

    @property
    def records(self):
        return self.store.records

    @property
    def failures(self):
        return self.store.failures

    @property
    def users(self):
        return self.store.users

    def now(self) -> datetime:
        return as_utc(self._clock())

    def _publish(self, event: str, data: Dict[str, Any]) -> None:
        self.broadcaster.publish(event, data)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def register_user(
        self, name: str, cpf: str, password: str, *, role: UserRole = UserRole.OPERATOR
    ) -> User:
        if not name or not cpf or not password:
            raise ValidationError("name, cpf and password required")
        cleaned_name = validate_name(name)
        digits = validate_cpf(cpf)
        validate_password(password)
        if any(user.cpf == digits for user in self.users):
            raise DuplicateRecordError("CPF already registered")
        user = User(
            id=str(uuid4()),
            name=cleaned_name,
            cpf=digits,
            password_hash=hash_password(password),
            role=role,
            created_at=self.now(),
        )
        self.users.add(user.id, user)
        logger.info("Registered user %s with role %s", user.id, user.role.value)
        return user

    def authenticate(self, cpf: str, password: str) -> User:
        if not cpf:
            raise ValidationError("CPF is required")
        if not password:
            raise ValidationError("Password is required")
        if not password.strip():
            raise ValidationError("Password cannot be only whitespace")
        digits = validate_cpf(cpf)
        user = next((candidate for candidate in self.users if candidate.cpf == digits), None)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Rejected login for CPF ending %s", digits[-2:])
            raise AuthenticationError("Invalid CPF or password")
        return user

    def issue_token(self, user: User) -> str:
        return self.tokens.issue(user, now=self.now())

    def user_from_token(self, token: str) -> User:
        claims = self.tokens.decode(token, now=self.now())
        try:
            return self.users.get(claims.user_id)
        except RecordNotFoundError as exc:
            raise AuthenticationError("Unknown user") from exc

    @staticmethod
    def user_payload(user: User) -> Dict[str, Any]:
        return {"id": user.id, "name": user.name, "cpf": user.cpf, "role": user.role.value}

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    def list_tools(self) -> List[Tool]:
        return self.tools.list()

    def get_tool(self, tool_id: str) -> Tool:
        return self.tools.get(tool_id)

    def _ensure_unique_code(self, code: str, *, exclude_id: Optional[str] = None) -> None:
        if any(tool.code == code and tool.id != exclude_id for tool in self.tools):
            raise DuplicateRecordError("A tool with this code already exists")

    def create_tool(self, code: str, description: str, **attributes: Any) -> Tool:
        unknown = set(attributes) - set(TOOL_ATTRIBUTES)
        if unknown:
            raise ValidationError(f"Unknown tool fields: {', '.join(sorted(unknown))}")
        if not code or not description:
            raise ValidationError("Code and description are required")
        code = code.strip()
        self._ensure_unique_code(code)
        status = _parse_tool_status(attributes.pop("status", None))
        tool = Tool(
            id=str(uuid4()),
            code=code,
            description=description.strip(),
            status=status,
            created_at=self.now(),
            **attributes,
        )
        self.tools.add(tool.id, tool)
        logger.info("Created tool %s (%s)", tool.code, tool.id)
        self._publish(TOOL_CREATED, to_payload(tool))
        return tool

    def update_tool(self, tool_id: str, **changes: Any) -> Tool:
        tool = self.tools.get(tool_id)
        unknown = set(changes) - set(TOOL_ATTRIBUTES)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if "code" in changes:
            changes["code"] = _required_text(changes["code"], "Code")
            self._ensure_unique_code(changes["code"], exclude_id=tool.id)
        if "description" in changes:
            changes["description"] = _required_text(changes["description"], "Description")
        if "status" in changes:
            changes["status"] = _parse_tool_status(changes["status"])
        for name, value in changes.items():
            setattr(tool, name, value)
        self.tools.upsert(tool.id, tool)
        self._publish(TOOL_UPDATED, to_payload(tool))
        return tool

    def delete_tool(self, tool_id: str) -> Tool:
        tool = self.tools.get(tool_id)
        referenced = any(record.tool_id == tool_id for record in self.records) or any(
            failure.tool_id == tool_id for failure in self.failures
        )
        if referenced:
            raise ReferentialIntegrityError(
                f"Tool {tool.code} has production records or failures and cannot be deleted"
            )
        self.tools.remove(tool_id)
        logger.info("Deleted tool %s (%s)", tool.code, tool.id)
        self._publish(TOOL_DELETED, {"id": tool_id})
        return tool

    # ------------------------------------------------------------------
    # Production records
    # ------------------------------------------------------------------
    def list_records(
        self,
        *,
        record_id: Optional[str] = None,
        machine: Optional[str] = None,
        tool_id: Optional[str] = None,
    ) -> List[ProductionRecord]:
        rows = sorted(self.records.list(), key=lambda record: record.created_at, reverse=True)
        if record_id:
            rows = [record for record in rows if record.id == record_id]
        if machine:
            rows = [record for record in rows if machine in (record.machine or "")]
        if tool_id:
            rows = [record for record in rows if record.tool_id == tool_id]
        return rows

    def record_rows(
        self, *, threshold: Optional[int] = None, **filters: Optional[str]
    ) -> List[RecordRow]:
        records = self.records.list()
        failures = self.failures.list()
        tools_by_id = {tool.id: tool for tool in self.tools}
        if threshold is None:
            threshold = self.alert_options.record_row_threshold
        rows: List[RecordRow] = []
        for record in self.list_records(**filters):
            accumulated = accumulated_for_record(record, records, failures)
            moment = record.reference_time
            failed_later = moment is not None and any(
                failure.tool_id == record.tool_id and failure.failure_datetime > moment
                for failure in failures
            )
            if record.status == RECORD_FAILED or failed_later:
                row_status = RECORD_FAILED
            elif accumulated >= threshold:
                row_status = ToolSeverity.WARNING.value
            else:
                row_status = ToolSeverity.OK.value
            rows.append(
                RecordRow(
                    record=record,
                    tool=tools_by_id.get(record.tool_id),
                    accumulated=accumulated,
                    row_status=row_status,
                )
            )
        return rows

    def record_production(
        self,
        tool_id: str,
        machine: str,
        pieces: int,
        *,
        entry_datetime: Optional[datetime] = None,
        exit_datetime: Optional[datetime] = None,
    ) -> ProductionRecord:
        if not tool_id or not machine or pieces is None:
            raise ValidationError("tool_id, machine and pieces required")
        if tool_id not in self.tools:
            raise ValidationError(f"Tool {tool_id!r} does not exist")
        if isinstance(pieces, bool) or not isinstance(pieces, int) or pieces <= 0:
            raise ValidationError("Pieces must be a positive whole number")
        entry_datetime = as_utc(entry_datetime)
        exit_datetime = as_utc(exit_datetime)
        if entry_datetime and exit_datetime and exit_datetime < entry_datetime:
            raise ValidationError("Exit time cannot be before entry time")
        record = ProductionRecord(
            id=str(uuid4()),
            tool_id=tool_id,
            machine=machine.strip(),
            pieces=pieces,
            entry_datetime=entry_datetime,
            exit_datetime=exit_datetime,
            created_at=self.now(),
        )
        self.records.add(record.id, record)
        logger.info("Recorded %s pieces for tool %s on %s", pieces, tool_id, record.machine)
        self._publish(RECORD_CREATED, to_payload(record))
        return record

    def delete_record(self, record_id: str) -> None:
        self.records.remove(record_id)
        logger.info("Deleted production record %s", record_id)
        self._publish(RECORD_DELETED, {"id": record_id})

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------
    def list_failures(self) -> List[FailureEvent]:
        return sorted(self.failures.list(), key=lambda failure: failure.created_at, reverse=True)

    def failure_rows(self) -> List[FailureRow]:
        tools_by_id = {tool.id: tool for tool in self.tools}
        users_by_id = {user.id: user for user in self.users}
        return [
            self._failure_row(failure, tools_by_id, users_by_id)
            for failure in self.list_failures()
        ]

    def failure_row(self, failure: FailureEvent) -> FailureRow:
        """Join one failure with its tool and operator."""

        tools_by_id = {tool.id: tool for tool in self.tools}
        users_by_id = {user.id: user for user in self.users}
        return self._failure_row(failure, tools_by_id, users_by_id)

    @staticmethod
    def _failure_row(
        failure: FailureEvent, tools_by_id: Dict[str, Tool], users_by_id: Dict[str, User]
    ) -> FailureRow:
        tool = tools_by_id.get(failure.tool_id)
        operator = users_by_id.get(failure.operator_id) if failure.operator_id else None
        return FailureRow(
            failure=failure,
            tool_code=tool.code if tool else None,
            tool_description=tool.description if tool else None,
            operator_name=operator.name if operator else None,
        )

    def report_failure(
        self,
        tool_id: str,
        *,
        operator_id: Optional[str],
        reason: str,
        severity: Union[str, FailureSeverity],
        failure_datetime: Optional[datetime] = None,
        failure_type: Optional[str] = None,
        machine: Optional[str] = None,
        operation_type: Optional[str] = None,
        material_processed: Optional[str] = None,
        cutting_parameters: Optional[str] = None,
        action_taken: Optional[str] = None,
        maintenance_required: bool = False,
    ) -> FailureEvent:
        if not tool_id:
            raise ValidationError("Tool id is required")
        if not reason or not reason.strip():
            raise ValidationError("Failure reason is required")
        if not severity:
            raise ValidationError("Failure severity is required")
        if tool_id not in self.tools:
            raise ValidationError(f"Tool {tool_id!r} does not exist")
        try:
            severity = FailureSeverity(severity)
        except ValueError as exc:
            raise ValidationError(f"Unknown severity {severity!r}") from exc
        now = self.now()
        failure = FailureEvent(
            id=str(uuid4()),
            tool_id=tool_id,
            operator_id=operator_id,
            failure_datetime=as_utc(failure_datetime) or now,
            severity=severity,
            reason=reason.strip(),
            failure_type=failure_type,
            machine=machine,
            operation_type=operation_type,
            material_processed=material_processed,
            cutting_parameters=cutting_parameters,
            action_taken=action_taken,
            maintenance_required=bool(maintenance_required),
            created_at=now,
        )
        self.failures.add(failure.id, failure)
        superseded = self._mark_superseded_records(failure)
        logger.warning(
            "Tool %s failed (%s): %s; %s records annotated",
            tool_id,
            severity.value,
            failure.reason,
            superseded,
        )
        self._publish(FAILURE_CREATED, to_payload(failure))
        return failure

    def _mark_superseded_records(self, failure: FailureEvent) -> int:
        count = 0
        for record in self.records.list():
            moment = record.reference_time
            if (
                record.tool_id == failure.tool_id
                and record.status is None
                and moment is not None
                and moment <= failure.failure_datetime
            ):
                record.status = RECORD_FAILED
                self.records.upsert(record.id, record)
                count += 1
        return count

    # ------------------------------------------------------------------
    # Wear and dashboard
    # ------------------------------------------------------------------
    def update_alert_options(
        self,
        *,
        warning_threshold: Optional[int] = None,
        record_alert_threshold: Optional[int] = None,
        record_row_threshold: Optional[int] = None,
    ) -> AlertOptions:
        """Replace the thresholds that were given; the others are kept."""

        current = self.alert_options
        changes = {
            "warning_threshold": warning_threshold,
            "record_alert_threshold": record_alert_threshold,
            "record_row_threshold": record_row_threshold,
        }
        for name, value in changes.items():
            if value is not None and (isinstance(value, bool) or value < 0):
                raise ValidationError(f"{name} must be a non-negative whole number")
        self.alert_options = AlertOptions(
            **{
                name: getattr(current, name) if value is None else value
                for name, value in changes.items()
            }
        )
        logger.info("Alert thresholds updated: %s", self.alert_options)
        return self.alert_options

    def tool_health(self, tool_id: str) -> ToolHealth:
        return tool_health(
            self.tools.get(tool_id),
            self.records.list(),
            self.failures.list(),
            warning_threshold=self.alert_options.warning_threshold,
            now=self.now(),
        )

    def tools_health(self) -> List[ToolHealth]:
        records = self.records.list()
        failures = self.failures.list()
        now = self.now()
        return [
            tool_health(
                tool,
                records,
                failures,
                warning_threshold=self.alert_options.warning_threshold,
                now=now,
            )
            for tool in self.tools
        ]

    def dashboard(self) -> DashboardSnapshot:
        now = self.now()
        records = self.list_records()
        health = self.tools_health()
        tools = self.tools.list()

        pieces_by_tool = sorted(
            (
                {
                    "tool_id": tool.id,
                    "code": tool.code,
                    "pieces": sum(r.pieces for r in records if r.tool_id == tool.id),
                }
                for tool in tools
            ),
            key=lambda row: row["pieces"],
            reverse=True,
        )[:DASHBOARD_TOP_TOOLS]

        alerts: List[Alert] = []
        for entry in health:
            if entry.severity is ToolSeverity.CRITICAL:
                last = entry.last_failure_at.isoformat() if entry.last_failure_at else "N/A"
                alerts.append(
                    Alert(
                        severity=ToolSeverity.CRITICAL,
                        message=f"Tool {entry.code} critical, last failure: {last}",
                        tool_id=entry.tool_id,
                        at=now,
                    )
                )
            elif entry.severity is ToolSeverity.WARNING:
                alerts.append(
                    Alert(
                        severity=ToolSeverity.WARNING,
                        message=(
                            f"Tool {entry.code} close to its wear threshold, "
                            f"accumulated: {entry.accumulated} pieces"
                        ),
                        tool_id=entry.tool_id,
                        at=now,
                    )
                )
        recent_since = now - timedelta(days=1)
        for record in records:
            if (
                record.created_at >= recent_since
                and record.pieces >= self.alert_options.record_alert_threshold
            ):
                alerts.append(
                    Alert(
                        severity=ToolSeverity.WARNING,
                        message=f"Record with high piece count: {record.pieces} (tool {record.tool_id})",
                        tool_id=record.tool_id,
                        at=record.created_at,
                        record_id=record.id,
                    )
                )
        alerts.sort(key=lambda alert: alert.severity is not ToolSeverity.CRITICAL)

        return DashboardSnapshot(
            generated_at=now,
            tools=health,
            total_records=len(records),
            total_pieces=sum(record.pieces for record in records),
            today_records=sum(1 for record in records if record.created_at.date() == now.date()),
            pieces_by_tool=pieces_by_tool,
            recent_records=records[:RECENT_RECORDS],
            alerts=alerts,
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def summary(self, period: ReportPeriod, *, tool_id: Optional[str] = None) -> ReportSummary:
        return build_summary(
            period,
            self.tools.list(),
            self.records.list(),
            self.failures.list(),
            now=self.now(),
            tool_id=tool_id,
        )

    def export_csv(
        self,
        kind: ExportKind,
        period: ReportPeriod,
        *,
        tool_id: Optional[str] = None,
        delimiter: str = ",",
    ) -> str:
        since = period_start(period, self.now())
        failures = self.failures.list()
        if kind is ExportKind.FAILURES:
            return export_failures_csv(
                filter_failures(failures, since, tool_id), delimiter=delimiter
            )
        records = self.records.list()
        return export_records_csv(
            filter_records(records, since, tool_id),
            tools=self.tools.list(),
            records=records,
            failures=failures,
            delimiter=delimiter,
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    def initialize_store(self, *, drop_existing: bool = False) -> None:
        self.store.initialize(drop_existing=drop_existing)
        logger.info("Store %s initialised (drop_existing=%s)", self.store.kind, drop_existing)


__all__ = [
    "ToolTrackingService",
    "AlertOptions",
    "Alert",
    "RecordRow",
    "FailureRow",
    "DashboardSnapshot",
    "Store",
]
