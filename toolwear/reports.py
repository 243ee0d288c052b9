"""Time-window summaries and CSV exports over records and failures."""

from __future__ import annotations

import calendar
import csv
import io
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .domain import FailureEvent, ProductionRecord, Tool
from .validation import ValidationError
from .wear import accumulated_for_record, accumulated_pieces

RECORD_COLUMNS = (
    "id",
    "tool_id",
    "tool_code",
    "tool_description",
    "machine",
    "pieces",
    "entry_datetime",
    "exit_datetime",
    "created_at",
    "accumulated",
)

FAILURE_COLUMNS = (
    "id",
    "tool_id",
    "operator_id",
    "failure_datetime",
    "severity",
    "reason",
    "action_taken",
    "created_at",
)


class ReportPeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"

    @classmethod
    def parse(cls, value: str) -> "ReportPeriod":
        try:
            return cls((value or "").strip().lower())
        except ValueError as exc:
            raise ValidationError(
                f"Unknown period {value!r}; expected one of day, week, month, all"
            ) from exc


class ExportKind(str, Enum):
    RECORDS = "records"
    FAILURES = "failures"

    @classmethod
    def parse(cls, value: str) -> "ExportKind":
        try:
            return cls((value or "").strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown export type {value!r}") from exc


def _one_month_back(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_start(period: ReportPeriod, now: datetime) -> Optional[datetime]:
    """Lower bound of the reporting window; ``None`` for all-time."""

    if period is ReportPeriod.DAY:
        return now - timedelta(days=1)
    if period is ReportPeriod.WEEK:
        return now - timedelta(days=7)
    if period is ReportPeriod.MONTH:
        return _one_month_back(now)
    return None


def _in_window(created_at: datetime, since: Optional[datetime]) -> bool:
    return since is None or created_at >= since


def filter_records(
    records: Iterable[ProductionRecord],
    since: Optional[datetime],
    tool_id: Optional[str] = None,
) -> List[ProductionRecord]:
    return [
        record
        for record in records
        if _in_window(record.created_at, since) and (tool_id is None or record.tool_id == tool_id)
    ]


def filter_failures(
    failures: Iterable[FailureEvent],
    since: Optional[datetime],
    tool_id: Optional[str] = None,
) -> List[FailureEvent]:
    return [
        failure
        for failure in failures
        if _in_window(failure.created_at, since)
        and (tool_id is None or failure.tool_id == tool_id)
    ]


@dataclass(slots=True)
class ToolPieces:
    tool_id: str
    code: str
    description: str
    pieces: int
    accumulated: int


@dataclass(slots=True)
class ToolFailureCount:
    tool_id: str
    code: str
    failures: int


@dataclass(slots=True)
class ReportSummary:
    period: ReportPeriod
    since: Optional[datetime]
    total_records: int
    total_pieces: int
    pieces_by_tool: List[ToolPieces] = field(default_factory=list)
    failures_by_tool: List[ToolFailureCount] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "since": self.since.isoformat() if self.since else None,
            "totals": {
                "total_records": self.total_records,
                "total_pieces": self.total_pieces,
            },
            "pieces_by_tool": [
                {
                    "tool_id": row.tool_id,
                    "code": row.code,
                    "description": row.description,
                    "pieces": row.pieces,
                    "accumulated": row.accumulated,
                }
                for row in self.pieces_by_tool
            ],
            "failures_by_tool": [
                {"tool_id": row.tool_id, "code": row.code, "failures": row.failures}
                for row in self.failures_by_tool
            ],
        }


def build_summary(
    period: ReportPeriod,
    tools: Sequence[Tool],
    records: Sequence[ProductionRecord],
    failures: Sequence[FailureEvent],
    *,
    now: datetime,
    tool_id: Optional[str] = None,
) -> ReportSummary:
    since = period_start(period, now)
    window_records = filter_records(records, since, tool_id)
    window_failures = filter_failures(failures, since, tool_id)
    selected_tools = [tool for tool in tools if tool_id is None or tool.id == tool_id]

    pieces_by_tool = [
        ToolPieces(
            tool_id=tool.id,
            code=tool.code,
            description=tool.description,
            pieces=sum(record.pieces for record in window_records if record.tool_id == tool.id),
            accumulated=accumulated_pieces(tool.id, now, records, failures),
        )
        for tool in selected_tools
    ]
    # sorted() is stable, so equal totals keep the tool listing order.
    pieces_by_tool = sorted(pieces_by_tool, key=lambda row: row.pieces, reverse=True)

    failure_counts: Dict[str, int] = {}
    for failure in window_failures:
        failure_counts[failure.tool_id] = failure_counts.get(failure.tool_id, 0) + 1
    failures_by_tool = [
        ToolFailureCount(tool_id=tool.id, code=tool.code, failures=failure_counts[tool.id])
        for tool in selected_tools
        if tool.id in failure_counts
    ]

    return ReportSummary(
        period=period,
        since=since,
        total_records=len(window_records),
        total_pieces=sum(record.pieces for record in window_records),
        pieces_by_tool=pieces_by_tool,
        failures_by_tool=failures_by_tool,
    )


# ----------------------------------------------------------------------
# CSV export
# ----------------------------------------------------------------------
def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_csv(
    columns: Sequence[str], rows: Iterable[Mapping[str, Any]], *, delimiter: str = ","
) -> str:
    """Render rows with standard CSV quoting; only the delimiter varies."""

    buffer = io.StringIO()
    writer = csv.writer(
        buffer, delimiter=delimiter, quotechar='"', quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n"
    )
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(row.get(column)) for column in columns])
    return buffer.getvalue()


def export_records_csv(
    rows: Iterable[ProductionRecord],
    *,
    tools: Iterable[Tool],
    records: Sequence[ProductionRecord],
    failures: Sequence[FailureEvent],
    delimiter: str = ",",
) -> str:
    tools_by_id = {tool.id: tool for tool in tools}
    lines = []
    for record in rows:
        tool = tools_by_id.get(record.tool_id)
        lines.append(
            {
                "id": record.id,
                "tool_id": record.tool_id,
                "tool_code": tool.code if tool else "",
                "tool_description": tool.description if tool else "",
                "machine": record.machine,
                "pieces": record.pieces,
                "entry_datetime": record.entry_datetime,
                "exit_datetime": record.exit_datetime,
                "created_at": record.created_at,
                "accumulated": accumulated_for_record(record, records, failures),
            }
        )
    return render_csv(RECORD_COLUMNS, lines, delimiter=delimiter)


def export_failures_csv(rows: Iterable[FailureEvent], *, delimiter: str = ",") -> str:
    lines = [
        {column: getattr(failure, column) for column in FAILURE_COLUMNS} for failure in rows
    ]
    return render_csv(FAILURE_COLUMNS, lines, delimiter=delimiter)


def export_filename(kind: ExportKind, period: ReportPeriod) -> str:
    return f"{kind.value}_{period.value}.csv"


__all__ = [
    "ReportPeriod",
    "ExportKind",
    "ReportSummary",
    "ToolPieces",
    "ToolFailureCount",
    "RECORD_COLUMNS",
    "FAILURE_COLUMNS",
    "period_start",
    "filter_records",
    "filter_failures",
    "build_summary",
    "render_csv",
    "export_records_csv",
    "export_failures_csv",
    "export_filename",
]
