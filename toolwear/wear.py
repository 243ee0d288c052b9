"""Accumulated-wear computation and tool severity classification.

Failures act as odometer resets: once a tool fails, the pieces counted
towards its wear start again from zero.  Every window in this module is
half-open, ``start < t <= end``, so a record stamped at the very instant of a
failure still belongs to the pre-failure interval.

Two variants share the same window helper:

* **live** (:func:`accumulated_pieces`): the window closes at ``as_of`` and
  opens at the latest failure strictly before ``as_of``.
* **historical** (:func:`accumulated_until_failure`): used for a past record
  row with ``as_of`` set to the record's own time.  The window opens at the
  latest failure strictly before ``as_of`` and closes at the next failure
  at-or-after ``as_of`` when there is one, otherwise at ``as_of``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .domain import FailureEvent, ProductionRecord, Tool, utcnow


class ToolSeverity(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class AccumulationWindow:
    """Half-open interval ``(start, end]``; ``start=None`` means unbounded."""

    start: Optional[datetime]
    end: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        if self.start is not None and moment <= self.start:
            return False
        return moment <= self.end


def _failure_key(failure: FailureEvent):
    return (failure.failure_datetime, failure.id)


def _tool_failures(tool_id: str, failures: Iterable[FailureEvent]) -> List[FailureEvent]:
    return [
        failure
        for failure in failures
        if failure.tool_id == tool_id and failure.failure_datetime is not None
    ]


def latest_failure_before(
    tool_id: str, as_of: datetime, failures: Iterable[FailureEvent]
) -> Optional[FailureEvent]:
    """Most recent failure strictly before ``as_of``; ties go to the highest id."""

    candidates = [
        failure
        for failure in _tool_failures(tool_id, failures)
        if failure.failure_datetime < as_of
    ]
    return max(candidates, key=_failure_key, default=None)


def next_failure_at_or_after(
    tool_id: str, moment: datetime, failures: Iterable[FailureEvent]
) -> Optional[FailureEvent]:
    """Earliest failure at or after ``moment``; ties go to the lowest id."""

    candidates = [
        failure
        for failure in _tool_failures(tool_id, failures)
        if failure.failure_datetime >= moment
    ]
    return min(candidates, key=_failure_key, default=None)


def live_window(
    tool_id: str, as_of: datetime, failures: Iterable[FailureEvent]
) -> AccumulationWindow:
    last = latest_failure_before(tool_id, as_of, failures)
    return AccumulationWindow(start=last.failure_datetime if last else None, end=as_of)


def historical_window(
    tool_id: str, as_of: datetime, failures: Sequence[FailureEvent]
) -> AccumulationWindow:
    last = latest_failure_before(tool_id, as_of, failures)
    following = next_failure_at_or_after(tool_id, as_of, failures)
    return AccumulationWindow(
        start=last.failure_datetime if last else None,
        end=following.failure_datetime if following else as_of,
    )


def sum_window(
    tool_id: str, window: AccumulationWindow, records: Iterable[ProductionRecord]
) -> int:
    return sum(
        record.pieces
        for record in records
        if record.tool_id == tool_id and window.contains(record.reference_time)
    )


def accumulated_pieces(
    tool_id: str,
    as_of: datetime,
    records: Iterable[ProductionRecord],
    failures: Iterable[FailureEvent],
) -> int:
    """Pieces produced with ``tool_id`` since its last failure before ``as_of``."""

    return sum_window(tool_id, live_window(tool_id, as_of, list(failures)), records)


def accumulated_until_failure(
    tool_id: str,
    as_of: datetime,
    records: Iterable[ProductionRecord],
    failures: Iterable[FailureEvent],
) -> int:
    """Pieces in the wear interval that ``as_of`` falls into, closed by the next failure."""

    return sum_window(tool_id, historical_window(tool_id, as_of, list(failures)), records)


def accumulated_for_record(
    record: ProductionRecord,
    records: Iterable[ProductionRecord],
    failures: Iterable[FailureEvent],
) -> int:
    moment = record.reference_time
    if moment is None:
        return 0
    return accumulated_until_failure(record.tool_id, moment, records, failures)


# ----------------------------------------------------------------------
# Severity
# ----------------------------------------------------------------------
def classify(accumulated: int, warning_threshold: int, in_failed_state: bool) -> ToolSeverity:
    if in_failed_state:
        return ToolSeverity.CRITICAL
    if accumulated >= warning_threshold:
        return ToolSeverity.WARNING
    return ToolSeverity.OK


@dataclass(slots=True)
class ToolHealth:
    """Derived wear state of one tool at one instant."""

    tool_id: str
    code: str
    description: str
    accumulated: int
    severity: ToolSeverity
    last_failure_at: Optional[datetime]
    failed: bool

    @property
    def state(self) -> str:
        return "failed" if self.failed else "active"


def tool_health(
    tool: Tool,
    records: Sequence[ProductionRecord],
    failures: Sequence[FailureEvent],
    *,
    warning_threshold: int,
    now: Optional[datetime] = None,
) -> ToolHealth:
    now = now or utcnow()
    window = live_window(tool.id, now, failures)
    last = latest_failure_before(tool.id, now, failures)
    produced_since = [
        record
        for record in records
        if record.tool_id == tool.id and window.contains(record.reference_time)
    ]
    accumulated = sum(record.pieces for record in produced_since)
    failed = last is not None and not produced_since
    return ToolHealth(
        tool_id=tool.id,
        code=tool.code,
        description=tool.description,
        accumulated=accumulated,
        severity=classify(accumulated, warning_threshold, failed),
        last_failure_at=last.failure_datetime if last else None,
        failed=failed,
    )


__all__ = [
    "ToolSeverity",
    "AccumulationWindow",
    "ToolHealth",
    "latest_failure_before",
    "next_failure_at_or_after",
    "live_window",
    "historical_window",
    "sum_window",
    "accumulated_pieces",
    "accumulated_until_failure",
    "accumulated_for_record",
    "classify",
    "tool_health",
]
