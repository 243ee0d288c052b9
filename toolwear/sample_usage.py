"""Demonstration script for the tool wear tracker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pprint import pprint

from .domain import FailureSeverity
from .reports import ExportKind, ReportPeriod
from .repository import InMemoryStore
from .security import TokenIssuer
from .services import ToolTrackingService
from .wear import accumulated_pieces

START = datetime(2024, 3, 4, 6, 0, tzinfo=timezone.utc)


def at_hour(hour: int) -> datetime:
    return START + timedelta(hours=hour)


def build_service() -> ToolTrackingService:
    return ToolTrackingService(
        InMemoryStore(),
        tokens=TokenIssuer("sample-secret"),
        clock=lambda: at_hour(20),
    )


def main() -> None:
    service = build_service()

    tool = service.create_tool("T-100", "Fresa 10mm", brand="Korloy", cutting_edges=4)

    # Production before and after the edge broke at hour 10
    service.record_production(tool.id, "Centro de Usinagem 01", 100, entry_datetime=at_hour(5))
    service.record_production(tool.id, "Centro de Usinagem 01", 50, entry_datetime=at_hour(10))
    service.report_failure(
        tool.id,
        operator_id=None,
        reason="Quebra de aresta",
        severity=FailureSeverity.HIGH,
        failure_datetime=at_hour(10),
    )
    service.record_production(tool.id, "Centro de Usinagem 01", 30, entry_datetime=at_hour(15))

    records = service.records.list()
    failures = service.failures.list()
    print("Accumulated pieces")
    print(f"  hour 10: {accumulated_pieces(tool.id, at_hour(10), records, failures)}")
    print(f"  hour 20: {accumulated_pieces(tool.id, at_hour(20), records, failures)}")

    print("\nRecord rows")
    for row in service.record_rows():
        print(f"  {row.record.pieces:>5} pieces  accumulated={row.accumulated:<5} {row.row_status}")

    print("\nTool health")
    for health in service.tools_health():
        print(f"  {health.code}: {health.accumulated} pieces, {health.severity.value}")

    print("\nSummary (all time)")
    pprint(service.summary(ReportPeriod.ALL).to_dict())

    print("\nCSV export (records, semicolon separated)")
    print(service.export_csv(ExportKind.RECORDS, ReportPeriod.ALL, delimiter=";"))


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
