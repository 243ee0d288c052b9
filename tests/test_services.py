from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, OTHER_CPF, STRONG_PASSWORD, VALID_CPF

from toolwear.domain import RECORD_FAILED, ToolStatus
from toolwear.reports import ExportKind, ReportPeriod
from toolwear.repository import (
    DuplicateRecordError,
    InMemoryStore,
    RecordNotFoundError,
    ReferentialIntegrityError,
)
from toolwear.security import AuthenticationError, TokenIssuer
from toolwear.services import ToolTrackingService
from toolwear.validation import ValidationError
from toolwear.wear import ToolSeverity


def test_register_and_authenticate(service):
    user = service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)

    assert user.cpf == "52998224725"
    assert user.password_hash != STRONG_PASSWORD
    assert service.authenticate("52998224725", STRONG_PASSWORD).id == user.id

    token = service.issue_token(user)
    assert service.user_from_token(token).id == user.id


def test_registration_rules(service):
    service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)

    with pytest.raises(DuplicateRecordError):
        service.register_user("Maria Souza", "529.982.247-25", STRONG_PASSWORD)
    with pytest.raises(ValidationError):
        service.register_user("Jo", OTHER_CPF, STRONG_PASSWORD)
    with pytest.raises(ValidationError):
        service.register_user("João Lima", "12345678900", STRONG_PASSWORD)
    with pytest.raises(ValidationError):
        service.register_user("João Lima", OTHER_CPF, "abc12345")


def test_login_failures(service):
    service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)

    with pytest.raises(AuthenticationError):
        service.authenticate(VALID_CPF, "wrong123!")
    with pytest.raises(AuthenticationError):
        service.authenticate(OTHER_CPF, STRONG_PASSWORD)
    with pytest.raises(ValidationError):
        service.authenticate(VALID_CPF, "   ")
    with pytest.raises(ValidationError):
        service.authenticate("", STRONG_PASSWORD)


def test_tool_lifecycle_publishes_events(service, broadcaster):
    tool = service.create_tool("T-100", "Fresa 10mm", brand="Korloy", diameter=10.0)

    assert service.get_tool(tool.id).brand == "Korloy"
    with pytest.raises(DuplicateRecordError):
        service.create_tool("T-100", "Another")
    with pytest.raises(ValidationError):
        service.create_tool("", "No code")
    with pytest.raises(ValidationError):
        service.create_tool("T-900", "Odd", colour="red")

    updated = service.update_tool(tool.id, description="Fresa 10mm 4 cortes", status="maintenance")
    assert updated.status is ToolStatus.MAINTENANCE
    with pytest.raises(ValidationError):
        service.update_tool(tool.id, status="lost")

    service.delete_tool(tool.id)
    with pytest.raises(RecordNotFoundError):
        service.get_tool(tool.id)

    assert [event.name for event in broadcaster.published] == [
        "tool_created",
        "tool_updated",
        "tool_deleted",
    ]
    assert broadcaster.published[0].data["code"] == "T-100"


def test_update_keeps_codes_unique(service):
    first = service.create_tool("T-100", "Fresa")
    service.create_tool("T-200", "Broca")

    with pytest.raises(DuplicateRecordError):
        service.update_tool(first.id, code="T-200")
    assert service.update_tool(first.id, code="T-100").code == "T-100"


def test_referenced_tool_cannot_be_deleted(service):
    tool = service.create_tool("T-100", "Fresa")
    service.record_production(tool.id, "CNC-01", 10)

    with pytest.raises(ReferentialIntegrityError):
        service.delete_tool(tool.id)


def test_production_validation(service):
    tool = service.create_tool("T-100", "Fresa")

    with pytest.raises(ValidationError):
        service.record_production(tool.id, "CNC-01", 0)
    with pytest.raises(ValidationError):
        service.record_production("missing", "CNC-01", 5)
    with pytest.raises(ValidationError):
        service.record_production(tool.id, "", 5)
    with pytest.raises(ValidationError):
        service.record_production(
            tool.id,
            "CNC-01",
            5,
            entry_datetime=NOW,
            exit_datetime=NOW - timedelta(hours=1),
        )


def test_failure_annotates_earlier_records_and_sets_row_status(service, broadcaster):
    user = service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)
    tool = service.create_tool("T-100", "Fresa")
    before = service.record_production(tool.id, "CNC-01", 300, entry_datetime=NOW - timedelta(hours=5))
    service.report_failure(
        tool.id,
        operator_id=user.id,
        reason="Quebra de aresta",
        severity="high",
        failure_datetime=NOW - timedelta(hours=4),
    )
    after = service.record_production(tool.id, "CNC-01", 600, entry_datetime=NOW - timedelta(hours=3))

    assert service.records.get(before.id).status == RECORD_FAILED
    assert service.records.get(after.id).status is None

    rows = {row.record.id: row for row in service.record_rows()}
    assert rows[before.id].row_status == RECORD_FAILED
    assert rows[before.id].accumulated == 300
    assert rows[after.id].row_status == "warning"
    assert rows[after.id].accumulated == 600

    failure_row = service.failure_rows()[0]
    assert failure_row.operator_name == "Maria Souza"
    assert failure_row.tool_code == "T-100"
    assert "failure_created" in [event.name for event in broadcaster.published]


def test_failure_validation(service):
    tool = service.create_tool("T-100", "Fresa")

    with pytest.raises(ValidationError):
        service.report_failure(tool.id, operator_id=None, reason="", severity="low")
    with pytest.raises(ValidationError):
        service.report_failure(tool.id, operator_id=None, reason="Worn", severity="extreme")
    with pytest.raises(ValidationError):
        service.report_failure("missing", operator_id=None, reason="Worn", severity="low")


def test_record_filters(service):
    first = service.create_tool("T-100", "Fresa")
    second = service.create_tool("T-200", "Broca")
    service.record_production(first.id, "Torno 01", 10)
    wanted = service.record_production(second.id, "Centro 02", 20)

    assert [r.id for r in service.list_records(tool_id=second.id)] == [wanted.id]
    assert [r.id for r in service.list_records(machine="Centro")] == [wanted.id]
    assert [r.id for r in service.list_records(record_id=wanted.id)] == [wanted.id]
    assert len(service.list_records()) == 2


def test_dashboard_alerts_and_stats(service):
    worn = service.create_tool("T-100", "Fresa")
    broken = service.create_tool("T-200", "Broca")
    idle = service.create_tool("T-300", "Pastilha")
    service.record_production(worn.id, "CNC-01", 600, entry_datetime=NOW - timedelta(hours=2))
    service.record_production(broken.id, "CNC-02", 100, entry_datetime=NOW - timedelta(hours=3))
    service.report_failure(
        broken.id,
        operator_id=None,
        reason="Quebra",
        severity="critical",
        failure_datetime=NOW - timedelta(hours=1),
    )

    snapshot = service.dashboard()
    severities = {entry.code: entry.severity for entry in snapshot.tools}

    assert severities == {
        "T-100": ToolSeverity.WARNING,
        "T-200": ToolSeverity.CRITICAL,
        "T-300": ToolSeverity.OK,
    }
    assert snapshot.total_records == 2
    assert snapshot.total_pieces == 700
    assert snapshot.today_records == 2
    assert snapshot.pieces_by_tool[0] == {"tool_id": worn.id, "code": "T-100", "pieces": 600}
    assert snapshot.pieces_by_tool[-1]["tool_id"] == idle.id
    assert snapshot.alerts[0].severity is ToolSeverity.CRITICAL
    assert snapshot.alerts[0].tool_id == broken.id
    record_alerts = [alert for alert in snapshot.alerts if alert.record_id]
    assert len(record_alerts) == 1
    assert record_alerts[0].tool_id == worn.id


def test_summary_and_export_through_service(service):
    tool = service.create_tool("T-100", "Fresa")
    service.record_production(tool.id, "CNC-01", 120)

    summary = service.summary(ReportPeriod.DAY)
    assert summary.total_pieces == 120

    text = service.export_csv(ExportKind.RECORDS, ReportPeriod.ALL, delimiter=";")
    header, row = text.strip().split("\r\n")
    assert header.startswith("id;tool_id;tool_code")
    assert ";T-100;Fresa;CNC-01;120;" in row


def test_initialize_store_drops_data(service):
    service.create_tool("T-100", "Fresa")

    service.initialize_store(drop_existing=True)

    assert service.list_tools() == []


def test_token_expiry_follows_the_service_clock(broadcaster):
    moments = [NOW]
    service = ToolTrackingService(
        InMemoryStore(),
        tokens=TokenIssuer("test-secret", ttl_hours=8),
        broadcaster=broadcaster,
        clock=lambda: moments[-1],
    )
    user = service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)
    token = service.issue_token(user)

    moments.append(NOW + timedelta(hours=7, minutes=59))
    assert service.user_from_token(token).id == user.id

    moments.append(NOW + timedelta(hours=8))
    with pytest.raises(AuthenticationError):
        service.user_from_token(token)


def test_injected_collaborators_are_kept_even_when_empty(service, broadcaster):
    assert len(broadcaster) == 0
    assert service.broadcaster is broadcaster
    assert service.alert_options.warning_threshold == 500


def test_same_cpf_in_other_digit_scripts_cannot_register_twice(service):
    service.register_user("Maria Souza", VALID_CPF, STRONG_PASSWORD)

    with pytest.raises(ValidationError):
        service.register_user("Maria Souza", "５２９９８２２４７２５", STRONG_PASSWORD)
    assert len(service.users) == 1


def test_alert_options_update_and_record_row_threshold(service):
    tool = service.create_tool("T-100", "Fresa")
    service.record_production(tool.id, "CNC-01", 400, entry_datetime=NOW - timedelta(hours=1))

    assert service.record_rows()[0].row_status == "ok"
    assert service.record_rows(threshold=400)[0].row_status == "warning"

    options = service.update_alert_options(record_row_threshold=300)

    assert options.record_row_threshold == 300
    assert options.warning_threshold == 500
    assert options.record_alert_threshold == 550
    assert service.record_rows()[0].row_status == "warning"
    with pytest.raises(ValidationError):
        service.update_alert_options(warning_threshold=-5)
