from __future__ import annotations

from conftest import at, make_failure, make_record, make_tool

from toolwear.domain import ProductionRecord
from toolwear.wear import (
    AccumulationWindow,
    ToolSeverity,
    accumulated_for_record,
    accumulated_pieces,
    accumulated_until_failure,
    classify,
    latest_failure_before,
    next_failure_at_or_after,
    tool_health,
)


def example_timeline():
    records = [make_record(100, 5), make_record(50, 10), make_record(30, 15)]
    failures = [make_failure(10)]
    return records, failures


def test_accumulation_resets_after_failure():
    records, failures = example_timeline()

    assert accumulated_pieces("T", at(20), records, failures) == 30
    assert accumulated_pieces("T", at(10), records, failures) == 150


def test_record_at_failure_instant_counts_before_the_reset():
    records, failures = example_timeline()

    assert accumulated_pieces("T", at(10), records, failures) == 150
    assert accumulated_pieces("T", at(10.5), records, failures) == 0


def test_accumulation_without_failures_sums_everything_up_to_as_of():
    records = [make_record(100, 5), make_record(50, 10), make_record(30, 15)]

    assert accumulated_pieces("T", at(12), records, []) == 150
    assert accumulated_pieces("T", at(4), records, []) == 0
    assert accumulated_pieces("T", at(99), records, []) == 180


def test_accumulation_is_monotonic_between_failures():
    records, failures = example_timeline()
    values = [accumulated_pieces("T", at(hour), records, failures) for hour in range(11, 21)]

    assert all(value >= 0 for value in values)
    assert values == sorted(values)


def test_other_tools_do_not_contribute():
    records, failures = example_timeline()
    records.append(make_record(999, 16, tool_id="OTHER"))

    assert accumulated_pieces("T", at(20), records, failures) == 30
    assert accumulated_pieces("OTHER", at(20), records, failures) == 999


def test_historical_mode_closes_window_at_next_failure():
    records, failures = example_timeline()

    assert accumulated_until_failure("T", at(5), records, failures) == 150
    assert accumulated_until_failure("T", at(10), records, failures) == 150
    assert accumulated_until_failure("T", at(15), records, failures) == 30


def test_accumulated_for_record_uses_entry_time_then_created_at():
    records, failures = example_timeline()
    undated = ProductionRecord(
        id="late", tool_id="T", machine="CNC-01", pieces=20, created_at=at(18)
    )
    records.append(undated)

    assert accumulated_for_record(records[0], records, failures) == 150
    assert accumulated_for_record(undated, records, failures) == 50


def test_ties_on_failure_time_break_by_id():
    failures = [make_failure(10, failure_id="b"), make_failure(10, failure_id="a")]

    assert latest_failure_before("T", at(11), failures).id == "b"
    assert next_failure_at_or_after("T", at(9), failures).id == "a"
    assert latest_failure_before("T", at(10), failures) is None


def test_window_is_half_open():
    window = AccumulationWindow(start=at(10), end=at(20))

    assert not window.contains(at(10))
    assert window.contains(at(10.1))
    assert window.contains(at(20))
    assert not window.contains(at(20.1))
    assert not window.contains(None)


def test_classify_gives_failed_state_precedence():
    assert classify(10_000, 5000, True) is ToolSeverity.CRITICAL
    assert classify(5000, 5000, False) is ToolSeverity.WARNING
    assert classify(4999, 5000, False) is ToolSeverity.OK


def test_tool_health_is_critical_until_production_resumes():
    tool = make_tool()
    records = [make_record(100, 5), make_record(50, 10)]
    failures = [make_failure(10)]

    health = tool_health(tool, records, failures, warning_threshold=5000, now=at(12))

    assert health.severity is ToolSeverity.CRITICAL
    assert health.failed
    assert health.state == "failed"
    assert health.accumulated == 0
    assert health.last_failure_at == at(10)

    records.append(make_record(30, 15))
    health = tool_health(tool, records, failures, warning_threshold=5000, now=at(20))

    assert health.severity is ToolSeverity.OK
    assert health.state == "active"
    assert health.accumulated == 30


def test_tool_health_warns_at_threshold():
    tool = make_tool()
    records = [make_record(300, 1), make_record(200, 2)]

    health = tool_health(tool, records, [], warning_threshold=500, now=at(3))

    assert health.severity is ToolSeverity.WARNING
    assert health.last_failure_at is None
