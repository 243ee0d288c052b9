from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from toolwear.domain import FailureEvent, FailureSeverity, ProductionRecord, Tool
from toolwear.events import EventBroadcaster, LiveEvent
from toolwear.repository import InMemoryStore
from toolwear.security import TokenIssuer
from toolwear.services import AlertOptions, ToolTrackingService

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

VALID_CPF = "529.982.247-25"
OTHER_CPF = "11144477735"
STRONG_PASSWORD = "abc123!@"


def at(hour: float) -> datetime:
    return T0 + timedelta(hours=hour)


def make_tool(tool_id: str = "T", code: str = "T-1") -> Tool:
    return Tool(id=tool_id, code=code, description=f"Tool {code}", created_at=T0)


def make_record(
    pieces: int, hour: float, tool_id: str = "T", record_id: str | None = None
) -> ProductionRecord:
    return ProductionRecord(
        id=record_id or f"r-{tool_id}-{hour}-{pieces}",
        tool_id=tool_id,
        machine="CNC-01",
        pieces=pieces,
        entry_datetime=at(hour),
        created_at=at(hour),
    )


def make_failure(hour: float, tool_id: str = "T", failure_id: str = "f1") -> FailureEvent:
    return FailureEvent(
        id=failure_id,
        tool_id=tool_id,
        operator_id=None,
        failure_datetime=at(hour),
        severity=FailureSeverity.HIGH,
        reason="Worn edge",
        created_at=at(hour),
    )


class RecordingBroadcaster(EventBroadcaster):
    def __init__(self) -> None:
        super().__init__()
        self.published: List[LiveEvent] = []

    def publish(self, name, data):
        self.published.append(LiveEvent(name=name, data=data))
        return super().publish(name, data)


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def service(broadcaster) -> ToolTrackingService:
    return ToolTrackingService(
        InMemoryStore(),
        tokens=TokenIssuer("test-secret"),
        broadcaster=broadcaster,
        alert_options=AlertOptions(warning_threshold=500, record_alert_threshold=550),
        clock=lambda: NOW,
    )
