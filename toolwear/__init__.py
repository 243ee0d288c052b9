"""Tool wear tracking for a machining shop floor.

This package provides the data model, SQLite and in-memory persistence, the
wear-accumulation engine, reporting and a FastAPI web interface used to
register cutting tools, log production and report tool failures.
"""

from .domain import FailureEvent, FailureSeverity, ProductionRecord, Tool, ToolStatus, User
from .services import AlertOptions, ToolTrackingService
from .wear import ToolHealth, ToolSeverity, accumulated_pieces, accumulated_until_failure

__all__ = [
    "Tool",
    "ToolStatus",
    "ProductionRecord",
    "FailureEvent",
    "FailureSeverity",
    "User",
    "ToolTrackingService",
    "AlertOptions",
    "ToolHealth",
    "ToolSeverity",
    "accumulated_pieces",
    "accumulated_until_failure",
]
