"""Request bodies accepted by the JSON API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    name: str
    cpf: str
    password: str


class LoginRequest(BaseModel):
    cpf: str
    password: str


class ToolUpdate(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    type: Optional[str] = None
    diameter: Optional[float] = None
    length: Optional[float] = None
    material: Optional[str] = None
    coating: Optional[str] = None
    max_rpm: Optional[int] = None
    cutting_edges: Optional[int] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class ToolCreate(ToolUpdate):
    code: str
    description: str


class AlertOptionsUpdate(BaseModel):
    warning_threshold: Optional[int] = Field(default=None, ge=0)
    record_alert_threshold: Optional[int] = Field(default=None, ge=0)
    record_row_threshold: Optional[int] = Field(default=None, ge=0)


class RecordCreate(BaseModel):
    tool_id: str
    machine: str
    pieces: int
    entry_datetime: Optional[datetime] = None
    exit_datetime: Optional[datetime] = None


class FailureCreate(BaseModel):
    tool_id: str
    reason: str
    severity: str
    failure_datetime: Optional[datetime] = None
    failure_type: Optional[str] = None
    machine: Optional[str] = None
    operation_type: Optional[str] = None
    material_processed: Optional[str] = None
    cutting_parameters: Optional[str] = None
    action_taken: Optional[str] = None
    maintenance_required: bool = False


__all__ = [
    "AlertOptionsUpdate",
    "RegisterRequest",
    "LoginRequest",
    "ToolCreate",
    "ToolUpdate",
    "RecordCreate",
    "FailureCreate",
]
