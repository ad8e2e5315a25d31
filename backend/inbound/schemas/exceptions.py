"""Pydantic schemas for shipment exceptions and receiving discrepancies."""

from datetime import datetime

from pydantic import BaseModel, Field

from inbound.schemas.common import WarningsMixin


class ExceptionSelectRequest(BaseModel):
    """Select a chip. `code` may be NO_EXCEPTIONS."""
    code: str
    note: str | None = None


class ExceptionNoteRequest(BaseModel):
    note: str | None = None


class ResolveRequest(BaseModel):
    resolution_note: str = ""


class ExceptionOut(BaseModel):
    id: str
    shipment_id: str
    code: str
    note: str | None
    status: str
    resolution_note: str | None
    resolved_at: datetime | None
    resolved_by: str | None
    reopened_at: datetime | None
    reopened_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ExceptionSelectionOut(BaseModel):
    """The shipment's current chip selection."""
    selected: list[str]
    notes: dict[str, str | None] = {}
    entries: list[ExceptionOut] = []


class DiscrepancyCreate(BaseModel):
    discrepancy_type: str = Field(..., max_length=40)
    description: str | None = None
    details: dict | None = None


class DiscrepancyOut(BaseModel):
    id: str
    shipment_id: str
    discrepancy_type: str
    description: str | None
    details: dict | None
    status: str
    resolution_note: str | None
    resolved_at: datetime | None
    resolved_by: str | None
    reopened_at: datetime | None
    reopened_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DiscrepancyCreatedOut(WarningsMixin):
    discrepancy: DiscrepancyOut
