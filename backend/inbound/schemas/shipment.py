"""Pydantic schemas for shipments and their stage transitions."""

from datetime import datetime

from pydantic import BaseModel, Field

from inbound.schemas.common import WarningsMixin


class DockIntakeBreakdown(BaseModel):
    cartons: int = Field(0, ge=0)
    pallets: int = Field(0, ge=0)
    crates: int = Field(0, ge=0)


# ── Create / autosave ─────────────────────────────────────────

class ShipmentCreate(BaseModel):
    """Payload for POST /api/shipments/."""
    warehouse_id: str
    account_id: str | None = None
    vendor_name: str | None = Field(None, max_length=255)
    signed_pieces: int | None = Field(None, ge=0)
    driver_name: str | None = Field(None, max_length=255)
    notes: str | None = None


class ShipmentFieldsUpdate(BaseModel):
    """Payload for PATCH /api/shipments/{id}/fields: only the sent fields are written."""
    account_id: str | None = None
    vendor_name: str | None = Field(None, max_length=255)
    signed_pieces: int | None = Field(None, ge=0)
    driver_name: str | None = Field(None, max_length=255)
    notes: str | None = None
    dock_intake_breakdown: DockIntakeBreakdown | None = None
    signature_data: str | None = None
    signature_name: str | None = Field(None, max_length=255)
    signature_timestamp: datetime | None = None


# ── Transitions ───────────────────────────────────────────────

class VersionedRequest(BaseModel):
    expected_version: int | None = None


class CompleteDockIntakeRequest(VersionedRequest):
    """Payload for POST /api/shipments/{id}/dock-intake/complete."""
    fields: ShipmentFieldsUpdate | None = None


class FlagShipmentRequest(BaseModel):
    exception_type: str = Field(..., pattern="^(mis_ship|return_to_sender)$")


class ResolveAccountRequest(BaseModel):
    account_id: str
    note: str | None = None


# ── Responses ─────────────────────────────────────────────────

class ShipmentSummary(BaseModel):
    id: str
    shipment_number: str
    stage: str
    account_id: str | None
    vendor_name: str | None
    signed_pieces: int | None
    received_pieces: int
    exception_type: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ShipmentOut(BaseModel):
    id: str
    tenant_id: str
    shipment_number: str
    warehouse_id: str
    stage: str
    exception_type: str | None
    account_id: str | None
    vendor_name: str | None
    signed_pieces: int | None
    driver_name: str | None
    notes: str | None
    dock_intake_breakdown: dict | None
    no_exceptions_confirmed: bool
    signature_name: str | None
    signature_timestamp: datetime | None
    received_pieces: int
    received_at: datetime | None
    version: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FieldsSavedOut(BaseModel):
    shipment: ShipmentOut
    changed: list[str]


class DockIntakeCheckOut(BaseModel):
    """Result of GET /dock-intake/validation: the full punch-list."""
    ready: bool
    errors: list[str]


class ConfirmationSummaryOut(BaseModel):
    shipment_id: str
    shipment_number: str
    account_id: str | None
    account_name: str | None
    account_unidentified: bool
    vendor_name: str | None
    signed_pieces: int | None
    driver_name: str | None
    dock_intake_breakdown: dict | None
    signature_captured: bool
    paperwork_photos: int
    condition_photos: int
    exception_codes: list[str]
    exception_type: str | None

    model_config = {"from_attributes": True}


class FlagShipmentOut(BaseModel):
    shipment: ShipmentOut
    units_quarantined: int


class CloseReceivingOut(WarningsMixin):
    shipment: ShipmentOut
    received_pieces: int
    units_created: int
    units_existing: int
    containers_created: int
    override_used: bool
    discrepancy_ids: list[str] = []
