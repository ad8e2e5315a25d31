"""Pydantic schemas for Stage 2 line items."""

from datetime import datetime

from pydantic import BaseModel, Field


class LineItemIn(BaseModel):
    """One line of the working set. Omit `id` for a new manual line."""
    id: str | None = None
    description: str = Field("", max_length=500)
    expected_quantity: int = Field(0, ge=0)
    received_quantity: int = Field(0, ge=0)
    vendor: str | None = Field(None, max_length=255)
    sidemark: str | None = Field(None, max_length=255)
    class_id: str | None = None
    package_count: int = Field(1, ge=0)


class SaveLinesRequest(BaseModel):
    """Payload for PUT /api/shipments/{id}/lines: replaces the working set."""
    lines: list[LineItemIn]


class CloseReceivingRequest(BaseModel):
    """Payload for POST /api/shipments/{id}/close.

    `lines` is optional; when omitted the persisted lines are closed.
    """
    lines: list[LineItemIn] | None = None
    override_reason: str | None = None
    expected_version: int | None = None


class AddManifestItemsRequest(BaseModel):
    manifest_item_ids: list[str] = Field(..., min_length=1)


class LineItemOut(BaseModel):
    id: str
    position: int
    description: str
    expected_quantity: int
    received_quantity: int
    vendor: str | None
    sidemark: str | None
    class_id: str | None
    source: str
    package_count: int
    manifest_item_id: str | None
    allocation_id: str | None
    flags: list[str] | None
    status: str
    received_at: datetime | None

    model_config = {"from_attributes": True}


class MatchingHintsOut(BaseModel):
    description: str | None
    vendor: str | None


class LinesOut(BaseModel):
    lines: list[LineItemOut]
    received_pieces: int
    hints: MatchingHintsOut
