"""Shipment: one inbound delivery moving through the receiving stages.

The stage column is owned by the workflow engine; no other code writes it.
Stage 1 fields are written by field autosave while the shipment is a draft.

Lifecycle:  draft → stage1_complete → receiving → closed
            (stage1_complete → draft is the only reverse edge)
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base


class ShipmentStage(str, enum.Enum):
    DRAFT = "draft"
    STAGE1_COMPLETE = "stage1_complete"
    RECEIVING = "receiving"
    CLOSED = "closed"


class ShipmentExceptionType(str, enum.Enum):
    UNKNOWN_ACCOUNT = "unknown_account"
    MIS_SHIP = "mis_ship"
    RETURN_TO_SENDER = "return_to_sender"


# Units received on these shipments go straight into quarantine
QUARANTINE_EXCEPTION_TYPES = {
    ShipmentExceptionType.MIS_SHIP.value,
    ShipmentExceptionType.RETURN_TO_SENDER.value,
}


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shipment_number", name="uq_shipment_number"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    shipment_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # ── Workflow ─────────────────────────────────────────────
    # draft | stage1_complete | receiving | closed
    stage: Mapped[str] = mapped_column(
        String(30), default=ShipmentStage.DRAFT.value, nullable=False, index=True
    )
    # unknown_account | mis_ship | return_to_sender
    exception_type: Mapped[str | None] = mapped_column(String(30))

    # ── Stage 1: dock intake ─────────────────────────────────
    account_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id")
    )
    vendor_name: Mapped[str | None] = mapped_column(String(255))
    signed_pieces: Mapped[int | None] = mapped_column(Integer)
    driver_name: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    # {"cartons": 4, "pallets": 1, "crates": 0}
    dock_intake_breakdown: Mapped[dict | None] = mapped_column(JSON)
    # Explicit "no exceptions" selection; cleared when a real code is picked
    no_exceptions_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)

    # ── Proof of delivery ────────────────────────────────────
    signature_data: Mapped[str | None] = mapped_column(Text)
    signature_name: Mapped[str | None] = mapped_column(String(255))
    signature_timestamp: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Stage 2: receiving ───────────────────────────────────
    received_pieces: Mapped[int] = mapped_column(Integer, default=0)
    received_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Metadata ─────────────────────────────────────────────
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}


class ShipmentLineItem(Base):
    """One expected/received line, entered by hand or allocated from a manifest."""

    __tablename__ = "shipment_line_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    description: Mapped[str] = mapped_column(String(500), default="")
    expected_quantity: Mapped[int] = mapped_column(Integer, default=0)
    received_quantity: Mapped[int] = mapped_column(Integer, default=0)
    vendor: Mapped[str | None] = mapped_column(String(255))
    sidemark: Mapped[str | None] = mapped_column(String(255))
    class_id: Mapped[str | None] = mapped_column(String(36))

    # manual | manifest
    source: Mapped[str] = mapped_column(String(20), default="manual")
    # 0 = no container, 1 = one shared container, N = split across N
    package_count: Mapped[int] = mapped_column(Integer, default=1)

    # ── Manifest link ────────────────────────────────────────
    manifest_item_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("manifest_items.id")
    )
    allocation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("manifest_allocations.id")
    )

    # ["ARRIVAL_NO_ID", ...]
    flags: Mapped[list | None] = mapped_column(JSON)
    # pending | received
    status: Mapped[str] = mapped_column(String(20), default="pending")
    received_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
