"""Inventory created when a shipment's receiving stage closes.

InventoryUnit      one physical, individually tracked item (ic_code unique per tenant)
InventoryMovement  immutable movement history; one "received" row per unit
Container          a carton grouping units from one line item

Unit identity is permanent.  Status may later change through other
inventory operations (e.g. retroactive quarantine of a mis-shipped load).
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base


class InventoryUnit(Base):
    __tablename__ = "inventory_units"
    __table_args__ = (
        UniqueConstraint("tenant_id", "ic_code", name="uq_inventory_unit_ic_code"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    ic_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # active | quarantine
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)

    # ── Placement ────────────────────────────────────────────
    location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id")
    )
    container_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("containers.id"), index=True
    )

    # ── Traceability ─────────────────────────────────────────
    account_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("accounts.id")
    )
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id"), nullable=False, index=True
    )
    shipment_line_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipment_line_items.id"), nullable=False, index=True
    )

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    unit_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("inventory_units.id"), nullable=False, index=True
    )
    # received | moved | released
    movement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_location_id: Mapped[str | None] = mapped_column(String(36))
    to_location_id: Mapped[str | None] = mapped_column(String(36))
    shipment_id: Mapped[str | None] = mapped_column(String(36), index=True)
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )


class Container(Base):
    __tablename__ = "containers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "container_code", name="uq_container_code"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    container_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    container_type: Mapped[str] = mapped_column(String(50), default="Carton")

    location_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("locations.id")
    )
    warehouse_id: Mapped[str | None] = mapped_column(String(36))
    shipment_id: Mapped[str | None] = mapped_column(String(36), index=True)

    # active | emptied
    status: Mapped[str] = mapped_column(String(20), default="active")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
