"""Manifest items and their allocation to shipments.

ManifestItem        an expected item from an externally supplied manifest
ManifestAllocation  links a manifest item to the shipment consuming it

An allocation is reversed (status "reversed", item back to "pending") when
the manifest-sourced line is removed before the shipment closes.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base


class ManifestItem(Base):
    __tablename__ = "manifest_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    manifest_ref: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    description: Mapped[str] = mapped_column(String(500), default="")
    expected_quantity: Mapped[int] = mapped_column(Integer, default=0)
    vendor: Mapped[str | None] = mapped_column(String(255))
    sidemark: Mapped[str | None] = mapped_column(String(255))
    class_id: Mapped[str | None] = mapped_column(String(36))

    # pending | allocated
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ManifestAllocation(Base):
    __tablename__ = "manifest_allocations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    manifest_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("manifest_items.id"), nullable=False, index=True
    )
    shipment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("shipments.id"), nullable=False, index=True
    )
    # active | reversed
    status: Mapped[str] = mapped_column(String(20), default="active")
    allocated_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime)
