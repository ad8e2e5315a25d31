"""NumberSequence: per-tenant counters behind generated codes.

One row per (tenant, entity, prefix).  The row is locked while the next
value is taken, so codes never repeat within a tenant.
"""

import uuid

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base


class NumberSequence(Base):
    __tablename__ = "number_sequences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "entity", "prefix", name="uq_number_sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # inventory_unit | container | shipment
    entity: Mapped[str] = mapped_column(String(30), nullable=False)
    prefix: Mapped[str] = mapped_column(String(50), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
