"""Aggregate model imports for Alembic auto-detection."""

# ── Reference data ───────────────────────────────────────────
from inbound.models.account import Account  # noqa: F401
from inbound.models.location import Location  # noqa: F401
from inbound.models.manifest import ManifestAllocation, ManifestItem  # noqa: F401
from inbound.models.number_sequence import NumberSequence  # noqa: F401

# ── Receiving workflow ───────────────────────────────────────
from inbound.models.shipment import Shipment, ShipmentLineItem  # noqa: F401
from inbound.models.photo import ShipmentPhoto  # noqa: F401
from inbound.models.exception_entry import ReceivingDiscrepancy, ShipmentException  # noqa: F401

# ── Inventory ────────────────────────────────────────────────
from inbound.models.inventory import Container, InventoryMovement, InventoryUnit  # noqa: F401

# ── Audit ────────────────────────────────────────────────────
from inbound.models.activity_log import ActivityLog  # noqa: F401

__all__ = [
    "Account", "Location", "ManifestItem", "ManifestAllocation", "NumberSequence",
    "Shipment", "ShipmentLineItem", "ShipmentPhoto",
    "ShipmentException", "ReceivingDiscrepancy",
    "InventoryUnit", "InventoryMovement", "Container",
    "ActivityLog",
]
