"""External collaborators consumed by the receiving workflow.

The workflow engine only talks to these through the Protocols below, so
tests can swap in fakes and deployments can swap in remote services.
The default implementations work against the local database.

  CodeGenerator             unique inventory / container codes per tenant
  LocationResolver          default receiving location for warehouse + account
  PhotoCounter              photo counts by category for dock-intake validation
  ManifestAllocationService allocate manifest items, reverse allocations

Every collaborator either returns a value or raises a CollaboratorError
subclass; timeouts and cancellation are the collaborator's concern.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.models.location import Location
from inbound.models.manifest import ManifestAllocation, ManifestItem
from inbound.models.photo import ShipmentPhoto
from inbound.utils.numbering import generate_code


class CollaboratorError(Exception):
    """A collaborator could not complete its call."""


class CodeGenerationError(CollaboratorError):
    pass


class LocationResolutionError(CollaboratorError):
    pass


class AllocationError(CollaboratorError):
    pass


# ── Interfaces ───────────────────────────────────────────────

class CodeGenerator(Protocol):
    async def generate_unique_code(self, tenant_id: str, entity: str = "inventory_unit") -> str:
        ...


class LocationResolver(Protocol):
    async def resolve_receiving_location(
        self, tenant_id: str, warehouse_id: str, account_id: str | None
    ) -> str:
        ...


class PhotoCounter(Protocol):
    async def count_by_category(self, tenant_id: str, shipment_id: str) -> dict[str, int]:
        ...


@dataclass(frozen=True)
class ManifestCandidate:
    """A manifest item allocated to a shipment, ready to become a line."""
    manifest_item_id: str
    allocation_id: str
    description: str
    expected_quantity: int
    vendor: str | None
    sidemark: str | None
    class_id: str | None


class ManifestAllocationService(Protocol):
    async def allocate(
        self, tenant_id: str, shipment_id: str, manifest_item_ids: list[str], user_id: str
    ) -> list[ManifestCandidate]:
        ...

    async def deallocate(self, tenant_id: str, allocation_id: str) -> None:
        ...


# ── Database-backed implementations ──────────────────────────

class SequenceCodeGenerator:
    """Codes from per-tenant counters (see utils/numbering.py)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_unique_code(self, tenant_id: str, entity: str = "inventory_unit") -> str:
        try:
            return await generate_code(self.db, tenant_id, entity)
        except SQLAlchemyError as exc:
            raise CodeGenerationError(f"Could not generate {entity} code: {exc}") from exc


class DatabaseLocationResolver:
    """Account-specific receiving location first, then the warehouse default."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_receiving_location(
        self, tenant_id: str, warehouse_id: str, account_id: str | None
    ) -> str:
        base = select(Location.id).where(
            Location.tenant_id == tenant_id,
            Location.warehouse_id == warehouse_id,
            Location.is_receiving_default == True,  # noqa: E712
            Location.is_active == True,  # noqa: E712
        )

        if account_id:
            result = await self.db.execute(base.where(Location.account_id == account_id).limit(1))
            location_id = result.scalar_one_or_none()
            if location_id:
                return location_id

        result = await self.db.execute(base.where(Location.account_id.is_(None)).limit(1))
        location_id = result.scalar_one_or_none()
        if not location_id:
            raise LocationResolutionError(
                f"No default receiving location configured for warehouse {warehouse_id}"
            )
        return location_id


class DatabasePhotoCounter:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_by_category(self, tenant_id: str, shipment_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(ShipmentPhoto.category, func.count(ShipmentPhoto.id))
            .where(
                ShipmentPhoto.tenant_id == tenant_id,
                ShipmentPhoto.shipment_id == shipment_id,
            )
            .group_by(ShipmentPhoto.category)
        )
        return {category: count for category, count in result.all()}


class DatabaseManifestAllocationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def allocate(
        self, tenant_id: str, shipment_id: str, manifest_item_ids: list[str], user_id: str
    ) -> list[ManifestCandidate]:
        result = await self.db.execute(
            select(ManifestItem).where(
                ManifestItem.tenant_id == tenant_id,
                ManifestItem.id.in_(manifest_item_ids),
            )
        )
        items = {item.id: item for item in result.scalars().all()}

        missing = [i for i in manifest_item_ids if i not in items]
        if missing:
            raise AllocationError(f"Manifest items not found: {', '.join(missing)}")
        taken = [i for i in manifest_item_ids if items[i].status != "pending"]
        if taken:
            raise AllocationError(f"Manifest items already allocated: {', '.join(taken)}")

        candidates = []
        for item_id in manifest_item_ids:
            item = items[item_id]
            allocation = ManifestAllocation(
                tenant_id=tenant_id,
                manifest_item_id=item.id,
                shipment_id=shipment_id,
                status="active",
                allocated_by=user_id,
            )
            self.db.add(allocation)
            item.status = "allocated"
            await self.db.flush()
            candidates.append(ManifestCandidate(
                manifest_item_id=item.id,
                allocation_id=allocation.id,
                description=item.description or "",
                expected_quantity=item.expected_quantity or 0,
                vendor=item.vendor,
                sidemark=item.sidemark,
                class_id=item.class_id,
            ))
        return candidates

    async def deallocate(self, tenant_id: str, allocation_id: str) -> None:
        result = await self.db.execute(
            select(ManifestAllocation).where(
                ManifestAllocation.tenant_id == tenant_id,
                ManifestAllocation.id == allocation_id,
            )
        )
        allocation = result.scalar_one_or_none()
        if allocation is None:
            raise AllocationError(f"Allocation not found: {allocation_id}")
        if allocation.status == "reversed":
            return

        item = await self.db.get(ManifestItem, allocation.manifest_item_id)
        if item is not None:
            item.status = "pending"
        allocation.status = "reversed"
        allocation.reversed_at = datetime.utcnow()
        await self.db.flush()
