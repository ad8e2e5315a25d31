"""Inventory materialization: received line items become inventory units.

For every line item at close:

  1. Count the units already created for the line (retry checkpoint) and
     create only the remainder, each with a generated IC code, the
     receiving location and one "received" movement.
  2. Units are quarantined when the shipment is flagged mis-ship or
     return-to-sender, otherwise active.
  3. Group the line's units into containers following `pack()`.

Each line runs in its own savepoint; a collaborator or database failure
raises MaterializationFailure naming the line.  The caller wraps the
whole run in an enclosing savepoint so a failed close leaves nothing
behind.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.middleware.exceptions import MaterializationFailure
from inbound.models.inventory import Container, InventoryMovement, InventoryUnit
from inbound.models.shipment import QUARANTINE_EXCEPTION_TYPES, Shipment, ShipmentLineItem
from inbound.services.collaborators import CodeGenerator, CollaboratorError, LocationResolver
from inbound.services.packing import pack, split_units

logger = logging.getLogger(__name__)

UNIT_ACTIVE = "active"
UNIT_QUARANTINE = "quarantine"


@dataclass
class MaterializationResult:
    location_id: str | None = None
    units_created: int = 0
    units_existing: int = 0
    movements_created: int = 0
    containers_created: int = 0
    unit_ids: list[str] = field(default_factory=list)
    container_ids: list[str] = field(default_factory=list)


def unit_status_for(shipment: Shipment) -> str:
    if shipment.exception_type in QUARANTINE_EXCEPTION_TYPES:
        return UNIT_QUARANTINE
    return UNIT_ACTIVE


class InventoryMaterializer:
    def __init__(
        self,
        db: AsyncSession,
        codes: CodeGenerator,
        locations: LocationResolver,
        container_type: str | None = None,
    ):
        self.db = db
        self.codes = codes
        self.locations = locations
        self.container_type = container_type or settings.default_container_type

    async def materialize(
        self,
        shipment: Shipment,
        lines: list[ShipmentLineItem],
        user_id: str,
    ) -> MaterializationResult:
        result = MaterializationResult()
        if not lines:
            return result

        try:
            result.location_id = await self.locations.resolve_receiving_location(
                shipment.tenant_id, shipment.warehouse_id, shipment.account_id,
            )
        except (CollaboratorError, SQLAlchemyError) as exc:
            logger.error("Receiving location lookup failed for shipment %s: %s", shipment.id, exc)
            raise MaterializationFailure(None, None, str(exc)) from exc

        status = unit_status_for(shipment)
        for index, line in enumerate(lines):
            description = line.description
            try:
                async with self.db.begin_nested():
                    await self._materialize_line(shipment, line, status, result, user_id)
            except (CollaboratorError, SQLAlchemyError) as exc:
                logger.error(
                    "Materialization failed on shipment %s line %d (%s): %s",
                    shipment.id, index + 1, description, exc,
                )
                raise MaterializationFailure(index, description, str(exc)) from exc

        logger.info(
            "Materialized shipment %s: %d unit(s) created, %d existing, %d container(s)",
            shipment.id, result.units_created, result.units_existing, result.containers_created,
        )
        return result

    async def _existing_units(self, line: ShipmentLineItem) -> list[InventoryUnit]:
        rows = await self.db.execute(
            select(InventoryUnit)
            .where(
                InventoryUnit.tenant_id == line.tenant_id,
                InventoryUnit.shipment_line_item_id == line.id,
            )
            .order_by(InventoryUnit.created_at, InventoryUnit.ic_code)
        )
        return list(rows.scalars().all())

    async def _materialize_line(
        self,
        shipment: Shipment,
        line: ShipmentLineItem,
        status: str,
        result: MaterializationResult,
        user_id: str,
    ) -> None:
        units = await self._existing_units(line)
        result.units_existing += len(units)
        already_packed = any(u.container_id for u in units)

        remaining = (line.received_quantity or 0) - len(units)
        if remaining < 0:
            logger.warning(
                "Line %s already has %d unit(s) for a received quantity of %d",
                line.id, len(units), line.received_quantity,
            )

        for _ in range(max(remaining, 0)):
            code = await self.codes.generate_unique_code(shipment.tenant_id, "inventory_unit")
            unit = InventoryUnit(
                tenant_id=shipment.tenant_id,
                ic_code=code,
                status=status,
                location_id=result.location_id,
                account_id=shipment.account_id,
                shipment_id=shipment.id,
                shipment_line_item_id=line.id,
                created_by=user_id,
            )
            self.db.add(unit)
            await self.db.flush()

            self.db.add(InventoryMovement(
                tenant_id=shipment.tenant_id,
                unit_id=unit.id,
                movement_type="received",
                to_location_id=result.location_id,
                shipment_id=shipment.id,
                notes=f"Received on {shipment.shipment_number}",
                created_by=user_id,
            ))
            units.append(unit)
            result.units_created += 1
            result.movements_created += 1
            result.unit_ids.append(unit.id)

        if already_packed:
            return

        plan = pack(len(units), line.package_count or 0)
        for group in split_units(units, plan):
            code = await self.codes.generate_unique_code(shipment.tenant_id, "container")
            container = Container(
                tenant_id=shipment.tenant_id,
                container_code=code,
                container_type=self.container_type,
                location_id=result.location_id,
                warehouse_id=shipment.warehouse_id,
                shipment_id=shipment.id,
                created_by=user_id,
            )
            self.db.add(container)
            await self.db.flush()
            for unit in group:
                unit.container_id = container.id
            result.containers_created += 1
            result.container_ids.append(container.id)

        await self.db.flush()
