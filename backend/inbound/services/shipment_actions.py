"""Shipment-level actions outside the stage transitions.

  create_shipment            new draft with a generated SHP- number
  ensure_unidentified_account  the tenant's UNIDENTIFIED SHIPMENT account
  flag_shipment              mark mis-ship / return-to-sender and quarantine
                             any units already received
  resolve_unknown_account    assign the real account to an unidentified
                             shipment (requires `account.resolve`)
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal
from inbound.config import settings
from inbound.middleware.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationFailure,
)
from inbound.models.account import Account
from inbound.models.inventory import InventoryUnit
from inbound.models.shipment import (
    QUARANTINE_EXCEPTION_TYPES,
    Shipment,
    ShipmentExceptionType,
    ShipmentStage,
)
from inbound.utils.activity import log_activity
from inbound.utils.numbering import generate_code

logger = logging.getLogger(__name__)


async def get_shipment(db: AsyncSession, tenant_id: str, shipment_id: str) -> Shipment:
    result = await db.execute(
        select(Shipment).where(
            Shipment.tenant_id == tenant_id,
            Shipment.id == shipment_id,
        )
    )
    shipment = result.scalar_one_or_none()
    if shipment is None:
        raise ResourceNotFoundError("Shipment", shipment_id)
    return shipment


async def create_shipment(
    db: AsyncSession,
    principal: Principal,
    warehouse_id: str,
    **fields,
) -> Shipment:
    number = await generate_code(db, principal.tenant_id, "shipment")
    shipment = Shipment(
        tenant_id=principal.tenant_id,
        shipment_number=number,
        warehouse_id=warehouse_id,
        stage=ShipmentStage.DRAFT.value,
        created_by=principal.user_id,
        **fields,
    )
    db.add(shipment)
    await db.flush()

    await log_activity(
        db, principal,
        action="created",
        entity_type="shipment",
        entity_id=shipment.id,
        entity_code=number,
        summary=f"Created shipment {number}",
    )
    return shipment


# ── Accounts ─────────────────────────────────────────────────

async def get_account(db: AsyncSession, tenant_id: str, account_id: str) -> Account | None:
    result = await db.execute(
        select(Account).where(Account.tenant_id == tenant_id, Account.id == account_id)
    )
    return result.scalar_one_or_none()


async def ensure_unidentified_account(db: AsyncSession, tenant_id: str) -> Account:
    result = await db.execute(
        select(Account).where(
            Account.tenant_id == tenant_id,
            Account.is_unidentified == True,  # noqa: E712
        )
    )
    account = result.scalars().first()
    if account is None:
        account = Account(
            tenant_id=tenant_id,
            name=settings.unidentified_account_name,
            is_unidentified=True,
        )
        db.add(account)
        await db.flush()
        logger.info("Created unidentified account for tenant %s", tenant_id)
    return account


# ── Exception flags ──────────────────────────────────────────

async def flag_shipment(
    db: AsyncSession,
    principal: Principal,
    shipment: Shipment,
    exception_type: str,
) -> int:
    """Flag the shipment; returns how many existing units were quarantined."""
    if exception_type not in QUARANTINE_EXCEPTION_TYPES:
        raise ValidationFailure([
            f"Exception type must be one of: {', '.join(sorted(QUARANTINE_EXCEPTION_TYPES))}"
        ])

    previous = shipment.exception_type
    shipment.exception_type = exception_type

    result = await db.execute(
        select(InventoryUnit).where(
            InventoryUnit.tenant_id == shipment.tenant_id,
            InventoryUnit.shipment_id == shipment.id,
            InventoryUnit.status != "quarantine",
        )
    )
    units = result.scalars().all()
    for unit in units:
        unit.status = "quarantine"
    quarantined = len(units)

    await log_activity(
        db, principal,
        action="shipment_flagged",
        entity_type="shipment",
        entity_id=shipment.id,
        entity_code=shipment.shipment_number,
        summary=f"Flagged as {exception_type}",
        details={
            "exception_type": exception_type,
            "previous_exception_type": previous,
            "units_quarantined": quarantined,
        },
    )
    await db.flush()
    logger.info("Shipment %s flagged %s, %d unit(s) quarantined",
                shipment.id, exception_type, quarantined)
    return quarantined


async def resolve_unknown_account(
    db: AsyncSession,
    principal: Principal,
    shipment: Shipment,
    account_id: str,
    note: str | None = None,
) -> Shipment:
    if not principal.can("account.resolve"):
        raise PermissionDeniedError("Resolving an unknown account requires account.resolve")

    account = await get_account(db, shipment.tenant_id, account_id)
    if account is None or not account.is_active:
        raise ResourceNotFoundError("Account", account_id)
    if account.is_unidentified:
        raise ValidationFailure(["Choose a real account to resolve an unidentified shipment"])

    previous = shipment.account_id
    shipment.account_id = account.id
    if shipment.exception_type == ShipmentExceptionType.UNKNOWN_ACCOUNT.value:
        shipment.exception_type = None

    await db.execute(
        update(InventoryUnit)
        .where(
            InventoryUnit.tenant_id == shipment.tenant_id,
            InventoryUnit.shipment_id == shipment.id,
        )
        .values(account_id=account.id)
        .execution_options(synchronize_session="fetch")
    )

    await log_activity(
        db, principal,
        action="account_resolved",
        entity_type="shipment",
        entity_id=shipment.id,
        entity_code=shipment.shipment_number,
        summary=f"Account resolved to {account.name}",
        details={"previous_account_id": previous, "account_id": account.id, "note": note},
    )
    await db.flush()
    return shipment
