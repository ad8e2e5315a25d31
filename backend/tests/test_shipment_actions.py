"""Tests for shipment creation, exception flags and account resolution."""

import re

import pytest
from sqlalchemy import select

from inbound.middleware.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationFailure,
)
from inbound.models import Account, InventoryUnit
from inbound.services.reconciler import LineItemSet
from inbound.services.shipment_actions import (
    create_shipment,
    ensure_unidentified_account,
    flag_shipment,
    get_shipment,
    resolve_unknown_account,
)
from inbound.utils.numbering import generate_code


async def closed_shipment(workflow, shipment_factory, **fields):
    shipment = await shipment_factory(stage="receiving", signed_pieces=2, **fields)
    lines = LineItemSet().add_manual(description="Armchair", received_quantity=2, package_count=0)
    await workflow.close_receiving(shipment, lines)
    return shipment


async def unit_rows(db, shipment) -> list[InventoryUnit]:
    result = await db.execute(
        select(InventoryUnit).where(InventoryUnit.shipment_id == shipment.id)
    )
    return list(result.scalars().all())


@pytest.mark.integration
class TestCreateShipment:
    @pytest.mark.asyncio
    async def test_numbered_draft(self, db_session, admin):
        shipment = await create_shipment(db_session, admin, "wh-main", vendor_name="Hartley & Co")

        assert shipment.stage == "draft"
        assert shipment.version == 1
        assert re.fullmatch(r"SHP-\d{8}-0001", shipment.shipment_number)

        second = await create_shipment(db_session, admin, "wh-main")
        assert second.shipment_number.endswith("-0002")

    @pytest.mark.asyncio
    async def test_sequences_are_per_tenant(self, db_session):
        first = await generate_code(db_session, "tenant-a", "inventory_unit")
        other = await generate_code(db_session, "tenant-b", "inventory_unit")
        again = await generate_code(db_session, "tenant-a", "inventory_unit")
        assert (first, other, again) == ("IC-0000001", "IC-0000001", "IC-0000002")

    @pytest.mark.asyncio
    async def test_lookup_is_tenant_scoped(self, db_session, shipment_factory):
        shipment = await shipment_factory()
        assert (await get_shipment(db_session, "tenant-a", shipment.id)).id == shipment.id
        with pytest.raises(ResourceNotFoundError):
            await get_shipment(db_session, "tenant-b", shipment.id)


@pytest.mark.integration
class TestUnidentifiedAccount:
    @pytest.mark.asyncio
    async def test_created_once(self, db_session):
        first = await ensure_unidentified_account(db_session, "tenant-a")
        second = await ensure_unidentified_account(db_session, "tenant-a")

        assert first.id == second.id
        assert first.is_unidentified is True
        assert first.name == "UNIDENTIFIED SHIPMENT"


@pytest.mark.integration
class TestFlagShipment:
    @pytest.mark.asyncio
    async def test_flag_before_close(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory()
        assert await flag_shipment(db_session, admin, shipment, "return_to_sender") == 0
        assert shipment.exception_type == "return_to_sender"

    @pytest.mark.asyncio
    async def test_flag_after_close_quarantines_units(
        self, db_session, admin, workflow, shipment_factory, account, receiving_location,
    ):
        shipment = await closed_shipment(workflow, shipment_factory, account_id=account.id)
        assert {u.status for u in await unit_rows(db_session, shipment)} == {"active"}

        quarantined = await flag_shipment(db_session, admin, shipment, "mis_ship")

        assert quarantined == 2
        assert shipment.exception_type == "mis_ship"
        assert {u.status for u in await unit_rows(db_session, shipment)} == {"quarantine"}

    @pytest.mark.asyncio
    async def test_invalid_type(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory()
        with pytest.raises(ValidationFailure):
            await flag_shipment(db_session, admin, shipment, "unknown_account")


@pytest.mark.integration
class TestResolveUnknownAccount:
    @pytest.mark.asyncio
    async def test_resolve_moves_units(
        self, db_session, admin, workflow, shipment_factory, account, unidentified_account, receiving_location,
    ):
        shipment = await closed_shipment(workflow, shipment_factory, account_id=unidentified_account.id)
        assert shipment.exception_type == "unknown_account"

        await resolve_unknown_account(db_session, admin, shipment, account.id, "Label found under wrap")

        assert shipment.account_id == account.id
        assert shipment.exception_type is None
        assert {u.account_id for u in await unit_rows(db_session, shipment)} == {account.id}

    @pytest.mark.asyncio
    async def test_requires_permission(self, db_session, operator, shipment_factory, account):
        shipment = await shipment_factory()
        with pytest.raises(PermissionDeniedError):
            await resolve_unknown_account(db_session, operator, shipment, account.id)

    @pytest.mark.asyncio
    async def test_cannot_resolve_to_unidentified(self, db_session, admin, shipment_factory, unidentified_account):
        shipment = await shipment_factory()
        with pytest.raises(ValidationFailure):
            await resolve_unknown_account(db_session, admin, shipment, unidentified_account.id)

    @pytest.mark.asyncio
    async def test_inactive_account_not_found(self, db_session, admin, shipment_factory):
        dormant = Account(tenant_id="tenant-a", name="Dormant Ltd", is_active=False)
        db_session.add(dormant)
        await db_session.commit()
        shipment = await shipment_factory()

        with pytest.raises(ResourceNotFoundError):
            await resolve_unknown_account(db_session, admin, shipment, dormant.id)
