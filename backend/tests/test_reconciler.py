"""Tests for the Stage 2 working set and close gate."""

import pytest
from sqlalchemy import select

from inbound.middleware.exceptions import (
    BusinessLogicError,
    OverrideRequired,
    ResourceNotFoundError,
    ValidationFailure,
)
from inbound.models import ManifestAllocation, ManifestItem
from inbound.services.collaborators import (
    AllocationError,
    DatabaseManifestAllocationService,
    ManifestCandidate,
)
from inbound.services.reconciler import (
    LineItemSet,
    add_manifest_lines,
    load_line_items,
    merge_working_set,
    remove_line,
    save_line_items,
    validate_for_close,
)


def candidate(**overrides) -> ManifestCandidate:
    values = dict(
        manifest_item_id="mi-1",
        allocation_id="alloc-1",
        description="Walnut sideboard",
        expected_quantity=2,
        vendor="Hartley & Co",
        sidemark="SMITH",
        class_id=None,
    )
    values.update(overrides)
    return ManifestCandidate(**values)


@pytest.mark.unit
class TestLineItemSet:
    def test_edits_return_new_sets(self):
        empty = LineItemSet()
        one = empty.add_manual(description="Chair", received_quantity=2)
        assert len(empty) == 0
        assert len(one) == 1
        assert one[0].source == "manual"

    def test_received_pieces_sums_lines(self):
        lines = (
            LineItemSet()
            .add_manual(description="Chair", received_quantity=3)
            .add_manual(description="Table", received_quantity=1)
        )
        assert lines.received_pieces == 4

    def test_update_and_remove(self):
        lines = LineItemSet().add_manual(description="Chair", received_quantity=1)
        line_id = lines[0].id
        updated = lines.update(line_id, received_quantity=5)
        assert updated.get(line_id).received_quantity == 5
        assert lines.get(line_id).received_quantity == 1
        assert len(updated.remove(line_id)) == 0

    def test_unknown_line_raises(self):
        with pytest.raises(ResourceNotFoundError):
            LineItemSet().update("missing", received_quantity=1)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            LineItemSet().add_manual(description="Chair", colour="red")

    def test_manifest_line_keeps_link(self):
        lines = LineItemSet().add_from_manifest(candidate())
        line = lines[0]
        assert line.source == "manifest"
        assert line.allocation_id == "alloc-1"
        assert line.expected_quantity == 2
        assert line.received_quantity == 0

    def test_matching_hints_follow_last_edit(self):
        lines = (
            LineItemSet()
            .add_manual(description="Oak table", vendor="Nordic")
            .add_manual(description="Lamp", vendor="X")
        )
        hints = lines.matching_hints()
        # "X" is below the minimum hint length
        assert hints.description == "Lamp"
        assert hints.vendor == "Nordic"

        first_id = lines[0].id
        hints = lines.update(first_id, description="Oak dining table").matching_hints()
        assert hints.description == "Oak dining table"

    def test_matching_hints_empty(self):
        hints = LineItemSet().matching_hints()
        assert hints.description is None
        assert hints.vendor is None


@pytest.mark.unit
class TestValidateForClose:
    def test_valid_lines_pass_without_override(self):
        lines = LineItemSet().add_manual(description="Chair", received_quantity=2)
        assert validate_for_close(lines) is False

    def test_empty_set_refused(self):
        with pytest.raises(ValidationFailure) as exc:
            validate_for_close(LineItemSet())
        assert exc.value.errors == ["At least one line item is required to close receiving"]

    def test_empty_set_override_needs_privilege(self):
        with pytest.raises(OverrideRequired):
            validate_for_close(LineItemSet(), "Paperwork only delivery", can_override=False)

    def test_empty_set_override_needs_reason(self):
        with pytest.raises(ValidationFailure) as exc:
            validate_for_close(LineItemSet(), "   ", can_override=True)
        assert exc.value.errors == ["An override reason is required"]

    def test_empty_set_with_override(self):
        assert validate_for_close(LineItemSet(), "Paperwork only delivery", can_override=True) is True

    def test_every_line_problem_reported(self):
        lines = (
            LineItemSet()
            .add_manual(description="", received_quantity=1)
            .add_manual(description="Lamp", received_quantity=0)
        )
        with pytest.raises(ValidationFailure) as exc:
            validate_for_close(lines)
        assert exc.value.errors == [
            "Line 1: description is required",
            "Line 2: received quantity must be greater than 0",
        ]


@pytest.mark.unit
class TestMergeWorkingSet:
    def test_rows_edit_persisted_and_add_manual(self):
        persisted = LineItemSet().add_from_manifest(candidate())
        line_id = persisted[0].id
        working = merge_working_set(persisted, [
            {"id": line_id, "received_quantity": 2, "description": "Walnut sideboard"},
            {"description": "Loose hardware bag", "received_quantity": 1},
        ])
        assert len(working) == 2
        assert working[0].source == "manifest"
        assert working[0].allocation_id == "alloc-1"
        assert working[0].received_quantity == 2
        assert working[1].source == "manual"

    def test_missing_rows_are_dropped(self):
        persisted = LineItemSet().add_manual(description="Chair", received_quantity=1)
        assert len(merge_working_set(persisted, [])) == 0


# ── Persistence ──────────────────────────────────────────────

async def seed_manifest(db, *descriptions) -> list[ManifestItem]:
    items = [
        ManifestItem(
            tenant_id="tenant-a", manifest_ref="MAN-1",
            description=d, expected_quantity=2, vendor="Hartley & Co",
        )
        for d in descriptions
    ]
    db.add_all(items)
    await db.commit()
    return items


class FailingDeallocation(DatabaseManifestAllocationService):
    async def deallocate(self, tenant_id: str, allocation_id: str) -> None:
        raise AllocationError("manifest service unavailable")


@pytest.mark.integration
class TestLinePersistence:
    @pytest.mark.asyncio
    async def test_save_and_reload(self, db_session, shipment_factory):
        shipment = await shipment_factory(stage="receiving")
        lines = (
            LineItemSet()
            .add_manual(description="Chair", received_quantity=3, package_count=1)
            .add_manual(description="Table", received_quantity=1)
        )
        await save_line_items(db_session, shipment, lines, DatabaseManifestAllocationService(db_session))
        await db_session.commit()

        reloaded = await load_line_items(db_session, shipment)
        assert [l.description for l in reloaded] == ["Chair", "Table"]
        assert [l.id for l in reloaded] == [l.id for l in lines]
        assert reloaded.received_pieces == 4

    @pytest.mark.asyncio
    async def test_manifest_lines_allocate(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory(stage="receiving")
        items = await seed_manifest(db_session, "Sideboard", "Bench")
        service = DatabaseManifestAllocationService(db_session)

        records = await add_manifest_lines(db_session, admin, shipment, [i.id for i in items], service)
        assert [r.source for r in records] == ["manifest", "manifest"]
        assert all(r.allocation_id for r in records)
        assert {i.status for i in items} == {"allocated"}

    @pytest.mark.asyncio
    async def test_allocating_twice_fails(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory(stage="receiving")
        items = await seed_manifest(db_session, "Sideboard")
        service = DatabaseManifestAllocationService(db_session)
        await add_manifest_lines(db_session, admin, shipment, [items[0].id], service)

        with pytest.raises(BusinessLogicError) as exc:
            await add_manifest_lines(db_session, admin, shipment, [items[0].id], service)
        assert exc.value.error_code == "ALLOCATION_FAILED"

    @pytest.mark.asyncio
    async def test_remove_reverses_allocation(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory(stage="receiving")
        items = await seed_manifest(db_session, "Sideboard")
        service = DatabaseManifestAllocationService(db_session)
        records = await add_manifest_lines(db_session, admin, shipment, [items[0].id], service)

        await remove_line(db_session, admin, shipment, records[0].id, service)

        assert len(await load_line_items(db_session, shipment)) == 0
        allocation = (await db_session.execute(select(ManifestAllocation))).scalar_one()
        assert allocation.status == "reversed"
        assert items[0].status == "pending"

    @pytest.mark.asyncio
    async def test_failed_reversal_keeps_line(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory(stage="receiving")
        items = await seed_manifest(db_session, "Sideboard")
        records = await add_manifest_lines(
            db_session, admin, shipment, [items[0].id], DatabaseManifestAllocationService(db_session),
        )

        with pytest.raises(BusinessLogicError) as exc:
            await remove_line(db_session, admin, shipment, records[0].id, FailingDeallocation(db_session))
        assert exc.value.error_code == "ALLOCATION_REVERSAL_FAILED"
        assert len(await load_line_items(db_session, shipment)) == 1

    @pytest.mark.asyncio
    async def test_lines_locked_outside_receiving(self, db_session, admin, shipment_factory):
        shipment = await shipment_factory()
        with pytest.raises(BusinessLogicError) as exc:
            await add_manifest_lines(
                db_session, admin, shipment, ["mi-1"], DatabaseManifestAllocationService(db_session),
            )
        assert exc.value.error_code == "LINES_LOCKED"
