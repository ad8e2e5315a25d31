"""Tests for the exception chips and the discrepancy ledger."""

import pytest
from sqlalchemy.exc import OperationalError

from inbound.middleware.exceptions import (
    BusinessLogicError,
    ExceptionToggleFailure,
    InvalidTransition,
    ValidationFailure,
)
from inbound.services.dock_intake import NO_EXCEPTIONS
from inbound.services.exception_ledger import (
    OPEN,
    RESOLVED,
    DiscrepancyLedger,
    ExceptionLedger,
)


@pytest.fixture
def ledger(db_session, admin) -> ExceptionLedger:
    return ExceptionLedger(db_session, admin)


@pytest.mark.integration
class TestExceptionSelection:
    @pytest.mark.asyncio
    async def test_nothing_selected_initially(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        assert await ledger.current_selection(shipment) == ([], {})

    @pytest.mark.asyncio
    async def test_select_real_codes(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "DAMAGE", "Corner crushed")
        await ledger.select(shipment, "WET")

        codes, notes = await ledger.current_selection(shipment)
        assert codes == ["DAMAGE", "WET"]
        assert notes["DAMAGE"] == "Corner crushed"

    @pytest.mark.asyncio
    async def test_reselect_updates_note_without_duplicate(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "DAMAGE", "Corner crushed")
        await ledger.select(shipment, "DAMAGE", "Two corners crushed")

        entries = await ledger.open_entries(shipment)
        assert len(entries) == 1
        assert entries[0].note == "Two corners crushed"

    @pytest.mark.asyncio
    async def test_unknown_code_rejected(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        with pytest.raises(ValidationFailure):
            await ledger.select(shipment, "ON_FIRE")

    @pytest.mark.asyncio
    async def test_sentinel_clears_open_entries(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "DAMAGE")
        await ledger.select(shipment, "WET")

        await ledger.select(shipment, NO_EXCEPTIONS)

        assert await ledger.current_selection(shipment) == ([NO_EXCEPTIONS], {})
        assert await ledger.open_entries(shipment) == []
        assert shipment.no_exceptions_confirmed is True

    @pytest.mark.asyncio
    async def test_real_code_clears_sentinel(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, NO_EXCEPTIONS)
        await ledger.select(shipment, "OPEN")

        codes, _ = await ledger.current_selection(shipment)
        assert codes == ["OPEN"]
        assert shipment.no_exceptions_confirmed is False

    @pytest.mark.asyncio
    async def test_failed_removal_rolls_back_toggle(self, db_session, ledger, shipment_factory, monkeypatch):
        shipment = await shipment_factory()
        await ledger.select(shipment, "DAMAGE")
        await ledger.select(shipment, "WET")
        await db_session.commit()

        original = ledger._remove_entry

        async def flaky_remove(entry):
            if entry.code == "WET":
                raise OperationalError("DELETE", {}, Exception("database is locked"))
            await original(entry)

        monkeypatch.setattr(ledger, "_remove_entry", flaky_remove)

        with pytest.raises(ExceptionToggleFailure) as exc:
            await ledger.select_no_exceptions(shipment)
        assert exc.value.failed_codes == ["WET"]

        # DAMAGE was removed in its own savepoint, but the whole toggle is undone
        codes, _ = await ledger.current_selection(shipment)
        assert codes == ["DAMAGE", "WET"]
        assert shipment.no_exceptions_confirmed is False

    @pytest.mark.asyncio
    async def test_deselect(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "DAMAGE")
        assert await ledger.deselect(shipment, "DAMAGE") is True
        assert await ledger.deselect(shipment, "DAMAGE") is False
        assert await ledger.current_selection(shipment) == ([], {})

    @pytest.mark.asyncio
    async def test_note_required_for_refused(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "REFUSED", "Driver refused to wait")

        with pytest.raises(ValidationFailure) as exc:
            await ledger.update_note(shipment, "REFUSED", "  ")
        assert exc.value.errors == ["Refused requires a note"]

        entry = await ledger.update_note(shipment, "REFUSED", "Refused: wrong address")
        assert entry.note == "Refused: wrong address"

    @pytest.mark.asyncio
    async def test_refused_cannot_be_selected_without_note(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        with pytest.raises(ValidationFailure) as exc:
            await ledger.select(shipment, "REFUSED")
        assert exc.value.errors == ["Refused requires a note"]
        assert await ledger.current_selection(shipment) == ([], {})

    @pytest.mark.asyncio
    async def test_reselect_with_blank_note_keeps_required_note(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        await ledger.select(shipment, "OTHER", "pallet leaking")

        with pytest.raises(ValidationFailure) as exc:
            await ledger.select(shipment, "OTHER", "   ")
        assert exc.value.errors == ["Other requires a note"]

        _, notes = await ledger.current_selection(shipment)
        assert notes == {"OTHER": "pallet leaking"}


@pytest.mark.integration
class TestEntryLifecycle:
    @pytest.mark.asyncio
    async def test_resolve_requires_note(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        entry = await ledger.select(shipment, "DAMAGE")

        with pytest.raises(ValidationFailure) as exc:
            await ledger.resolve(entry, "")
        assert exc.value.errors == ["A resolution note is required"]
        assert entry.status == OPEN

    @pytest.mark.asyncio
    async def test_resolve_then_reopen(self, ledger, admin, shipment_factory):
        shipment = await shipment_factory()
        entry = await ledger.select(shipment, "DAMAGE")

        await ledger.resolve(entry, "Vendor credited the damage")
        assert entry.status == RESOLVED
        assert entry.resolved_by == admin.user_id
        assert entry.resolution_note == "Vendor credited the damage"

        await ledger.reopen(entry)
        assert entry.status == OPEN
        assert entry.resolution_note is None
        assert entry.resolved_at is None
        assert entry.reopened_by == admin.user_id

    @pytest.mark.asyncio
    async def test_resolving_twice_is_invalid(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        entry = await ledger.select(shipment, "DAMAGE")
        await ledger.resolve(entry, "Handled")

        with pytest.raises(InvalidTransition):
            await ledger.resolve(entry, "Again")

    @pytest.mark.asyncio
    async def test_reopen_open_entry_is_invalid(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        entry = await ledger.select(shipment, "DAMAGE")
        with pytest.raises(InvalidTransition):
            await ledger.reopen(entry)

    @pytest.mark.asyncio
    async def test_reopen_blocked_by_open_duplicate(self, ledger, shipment_factory):
        shipment = await shipment_factory()
        first = await ledger.select(shipment, "DAMAGE")
        await ledger.resolve(first, "Handled")
        # A resolved entry no longer counts as selected; selecting again opens a new one
        await ledger.select(shipment, "DAMAGE")

        with pytest.raises(BusinessLogicError) as exc:
            await ledger.reopen(first)
        assert exc.value.error_code == "EXCEPTION_ALREADY_OPEN"


@pytest.mark.integration
class TestDiscrepancyLedger:
    @pytest.mark.asyncio
    async def test_create_queues_alert(self, db_session, admin, alerts, shipment_factory):
        shipment = await shipment_factory()
        discrepancies = DiscrepancyLedger(db_session, admin, alerts)

        entry, warnings = await discrepancies.create(shipment, "DAMAGE", "Forklift puncture")

        assert entry.status == OPEN
        assert warnings == []
        assert alerts.types() == ["receiving_discrepancy"]
        alert_type, tenant, payload = alerts.alerts[0]
        assert tenant == shipment.tenant_id
        assert payload["discrepancy_id"] == entry.id

    @pytest.mark.asyncio
    async def test_alert_failure_is_a_warning(self, db_session, admin, failing_alerts, shipment_factory):
        shipment = await shipment_factory()
        discrepancies = DiscrepancyLedger(db_session, admin, failing_alerts)

        entry, warnings = await discrepancies.create(shipment, "WET")

        assert entry.id is not None
        assert warnings == ["Queue receiving_discrepancy alert failed: connection refused"]

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, db_session, admin, alerts, shipment_factory):
        shipment = await shipment_factory()
        with pytest.raises(ValidationFailure):
            await DiscrepancyLedger(db_session, admin, alerts).create(shipment, "LATE")

    @pytest.mark.asyncio
    async def test_lifecycle_and_status_filter(self, db_session, admin, alerts, shipment_factory):
        shipment = await shipment_factory()
        discrepancies = DiscrepancyLedger(db_session, admin, alerts)
        first, _ = await discrepancies.create(shipment, "DAMAGE")
        await discrepancies.create(shipment, "WET")

        await discrepancies.resolve(first, "Photos sent to carrier")
        assert [e.discrepancy_type for e in await discrepancies.list_entries(shipment, OPEN)] == ["WET"]

        await discrepancies.reopen(first)
        assert len(await discrepancies.list_entries(shipment, OPEN)) == 2
