"""Exception and discrepancy ledgers for a shipment.

ExceptionLedger keeps the dock-intake exception chips: any number of
real codes may be open at once, or the "no exceptions" sentinel, never
both.  Selecting a real code clears the sentinel.  Selecting the
sentinel removes every open entry, each in its own savepoint; if any
removal fails the whole toggle is rolled back and reported.

DiscrepancyLedger records post-hoc issues raised at any stage.  Both
ledgers share the entry state machine:

    open ──resolve(note)──> resolved ──reopen()──> open

Resolution needs a non-empty note, reopening does not, nothing closes
automatically.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal
from inbound.middleware.exceptions import (
    BusinessLogicError,
    ExceptionToggleFailure,
    InvalidTransition,
    ResourceNotFoundError,
    ValidationFailure,
)
from inbound.models.exception_entry import ReceivingDiscrepancy, ShipmentException
from inbound.models.shipment import Shipment
from inbound.services.alerts import AlertQueue, notify
from inbound.services.dock_intake import (
    EXCEPTION_LABELS,
    NO_EXCEPTIONS,
    ShipmentExceptionCode,
    requires_note,
)
from inbound.utils.activity import log_activity

logger = logging.getLogger(__name__)

OPEN = "open"
RESOLVED = "resolved"

ENTRY_TRANSITIONS = {(OPEN, RESOLVED), (RESOLVED, OPEN)}

DISCREPANCY_TYPES = {
    "PIECES_MISMATCH", "DAMAGE", "WET", "OPEN", "MISSING_DOCS", "REFUSED", "OTHER",
}


def _check_entry_transition(kind: str, entry, target: str) -> None:
    if (entry.status, target) not in ENTRY_TRANSITIONS:
        raise InvalidTransition(kind, entry.status, target)


def resolve_entry(kind: str, entry, resolution_note: str | None, user_id: str) -> None:
    _check_entry_transition(kind, entry, RESOLVED)
    note = (resolution_note or "").strip()
    if not note:
        raise ValidationFailure(["A resolution note is required"])
    entry.status = RESOLVED
    entry.resolution_note = note
    entry.resolved_at = datetime.utcnow()
    entry.resolved_by = user_id


def reopen_entry(kind: str, entry, user_id: str) -> None:
    _check_entry_transition(kind, entry, OPEN)
    entry.status = OPEN
    entry.resolution_note = None
    entry.resolved_at = None
    entry.resolved_by = None
    entry.reopened_at = datetime.utcnow()
    entry.reopened_by = user_id


# ── Shipment exceptions ──────────────────────────────────────

class ExceptionLedger:
    def __init__(self, db: AsyncSession, principal: Principal):
        self.db = db
        self.principal = principal

    async def list_entries(self, shipment: Shipment, status: str | None = None) -> list[ShipmentException]:
        query = select(ShipmentException).where(
            ShipmentException.tenant_id == shipment.tenant_id,
            ShipmentException.shipment_id == shipment.id,
        )
        if status:
            query = query.where(ShipmentException.status == status)
        result = await self.db.execute(query.order_by(ShipmentException.created_at))
        return list(result.scalars().all())

    async def open_entries(self, shipment: Shipment) -> list[ShipmentException]:
        return await self.list_entries(shipment, status=OPEN)

    async def current_selection(self, shipment: Shipment) -> tuple[list[str], dict[str, str | None]]:
        """Selected chips and their notes, as the dock-intake gate sees them."""
        if shipment.no_exceptions_confirmed:
            return [NO_EXCEPTIONS], {}
        entries = await self.open_entries(shipment)
        return [e.code for e in entries], {e.code: e.note for e in entries}

    async def _get_open(self, shipment: Shipment, code: str) -> ShipmentException | None:
        result = await self.db.execute(
            select(ShipmentException).where(
                ShipmentException.tenant_id == shipment.tenant_id,
                ShipmentException.shipment_id == shipment.id,
                ShipmentException.code == code,
                ShipmentException.status == OPEN,
            )
        )
        return result.scalars().first()

    async def get(self, tenant_id: str, entry_id: str) -> ShipmentException:
        result = await self.db.execute(
            select(ShipmentException).where(
                ShipmentException.tenant_id == tenant_id,
                ShipmentException.id == entry_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ResourceNotFoundError("Shipment exception", entry_id)
        return entry

    async def select(self, shipment: Shipment, code: str, note: str | None = None) -> ShipmentException | None:
        """Select a chip. Real codes upsert their open entry and clear the sentinel."""
        if code == NO_EXCEPTIONS:
            await self.select_no_exceptions(shipment)
            return None
        if code not in ShipmentExceptionCode.__members__:
            raise ValidationFailure([f"Unknown exception code: {code}"])
        if requires_note(code):
            note = (note or "").strip()
            if not note:
                raise ValidationFailure([f"{EXCEPTION_LABELS[code]} requires a note"])

        entry = await self._get_open(shipment, code)
        if entry is None:
            entry = ShipmentException(
                tenant_id=shipment.tenant_id,
                shipment_id=shipment.id,
                code=code,
                note=note,
                status=OPEN,
                created_by=self.principal.user_id,
            )
            self.db.add(entry)
        elif note is not None:
            entry.note = note

        shipment.no_exceptions_confirmed = False
        await self.db.flush()
        return entry

    async def deselect(self, shipment: Shipment, code: str) -> bool:
        if code == NO_EXCEPTIONS:
            changed = bool(shipment.no_exceptions_confirmed)
            shipment.no_exceptions_confirmed = False
            await self.db.flush()
            return changed

        entry = await self._get_open(shipment, code)
        if entry is None:
            return False
        await self.db.delete(entry)
        await self.db.flush()
        return True

    async def _remove_entry(self, entry: ShipmentException) -> None:
        await self.db.delete(entry)
        await self.db.flush()

    async def select_no_exceptions(self, shipment: Shipment) -> None:
        entries = await self.open_entries(shipment)
        failed: list[str] = []

        try:
            async with self.db.begin_nested():
                for entry in entries:
                    code = entry.code
                    try:
                        async with self.db.begin_nested():
                            await self._remove_entry(entry)
                    except SQLAlchemyError as exc:
                        logger.warning(
                            "Could not remove exception %s on shipment %s: %s",
                            code, shipment.id, exc,
                        )
                        failed.append(code)

                if failed:
                    raise ExceptionToggleFailure(failed)

                shipment.no_exceptions_confirmed = True
                await self.db.flush()
        except ExceptionToggleFailure:
            await self.db.refresh(shipment)
            raise

    async def update_note(self, shipment: Shipment, code: str, note: str | None) -> ShipmentException:
        entry = await self._get_open(shipment, code)
        if entry is None:
            raise ResourceNotFoundError("Open shipment exception", code)
        if requires_note(code) and not (note or "").strip():
            raise ValidationFailure([f"{EXCEPTION_LABELS[code]} requires a note"])
        entry.note = note
        await self.db.flush()
        return entry

    async def resolve(self, entry: ShipmentException, resolution_note: str | None) -> ShipmentException:
        resolve_entry("shipment_exception", entry, resolution_note, self.principal.user_id)
        await log_activity(
            self.db, self.principal,
            action="exception_resolved",
            entity_type="shipment",
            entity_id=entry.shipment_id,
            summary=f"Resolved {EXCEPTION_LABELS.get(entry.code, entry.code)}",
            details={"exception_id": entry.id, "resolution_note": entry.resolution_note},
        )
        await self.db.flush()
        return entry

    async def reopen(self, entry: ShipmentException) -> ShipmentException:
        if entry.status == RESOLVED:
            result = await self.db.execute(
                select(ShipmentException.id).where(
                    ShipmentException.tenant_id == entry.tenant_id,
                    ShipmentException.shipment_id == entry.shipment_id,
                    ShipmentException.code == entry.code,
                    ShipmentException.status == OPEN,
                    ShipmentException.id != entry.id,
                )
            )
            if result.first() is not None:
                raise BusinessLogicError(
                    f"{EXCEPTION_LABELS.get(entry.code, entry.code)} is already open on this shipment",
                    error_code="EXCEPTION_ALREADY_OPEN",
                )

        reopen_entry("shipment_exception", entry, self.principal.user_id)
        await log_activity(
            self.db, self.principal,
            action="exception_reopened",
            entity_type="shipment",
            entity_id=entry.shipment_id,
            summary=f"Reopened {EXCEPTION_LABELS.get(entry.code, entry.code)}",
            details={"exception_id": entry.id},
        )
        await self.db.flush()
        return entry


# ── Receiving discrepancies ──────────────────────────────────

class DiscrepancyLedger:
    def __init__(self, db: AsyncSession, principal: Principal, alerts: AlertQueue):
        self.db = db
        self.principal = principal
        self.alerts = alerts

    async def create(
        self,
        shipment: Shipment,
        discrepancy_type: str,
        description: str | None = None,
        details: dict | None = None,
        alert: bool = True,
    ) -> tuple[ReceivingDiscrepancy, list[str]]:
        """Record a discrepancy. Returns the entry and any alert warnings."""
        if discrepancy_type not in DISCREPANCY_TYPES:
            raise ValidationFailure([f"Unknown discrepancy type: {discrepancy_type}"])

        entry = ReceivingDiscrepancy(
            tenant_id=shipment.tenant_id,
            shipment_id=shipment.id,
            discrepancy_type=discrepancy_type,
            description=description,
            details=details,
            status=OPEN,
            created_by=self.principal.user_id,
        )
        self.db.add(entry)
        await self.db.flush()

        await log_activity(
            self.db, self.principal,
            action="discrepancy_created",
            entity_type="shipment",
            entity_id=shipment.id,
            entity_code=shipment.shipment_number,
            summary=f"Discrepancy {discrepancy_type} raised",
            details={"discrepancy_id": entry.id},
        )

        warnings = []
        if not alert:
            return entry, warnings
        warning = await notify(self.alerts, "receiving_discrepancy", shipment.tenant_id, {
            "shipment_id": shipment.id,
            "shipment_number": shipment.shipment_number,
            "discrepancy_id": entry.id,
            "discrepancy_type": discrepancy_type,
            "description": description,
        })
        if warning:
            warnings.append(warning)
        return entry, warnings

    async def list_entries(self, shipment: Shipment, status: str | None = None) -> list[ReceivingDiscrepancy]:
        query = select(ReceivingDiscrepancy).where(
            ReceivingDiscrepancy.tenant_id == shipment.tenant_id,
            ReceivingDiscrepancy.shipment_id == shipment.id,
        )
        if status:
            query = query.where(ReceivingDiscrepancy.status == status)
        result = await self.db.execute(query.order_by(ReceivingDiscrepancy.created_at))
        return list(result.scalars().all())

    async def get(self, tenant_id: str, entry_id: str) -> ReceivingDiscrepancy:
        result = await self.db.execute(
            select(ReceivingDiscrepancy).where(
                ReceivingDiscrepancy.tenant_id == tenant_id,
                ReceivingDiscrepancy.id == entry_id,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ResourceNotFoundError("Receiving discrepancy", entry_id)
        return entry

    async def resolve(self, entry: ReceivingDiscrepancy, resolution_note: str | None) -> ReceivingDiscrepancy:
        resolve_entry("receiving_discrepancy", entry, resolution_note, self.principal.user_id)
        await log_activity(
            self.db, self.principal,
            action="discrepancy_resolved",
            entity_type="shipment",
            entity_id=entry.shipment_id,
            summary=f"Resolved {entry.discrepancy_type} discrepancy",
            details={"discrepancy_id": entry.id, "resolution_note": entry.resolution_note},
        )
        await self.db.flush()
        return entry

    async def reopen(self, entry: ReceivingDiscrepancy) -> ReceivingDiscrepancy:
        reopen_entry("receiving_discrepancy", entry, self.principal.user_id)
        await log_activity(
            self.db, self.principal,
            action="discrepancy_reopened",
            entity_type="shipment",
            entity_id=entry.shipment_id,
            summary=f"Reopened {entry.discrepancy_type} discrepancy",
            details={"discrepancy_id": entry.id},
        )
        await self.db.flush()
        return entry
