"""Stage workflow engine: the only writer of Shipment.stage.

    draft ──complete_dock_intake──> stage1_complete ──confirm──> receiving ──close──> closed
      ^                                   │
      └──────────── revert ───────────────┘

Each forward edge runs its gate first and only then writes the new stage,
the payload fields and the gate's side effects together:

  draft → stage1_complete    DockIntakeValidator (autosave flushed first)
  stage1_complete → receiving ConfirmationGate
  receiving → closed         ItemReconciler, then InventoryMaterializer
                             inside a savepoint

Any other edge raises InvalidTransition.  Callers may pass the shipment
version they last read; a mismatch raises StaleShipmentError.

Alerts for a close are collected on the CloseOutcome and sent with
`notify_closed()` once the caller has committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal
from inbound.config import settings
from inbound.middleware.exceptions import (
    InvalidTransition,
    MaterializationFailure,
    StaleShipmentError,
    UnsavedChangesError,
    ValidationFailure,
)
from inbound.models.exception_entry import ReceivingDiscrepancy
from inbound.models.shipment import Shipment, ShipmentExceptionType, ShipmentStage
from inbound.services.alerts import AlertQueue, notify
from inbound.services.autosave import FieldAutosave, apply_shipment_fields, check_field_names
from inbound.services.collaborators import (
    CodeGenerator,
    LocationResolver,
    ManifestAllocationService,
    PhotoCounter,
)
from inbound.services.confirmation import ConfirmationGate, ConfirmationSummary
from inbound.services.dock_intake import CONDITION, PAPERWORK, DockIntakeForm, validate_dock_intake
from inbound.services.exception_ledger import OPEN, DiscrepancyLedger, ExceptionLedger
from inbound.services.materializer import InventoryMaterializer, MaterializationResult
from inbound.services.reconciler import (
    LineItemSet,
    load_line_items,
    save_line_items,
    validate_for_close,
)
from inbound.services.shipment_actions import (
    ensure_unidentified_account,
    get_account,
)
from inbound.utils.activity import log_activity

logger = logging.getLogger(__name__)

Stage = ShipmentStage

TRANSITIONS = {
    (Stage.DRAFT, Stage.STAGE1_COMPLETE),
    (Stage.STAGE1_COMPLETE, Stage.RECEIVING),
    (Stage.STAGE1_COMPLETE, Stage.DRAFT),
    (Stage.RECEIVING, Stage.CLOSED),
}

ARRIVAL_NO_ID = "ARRIVAL_NO_ID"


@dataclass
class CloseOutcome:
    shipment: Shipment
    materialization: MaterializationResult
    received_pieces: int
    override_used: bool = False
    unidentified: bool = False
    discrepancy_ids: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def check_transition(shipment: Shipment, target: Stage) -> None:
    current = Stage(shipment.stage)
    if (current, target) not in TRANSITIONS:
        raise InvalidTransition("shipment", current.value, target.value)


def check_version(shipment: Shipment, expected_version: int | None) -> None:
    if expected_version is not None and shipment.version != expected_version:
        raise StaleShipmentError(shipment.id, expected_version, shipment.version)


class StageWorkflowEngine:
    def __init__(
        self,
        db: AsyncSession,
        principal: Principal,
        *,
        codes: CodeGenerator,
        locations: LocationResolver,
        photos: PhotoCounter,
        alerts: AlertQueue,
        allocations: ManifestAllocationService,
    ):
        self.db = db
        self.principal = principal
        self.codes = codes
        self.locations = locations
        self.photos = photos
        self.alerts = alerts
        self.allocations = allocations

        self.exceptions = ExceptionLedger(db, principal)
        self.discrepancies = DiscrepancyLedger(db, principal, alerts)
        self.confirmation = ConfirmationGate(db, photos, self.exceptions)

    async def advance(
        self,
        shipment: Shipment,
        target: Stage | str,
        payload: dict[str, Any] | None = None,
        *,
        expected_version: int | None = None,
        autosave: FieldAutosave | None = None,
        lines: LineItemSet | None = None,
        override_reason: str | None = None,
    ):
        target = Stage(target)
        if target == Stage.STAGE1_COMPLETE:
            return await self.complete_dock_intake(
                shipment, payload, expected_version=expected_version, autosave=autosave,
            )
        if target == Stage.RECEIVING:
            return await self.confirm(shipment, expected_version=expected_version)
        if target == Stage.CLOSED:
            return await self.close_receiving(
                shipment, lines, override_reason=override_reason, expected_version=expected_version,
            )
        if target == Stage.DRAFT:
            return await self.revert(shipment, expected_version=expected_version)
        raise InvalidTransition("shipment", shipment.stage, target.value)

    async def _record_transition(self, shipment: Shipment, previous: str, summary: str, details=None):
        await log_activity(
            self.db, self.principal,
            action="stage_changed",
            entity_type="shipment",
            entity_id=shipment.id,
            entity_code=shipment.shipment_number,
            summary=summary,
            details={"from": previous, "to": shipment.stage, **(details or {})},
        )
        logger.info("Shipment %s: %s → %s", shipment.shipment_number, previous, shipment.stage)

    # ── draft → stage1_complete ──────────────────────────────

    async def build_dock_intake_form(
        self, shipment: Shipment, payload: dict[str, Any] | None = None
    ) -> DockIntakeForm:
        values = payload or {}
        counts = await self.photos.count_by_category(shipment.tenant_id, shipment.id)
        codes, notes = await self.exceptions.current_selection(shipment)
        return DockIntakeForm(
            account_id=values.get("account_id", shipment.account_id),
            signed_pieces=values.get("signed_pieces", shipment.signed_pieces),
            exception_codes=codes,
            exception_notes=notes,
            paperwork_photos=counts.get(PAPERWORK, 0),
            condition_photos=counts.get(CONDITION, 0),
        )

    async def complete_dock_intake(
        self,
        shipment: Shipment,
        payload: dict[str, Any] | None = None,
        *,
        expected_version: int | None = None,
        autosave: FieldAutosave | None = None,
    ) -> Shipment:
        check_transition(shipment, Stage.STAGE1_COMPLETE)
        check_version(shipment, expected_version)

        if autosave is not None and not await autosave.save_now():
            raise UnsavedChangesError(sorted(autosave.pending))

        payload = payload or {}
        check_field_names(payload)
        form = await self.build_dock_intake_form(shipment, payload)
        errors = validate_dock_intake(form)

        account = None
        if form.account_id:
            account = await get_account(self.db, shipment.tenant_id, form.account_id)
            if account is None:
                errors.append("Selected account does not exist")
        if errors:
            raise ValidationFailure(errors, message="Dock intake is incomplete")

        apply_shipment_fields(shipment, payload)
        if account.is_unidentified and not shipment.exception_type:
            shipment.exception_type = ShipmentExceptionType.UNKNOWN_ACCOUNT.value

        previous = shipment.stage
        shipment.stage = Stage.STAGE1_COMPLETE.value
        await self.db.flush()
        await self._record_transition(
            shipment, previous, "Dock intake completed",
            {"signed_pieces": shipment.signed_pieces, "exception_codes": form.exception_codes},
        )
        return shipment

    # ── stage1_complete → receiving / draft ──────────────────

    async def summary(self, shipment: Shipment) -> ConfirmationSummary:
        return await self.confirmation.build_summary(shipment)

    async def confirm(self, shipment: Shipment, *, expected_version: int | None = None) -> Shipment:
        self.confirmation.check(shipment, Stage.RECEIVING.value)
        check_transition(shipment, Stage.RECEIVING)
        check_version(shipment, expected_version)

        previous = shipment.stage
        shipment.stage = Stage.RECEIVING.value
        await self.db.flush()
        await self._record_transition(shipment, previous, "Dock intake confirmed")
        return shipment

    async def revert(self, shipment: Shipment, *, expected_version: int | None = None) -> Shipment:
        """Send a stage1_complete shipment back to draft; saved fields stay."""
        self.confirmation.check(shipment, Stage.DRAFT.value)
        check_transition(shipment, Stage.DRAFT)
        check_version(shipment, expected_version)

        previous = shipment.stage
        shipment.stage = Stage.DRAFT.value
        await self.db.flush()
        await self._record_transition(shipment, previous, "Returned to dock intake")
        return shipment

    # ── receiving → closed ───────────────────────────────────

    async def close_receiving(
        self,
        shipment: Shipment,
        lines: LineItemSet | None = None,
        *,
        override_reason: str | None = None,
        expected_version: int | None = None,
    ) -> CloseOutcome:
        check_transition(shipment, Stage.CLOSED)
        check_version(shipment, expected_version)

        if lines is None:
            lines = await load_line_items(self.db, shipment)
        override_used = validate_for_close(
            lines, override_reason, self.principal.can("receiving.override"),
        )

        # The working set is kept even if materialization fails below
        records = await save_line_items(self.db, shipment, lines, self.allocations)

        try:
            async with self.db.begin_nested():
                outcome = await self._close(shipment, lines, records, override_used, override_reason)
        except MaterializationFailure:
            await self.db.refresh(shipment)
            raise
        return outcome

    async def _close(self, shipment, lines, records, override_used, override_reason) -> CloseOutcome:
        if not shipment.account_id:
            account = await ensure_unidentified_account(self.db, shipment.tenant_id)
            shipment.account_id = account.id
        else:
            account = await get_account(self.db, shipment.tenant_id, shipment.account_id)
        unidentified = bool(account and account.is_unidentified)
        if unidentified and not shipment.exception_type:
            shipment.exception_type = ShipmentExceptionType.UNKNOWN_ACCOUNT.value

        result = await self.materializer().materialize(shipment, records, self.principal.user_id)

        now = datetime.utcnow()
        tag_lines = unidentified and settings.auto_apply_arrival_no_id_flag
        for record in records:
            record.status = "received"
            record.received_at = now
            if tag_lines and ARRIVAL_NO_ID not in (record.flags or []):
                record.flags = [*(record.flags or []), ARRIVAL_NO_ID]

        previous = shipment.stage
        shipment.received_pieces = lines.received_pieces
        shipment.received_at = now
        shipment.stage = Stage.CLOSED.value
        await self.db.flush()

        outcome = CloseOutcome(
            shipment=shipment,
            materialization=result,
            received_pieces=shipment.received_pieces,
            override_used=override_used,
            unidentified=unidentified,
        )

        if shipment.signed_pieces is not None and shipment.received_pieces != shipment.signed_pieces:
            entry, _ = await self.discrepancies.create(
                shipment,
                "PIECES_MISMATCH",
                description=(
                    f"Signed for {shipment.signed_pieces} piece(s), "
                    f"received {shipment.received_pieces}"
                ),
                details={"expected": shipment.signed_pieces, "actual": shipment.received_pieces},
                alert=False,
            )
            outcome.discrepancy_ids.append(entry.id)

        if override_used:
            await log_activity(
                self.db, self.principal,
                action="receiving_admin_override",
                entity_type="shipment",
                entity_id=shipment.id,
                entity_code=shipment.shipment_number,
                summary="Receiving closed without line items",
                details={"reason": override_reason.strip()},
            )
            logger.warning("Shipment %s closed with admin override by %s",
                           shipment.shipment_number, self.principal.user_id)

        await self._record_transition(
            shipment, previous, "Receiving completed",
            {
                "received_pieces": shipment.received_pieces,
                "units_created": result.units_created,
                "containers_created": result.containers_created,
            },
        )
        return outcome

    def materializer(self) -> InventoryMaterializer:
        return InventoryMaterializer(self.db, self.codes, self.locations)

    async def notify_closed(self, outcome: CloseOutcome) -> list[str]:
        """Queue the post-close alerts. Failures become warnings."""
        shipment = outcome.shipment
        base = {
            "shipment_id": shipment.id,
            "shipment_number": shipment.shipment_number,
            "received_pieces": outcome.received_pieces,
        }

        if outcome.unidentified:
            warning = await notify(self.alerts, "unidentified_intake_completed", shipment.tenant_id, base)
            if warning:
                outcome.warnings.append(warning)

        open_count = await self.db.scalar(
            select(func.count(ReceivingDiscrepancy.id)).where(
                ReceivingDiscrepancy.tenant_id == shipment.tenant_id,
                ReceivingDiscrepancy.shipment_id == shipment.id,
                ReceivingDiscrepancy.status == OPEN,
            )
        )
        if open_count:
            warning = await notify(self.alerts, "receiving_discrepancy", shipment.tenant_id, {
                **base,
                "signed_pieces": shipment.signed_pieces,
                "open_discrepancies": open_count,
            })
            if warning:
                outcome.warnings.append(warning)

        return outcome.warnings
