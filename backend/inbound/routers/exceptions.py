"""Exception and discrepancy router.

Endpoints:
    GET    /api/shipments/{id}/exceptions                       Current selection + entries
    POST   /api/shipments/{id}/exceptions/select                Select a chip (or NO_EXCEPTIONS)
    POST   /api/shipments/{id}/exceptions/deselect              Deselect a chip
    PATCH  /api/shipments/{id}/exceptions/{code}/note           Edit an open entry's note
    POST   /api/shipments/{id}/exceptions/{entry_id}/resolve    open → resolved
    POST   /api/shipments/{id}/exceptions/{entry_id}/reopen     resolved → open
    GET    /api/shipments/{id}/discrepancies                    List discrepancies
    POST   /api/shipments/{id}/discrepancies                    Raise a discrepancy
    POST   /api/shipments/{id}/discrepancies/{entry_id}/resolve open → resolved
    POST   /api/shipments/{id}/discrepancies/{entry_id}/reopen  resolved → open
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal, require_permission
from inbound.database import get_db
from inbound.middleware.exceptions import ResourceNotFoundError
from inbound.models.shipment import Shipment
from inbound.schemas.exceptions import (
    DiscrepancyCreate,
    DiscrepancyCreatedOut,
    DiscrepancyOut,
    ExceptionNoteRequest,
    ExceptionOut,
    ExceptionSelectionOut,
    ExceptionSelectRequest,
    ResolveRequest,
)
from inbound.services.alerts import AlertQueue, get_alert_queue
from inbound.services.exception_ledger import DiscrepancyLedger, ExceptionLedger
from inbound.services.shipment_actions import get_shipment

router = APIRouter()


async def _selection(ledger: ExceptionLedger, shipment: Shipment) -> ExceptionSelectionOut:
    selected, notes = await ledger.current_selection(shipment)
    entries = await ledger.list_entries(shipment)
    return ExceptionSelectionOut(
        selected=selected,
        notes=notes,
        entries=[ExceptionOut.model_validate(e) for e in entries],
    )


def _belongs_to(entry, shipment: Shipment, kind: str, entry_id: str) -> None:
    if entry.shipment_id != shipment.id:
        raise ResourceNotFoundError(kind, entry_id)


# ── Shipment exceptions ──────────────────────────────────────

@router.get("/{shipment_id}/exceptions", response_model=ExceptionSelectionOut)
async def list_exceptions(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.read")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    return await _selection(ExceptionLedger(db, principal), shipment)


@router.post("/{shipment_id}/exceptions/select", response_model=ExceptionSelectionOut)
async def select_exception(
    shipment_id: str,
    body: ExceptionSelectRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.write")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = ExceptionLedger(db, principal)
    await ledger.select(shipment, body.code, body.note)
    return await _selection(ledger, shipment)


@router.post("/{shipment_id}/exceptions/deselect", response_model=ExceptionSelectionOut)
async def deselect_exception(
    shipment_id: str,
    body: ExceptionSelectRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.write")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = ExceptionLedger(db, principal)
    await ledger.deselect(shipment, body.code)
    return await _selection(ledger, shipment)


@router.patch("/{shipment_id}/exceptions/{code}/note", response_model=ExceptionOut)
async def update_exception_note(
    shipment_id: str,
    code: str,
    body: ExceptionNoteRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.write")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    entry = await ExceptionLedger(db, principal).update_note(shipment, code, body.note)
    return ExceptionOut.model_validate(entry)


@router.post("/{shipment_id}/exceptions/{entry_id}/resolve", response_model=ExceptionOut)
async def resolve_exception(
    shipment_id: str,
    entry_id: str,
    body: ResolveRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.write")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = ExceptionLedger(db, principal)
    entry = await ledger.get(principal.tenant_id, entry_id)
    _belongs_to(entry, shipment, "Shipment exception", entry_id)
    return ExceptionOut.model_validate(await ledger.resolve(entry, body.resolution_note))


@router.post("/{shipment_id}/exceptions/{entry_id}/reopen", response_model=ExceptionOut)
async def reopen_exception(
    shipment_id: str,
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.write")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = ExceptionLedger(db, principal)
    entry = await ledger.get(principal.tenant_id, entry_id)
    _belongs_to(entry, shipment, "Shipment exception", entry_id)
    return ExceptionOut.model_validate(await ledger.reopen(entry))


# ── Discrepancies ────────────────────────────────────────────

@router.get("/{shipment_id}/discrepancies", response_model=list[DiscrepancyOut])
async def list_discrepancies(
    shipment_id: str,
    entry_status: str | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("exceptions.read")),
    alerts: AlertQueue = Depends(get_alert_queue),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    entries = await DiscrepancyLedger(db, principal, alerts).list_entries(shipment, entry_status)
    return [DiscrepancyOut.model_validate(e) for e in entries]


@router.post(
    "/{shipment_id}/discrepancies",
    response_model=DiscrepancyCreatedOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_discrepancy(
    shipment_id: str,
    body: DiscrepancyCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("discrepancy.write")),
    alerts: AlertQueue = Depends(get_alert_queue),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    entry, warnings = await DiscrepancyLedger(db, principal, alerts).create(
        shipment, body.discrepancy_type, body.description, body.details,
    )
    return DiscrepancyCreatedOut(discrepancy=DiscrepancyOut.model_validate(entry), warnings=warnings)


@router.post("/{shipment_id}/discrepancies/{entry_id}/resolve", response_model=DiscrepancyOut)
async def resolve_discrepancy(
    shipment_id: str,
    entry_id: str,
    body: ResolveRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("discrepancy.write")),
    alerts: AlertQueue = Depends(get_alert_queue),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = DiscrepancyLedger(db, principal, alerts)
    entry = await ledger.get(principal.tenant_id, entry_id)
    _belongs_to(entry, shipment, "Receiving discrepancy", entry_id)
    return DiscrepancyOut.model_validate(await ledger.resolve(entry, body.resolution_note))


@router.post("/{shipment_id}/discrepancies/{entry_id}/reopen", response_model=DiscrepancyOut)
async def reopen_discrepancy(
    shipment_id: str,
    entry_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("discrepancy.write")),
    alerts: AlertQueue = Depends(get_alert_queue),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    ledger = DiscrepancyLedger(db, principal, alerts)
    entry = await ledger.get(principal.tenant_id, entry_id)
    _belongs_to(entry, shipment, "Receiving discrepancy", entry_id)
    return DiscrepancyOut.model_validate(await ledger.reopen(entry))
