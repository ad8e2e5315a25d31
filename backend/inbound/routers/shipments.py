"""Shipment router: dock intake, confirmation, receiving and close.

Endpoints:
    POST   /api/shipments/                              Create draft shipment
    GET    /api/shipments/                              List shipments
    GET    /api/shipments/{id}                          Shipment detail
    PATCH  /api/shipments/{id}/fields                   Autosave Stage 1 fields (draft only)
    GET    /api/shipments/{id}/dock-intake/validation   Stage 1 punch-list
    POST   /api/shipments/{id}/dock-intake/complete     draft → stage1_complete
    GET    /api/shipments/{id}/confirmation             Read-only Stage 1 summary
    POST   /api/shipments/{id}/confirm                  stage1_complete → receiving
    POST   /api/shipments/{id}/go-back                  stage1_complete → draft
    GET    /api/shipments/{id}/lines                    Working line items + matching hints
    PUT    /api/shipments/{id}/lines                    Save the working set
    POST   /api/shipments/{id}/lines/manifest           Allocate manifest items as lines
    DELETE /api/shipments/{id}/lines/{line_id}          Remove a line (reverses allocation)
    POST   /api/shipments/{id}/close                    receiving → closed (materializes inventory)
    GET    /api/shipments/{id}/inventory                Units and containers created at close
    POST   /api/shipments/{id}/flag                     Flag mis-ship / return-to-sender
    POST   /api/shipments/{id}/resolve-account          Resolve an unidentified account
"""

import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal, get_current_principal, require_permission
from inbound.database import get_db
from inbound.middleware.exceptions import MaterializationFailure
from inbound.models.inventory import Container, InventoryUnit
from inbound.models.shipment import Shipment
from inbound.schemas.common import PaginatedResponse
from inbound.schemas.inventory import ContainerOut, InventoryUnitOut, ShipmentInventoryOut
from inbound.schemas.line_item import (
    AddManifestItemsRequest,
    CloseReceivingRequest,
    LineItemOut,
    LinesOut,
    MatchingHintsOut,
    SaveLinesRequest,
)
from inbound.schemas.shipment import (
    CloseReceivingOut,
    CompleteDockIntakeRequest,
    ConfirmationSummaryOut,
    DockIntakeCheckOut,
    FieldsSavedOut,
    FlagShipmentOut,
    FlagShipmentRequest,
    ResolveAccountRequest,
    ShipmentCreate,
    ShipmentFieldsUpdate,
    ShipmentOut,
    ShipmentSummary,
    VersionedRequest,
)
from inbound.services.alerts import AlertQueue, get_alert_queue
from inbound.services.autosave import save_draft_fields
from inbound.services.collaborators import (
    DatabaseLocationResolver,
    DatabaseManifestAllocationService,
    DatabasePhotoCounter,
    SequenceCodeGenerator,
)
from inbound.services.dock_intake import validate_dock_intake
from inbound.services.reconciler import (
    LineItemSet,
    add_manifest_lines,
    ensure_lines_editable,
    load_line_items,
    load_line_records,
    merge_working_set,
    remove_line,
    save_line_items,
)
from inbound.services.shipment_actions import (
    create_shipment,
    flag_shipment,
    get_shipment,
    resolve_unknown_account,
)
from inbound.services.workflow import StageWorkflowEngine, check_version

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_workflow_engine(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    alerts: AlertQueue = Depends(get_alert_queue),
) -> StageWorkflowEngine:
    """Engine wired to the database-backed collaborators."""
    return StageWorkflowEngine(
        db, principal,
        codes=SequenceCodeGenerator(db),
        locations=DatabaseLocationResolver(db),
        photos=DatabasePhotoCounter(db),
        alerts=alerts,
        allocations=DatabaseManifestAllocationService(db),
    )


async def _lines_out(db: AsyncSession, shipment: Shipment, working: LineItemSet | None = None) -> LinesOut:
    records = await load_line_records(db, shipment)
    working = working if working is not None else LineItemSet.from_records(records)
    hints = working.matching_hints()
    return LinesOut(
        lines=[LineItemOut.model_validate(r) for r in records],
        received_pieces=working.received_pieces,
        hints=MatchingHintsOut(description=hints.description, vendor=hints.vendor),
    )


# ── Shipments ────────────────────────────────────────────────

@router.post("/", response_model=ShipmentOut, status_code=status.HTTP_201_CREATED)
async def create(
    body: ShipmentCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.write")),
):
    shipment = await create_shipment(db, principal, **body.model_dump())
    return ShipmentOut.model_validate(shipment)


@router.get("/", response_model=PaginatedResponse[ShipmentSummary])
async def list_shipments(
    stage: str | None = Query(None),
    exception_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.read")),
):
    base_stmt = select(Shipment).where(Shipment.tenant_id == principal.tenant_id)
    if stage:
        base_stmt = base_stmt.where(Shipment.stage == stage)
    if exception_type:
        base_stmt = base_stmt.where(Shipment.exception_type == exception_type)

    count_stmt = select(func.count()).select_from(base_stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    result = await db.execute(
        base_stmt.order_by(Shipment.created_at.desc()).limit(limit).offset(offset)
    )
    items = [ShipmentSummary.model_validate(s) for s in result.scalars().all()]
    return PaginatedResponse(items=items, total=total, limit=limit, offset=offset)


@router.get("/{shipment_id}", response_model=ShipmentOut)
async def get_one(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.read")),
):
    return ShipmentOut.model_validate(await get_shipment(db, principal.tenant_id, shipment_id))


@router.patch("/{shipment_id}/fields", response_model=FieldsSavedOut)
async def save_fields(
    shipment_id: str,
    body: ShipmentFieldsUpdate,
    expected_version: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.write")),
):
    """Write the fields present in the body. Last write wins per field."""
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    check_version(shipment, expected_version)
    changed = await save_draft_fields(db, shipment, body.model_dump(exclude_unset=True))
    return FieldsSavedOut(shipment=ShipmentOut.model_validate(shipment), changed=changed)


# ── Stage 1 ──────────────────────────────────────────────────

@router.get("/{shipment_id}/dock-intake/validation", response_model=DockIntakeCheckOut)
async def dock_intake_validation(
    shipment_id: str,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("shipment.read")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    errors = validate_dock_intake(await engine.build_dock_intake_form(shipment))
    return DockIntakeCheckOut(ready=not errors, errors=errors)


@router.post("/{shipment_id}/dock-intake/complete", response_model=ShipmentOut)
async def complete_dock_intake(
    shipment_id: str,
    body: CompleteDockIntakeRequest,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("shipment.write")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    payload = body.fields.model_dump(exclude_unset=True) if body.fields else {}
    await engine.complete_dock_intake(shipment, payload, expected_version=body.expected_version)
    return ShipmentOut.model_validate(shipment)


# ── Confirmation ─────────────────────────────────────────────

@router.get("/{shipment_id}/confirmation", response_model=ConfirmationSummaryOut)
async def confirmation_summary(
    shipment_id: str,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("shipment.read")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    return ConfirmationSummaryOut.model_validate(await engine.summary(shipment))


@router.post("/{shipment_id}/confirm", response_model=ShipmentOut)
async def confirm(
    shipment_id: str,
    body: VersionedRequest | None = None,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("shipment.write")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    await engine.confirm(shipment, expected_version=body.expected_version if body else None)
    return ShipmentOut.model_validate(shipment)


@router.post("/{shipment_id}/go-back", response_model=ShipmentOut)
async def go_back(
    shipment_id: str,
    body: VersionedRequest | None = None,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("shipment.write")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    await engine.revert(shipment, expected_version=body.expected_version if body else None)
    return ShipmentOut.model_validate(shipment)


# ── Stage 2: line items ──────────────────────────────────────

@router.get("/{shipment_id}/lines", response_model=LinesOut)
async def list_lines(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.read")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    return await _lines_out(db, shipment)


@router.put("/{shipment_id}/lines", response_model=LinesOut)
async def save_lines(
    shipment_id: str,
    body: SaveLinesRequest,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("receiving.write")),
):
    db = engine.db
    shipment = await get_shipment(db, engine.principal.tenant_id, shipment_id)
    ensure_lines_editable(shipment)

    persisted = await load_line_items(db, shipment)
    working = merge_working_set(persisted, [line.model_dump() for line in body.lines])
    await save_line_items(db, shipment, working, engine.allocations)
    return await _lines_out(db, shipment, working)


@router.post("/{shipment_id}/lines/manifest", response_model=LinesOut)
async def add_from_manifest(
    shipment_id: str,
    body: AddManifestItemsRequest,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("receiving.write")),
):
    db = engine.db
    shipment = await get_shipment(db, engine.principal.tenant_id, shipment_id)
    await add_manifest_lines(db, engine.principal, shipment, body.manifest_item_ids, engine.allocations)
    return await _lines_out(db, shipment)


@router.delete("/{shipment_id}/lines/{line_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_line(
    shipment_id: str,
    line_id: str,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("receiving.write")),
):
    shipment = await get_shipment(engine.db, engine.principal.tenant_id, shipment_id)
    await remove_line(engine.db, engine.principal, shipment, line_id, engine.allocations)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Close ────────────────────────────────────────────────────

@router.post("/{shipment_id}/close", response_model=CloseReceivingOut)
async def close_receiving(
    shipment_id: str,
    body: CloseReceivingRequest,
    engine: StageWorkflowEngine = Depends(get_workflow_engine),
    _principal: Principal = Depends(require_permission("receiving.write")),
):
    """Close receiving and create inventory.

    The submitted line set is saved first; if materialization fails the
    save is committed, the shipment stays in receiving, and the error
    names the failing line.
    """
    db = engine.db
    shipment = await get_shipment(db, engine.principal.tenant_id, shipment_id)

    working = None
    if body.lines is not None:
        ensure_lines_editable(shipment)
        persisted = await load_line_items(db, shipment)
        working = merge_working_set(persisted, [line.model_dump() for line in body.lines])

    try:
        outcome = await engine.close_receiving(
            shipment, working,
            override_reason=body.override_reason,
            expected_version=body.expected_version,
        )
    except MaterializationFailure:
        await db.commit()
        raise

    await db.commit()
    await engine.notify_closed(outcome)

    result = outcome.materialization
    return CloseReceivingOut(
        shipment=ShipmentOut.model_validate(shipment),
        received_pieces=outcome.received_pieces,
        units_created=result.units_created,
        units_existing=result.units_existing,
        containers_created=result.containers_created,
        override_used=outcome.override_used,
        discrepancy_ids=outcome.discrepancy_ids,
        warnings=outcome.warnings,
    )


@router.get("/{shipment_id}/inventory", response_model=ShipmentInventoryOut)
async def shipment_inventory(
    shipment_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.read")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)

    units_result = await db.execute(
        select(InventoryUnit)
        .where(
            InventoryUnit.tenant_id == shipment.tenant_id,
            InventoryUnit.shipment_id == shipment.id,
        )
        .order_by(InventoryUnit.ic_code)
    )
    units = units_result.scalars().all()

    containers_result = await db.execute(
        select(Container)
        .where(
            Container.tenant_id == shipment.tenant_id,
            Container.shipment_id == shipment.id,
        )
        .order_by(Container.container_code)
    )
    counts: dict[str, int] = {}
    for unit in units:
        if unit.container_id:
            counts[unit.container_id] = counts.get(unit.container_id, 0) + 1

    return ShipmentInventoryOut(
        units=[InventoryUnitOut.model_validate(u) for u in units],
        containers=[
            ContainerOut(
                id=c.id,
                container_code=c.container_code,
                container_type=c.container_type,
                location_id=c.location_id,
                status=c.status,
                unit_count=counts.get(c.id, 0),
            )
            for c in containers_result.scalars().all()
        ],
    )


# ── Shipment exception actions ───────────────────────────────

@router.post("/{shipment_id}/flag", response_model=FlagShipmentOut)
async def flag(
    shipment_id: str,
    body: FlagShipmentRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("shipment.flag")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    quarantined = await flag_shipment(db, principal, shipment, body.exception_type)
    return FlagShipmentOut(shipment=ShipmentOut.model_validate(shipment), units_quarantined=quarantined)


@router.post("/{shipment_id}/resolve-account", response_model=ShipmentOut)
async def resolve_account(
    shipment_id: str,
    body: ResolveAccountRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission("account.resolve")),
):
    shipment = await get_shipment(db, principal.tenant_id, shipment_id)
    await resolve_unknown_account(db, principal, shipment, body.account_id, body.note)
    return ShipmentOut.model_validate(shipment)
