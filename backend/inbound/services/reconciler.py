"""Stage 2 item reconciliation.

The working set of line items is an immutable `LineItemSet`: every edit
returns a new set, so a half-applied edit can never leak into a close.
Lines come from three places: lines persisted earlier (a previous save
or a manifest allocation), manual lines, and manifest-sourced lines.

`matching_hints()` hands the most recently edited description / vendor
to the candidate-matching lookup.  `validate_for_close()` is the gate
run before materialization.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.auth.deps import Principal
from inbound.middleware.exceptions import (
    BusinessLogicError,
    OverrideRequired,
    ResourceNotFoundError,
    ValidationFailure,
)
from inbound.models.shipment import Shipment, ShipmentLineItem, ShipmentStage
from inbound.services.collaborators import (
    CollaboratorError,
    ManifestAllocationService,
    ManifestCandidate,
)
from inbound.utils.activity import log_activity

logger = logging.getLogger(__name__)

MIN_HINT_LENGTH = 2

EDITABLE_FIELDS = {
    "description", "expected_quantity", "received_quantity",
    "vendor", "sidemark", "class_id", "package_count",
}


@dataclass(frozen=True)
class LineItem:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    expected_quantity: int = 0
    received_quantity: int = 0
    vendor: str | None = None
    sidemark: str | None = None
    class_id: str | None = None
    source: str = "manual"
    package_count: int = 1
    manifest_item_id: str | None = None
    allocation_id: str | None = None
    flags: tuple[str, ...] = ()
    # Monotonic edit stamp within a set; drives matching hints
    edited_seq: int = 0

    @classmethod
    def from_record(cls, record: ShipmentLineItem) -> "LineItem":
        return cls(
            id=record.id,
            description=record.description or "",
            expected_quantity=record.expected_quantity or 0,
            received_quantity=record.received_quantity or 0,
            vendor=record.vendor,
            sidemark=record.sidemark,
            class_id=record.class_id,
            source=record.source or "manual",
            package_count=record.package_count if record.package_count is not None else 1,
            manifest_item_id=record.manifest_item_id,
            allocation_id=record.allocation_id,
            flags=tuple(record.flags or ()),
        )


@dataclass(frozen=True)
class MatchingHints:
    description: str | None
    vendor: str | None


class LineItemSet:
    """Ordered, immutable collection of working line items."""

    __slots__ = ("_lines", "_seq")

    def __init__(self, lines: tuple[LineItem, ...] = (), seq: int = 0):
        self._lines = tuple(lines)
        self._seq = seq

    @classmethod
    def from_records(cls, records: list[ShipmentLineItem]) -> "LineItemSet":
        return cls(tuple(LineItem.from_record(r) for r in records))

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __getitem__(self, index: int) -> LineItem:
        return self._lines[index]

    @property
    def lines(self) -> tuple[LineItem, ...]:
        return self._lines

    @property
    def received_pieces(self) -> int:
        return sum(line.received_quantity for line in self._lines)

    def get(self, line_id: str) -> LineItem:
        for line in self._lines:
            if line.id == line_id:
                return line
        raise ResourceNotFoundError("Line item", line_id)

    # ── Edits (each returns a new set) ───────────────────────

    def _append(self, line: LineItem) -> "LineItemSet":
        seq = self._seq + 1
        return LineItemSet(self._lines + (replace(line, edited_seq=seq),), seq)

    def add_manual(self, **values) -> "LineItemSet":
        unknown = set(values) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown line item fields: {sorted(unknown)}")
        return self._append(LineItem(source="manual", **values))

    def add_existing(self, line: LineItem) -> "LineItemSet":
        """Carry over a previously persisted line."""
        return self._append(line)

    def add_from_manifest(self, candidate: ManifestCandidate) -> "LineItemSet":
        return self._append(LineItem(
            description=candidate.description,
            expected_quantity=candidate.expected_quantity,
            vendor=candidate.vendor,
            sidemark=candidate.sidemark,
            class_id=candidate.class_id,
            source="manifest",
            manifest_item_id=candidate.manifest_item_id,
            allocation_id=candidate.allocation_id,
        ))

    def update(self, line_id: str, **changes) -> "LineItemSet":
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown line item fields: {sorted(unknown)}")
        self.get(line_id)
        seq = self._seq + 1
        lines = tuple(
            replace(line, edited_seq=seq, **changes) if line.id == line_id else line
            for line in self._lines
        )
        return LineItemSet(lines, seq)

    def remove(self, line_id: str) -> "LineItemSet":
        self.get(line_id)
        return LineItemSet(tuple(l for l in self._lines if l.id != line_id), self._seq)

    def matching_hints(self) -> MatchingHints:
        """Last edited non-empty description and vendor (at least 2 chars)."""
        ordered = sorted(self._lines, key=lambda l: l.edited_seq, reverse=True)

        def first(values):
            return next(
                (v.strip() for v in values if v and len(v.strip()) >= MIN_HINT_LENGTH),
                None,
            )

        return MatchingHints(
            description=first(l.description for l in ordered),
            vendor=first(l.vendor for l in ordered),
        )


def validate_for_close(
    lines: LineItemSet,
    override_reason: str | None = None,
    can_override: bool = False,
) -> bool:
    """Raise unless the set may be closed. Returns True when the override was used."""
    if len(lines) == 0:
        if override_reason is None:
            raise ValidationFailure(["At least one line item is required to close receiving"])
        if not can_override:
            raise OverrideRequired()
        if not override_reason.strip():
            raise ValidationFailure(["An override reason is required"])
        return True

    errors = []
    for index, line in enumerate(lines, start=1):
        if not line.description.strip():
            errors.append(f"Line {index}: description is required")
        if line.received_quantity <= 0:
            errors.append(f"Line {index}: received quantity must be greater than 0")
    if lines.received_pieces <= 0:
        errors.append("Received pieces must be greater than 0")
    if errors:
        raise ValidationFailure(errors)
    return False


def merge_working_set(persisted: LineItemSet, rows: list[dict]) -> LineItemSet:
    """Build the working set a client submitted on top of the persisted lines.

    Rows with an `id` edit a persisted line (keeping its source and
    manifest link); rows without one are new manual lines.  Persisted
    lines missing from `rows` are dropped.
    """
    working = LineItemSet()
    for row in rows:
        values = {k: v for k, v in row.items() if k in EDITABLE_FIELDS}
        line_id = row.get("id")
        if line_id:
            working = working.add_existing(persisted.get(line_id))
            working = working.update(line_id, **values)
        else:
            working = working.add_manual(**values)
    return working


# ── Persistence ──────────────────────────────────────────────

def ensure_lines_editable(shipment: Shipment) -> None:
    if shipment.stage != ShipmentStage.RECEIVING.value:
        raise BusinessLogicError(
            f"Line items can only be changed while receiving (shipment is {shipment.stage})",
            error_code="LINES_LOCKED",
        )


async def load_line_records(db: AsyncSession, shipment: Shipment) -> list[ShipmentLineItem]:
    result = await db.execute(
        select(ShipmentLineItem)
        .where(
            ShipmentLineItem.tenant_id == shipment.tenant_id,
            ShipmentLineItem.shipment_id == shipment.id,
        )
        .order_by(ShipmentLineItem.position, ShipmentLineItem.created_at)
    )
    return list(result.scalars().all())


async def load_line_items(db: AsyncSession, shipment: Shipment) -> LineItemSet:
    return LineItemSet.from_records(await load_line_records(db, shipment))


async def save_line_items(
    db: AsyncSession,
    shipment: Shipment,
    lines: LineItemSet,
    allocations: ManifestAllocationService,
) -> list[ShipmentLineItem]:
    """Make the persisted lines match the working set.

    Lines dropped from the set are deleted after their manifest
    allocation is reversed.
    """
    records = {r.id: r for r in await load_line_records(db, shipment)}
    wanted = {line.id for line in lines}

    for record_id, record in list(records.items()):
        if record_id in wanted:
            continue
        if record.allocation_id:
            try:
                await allocations.deallocate(shipment.tenant_id, record.allocation_id)
            except CollaboratorError as exc:
                raise BusinessLogicError(
                    f"Could not reverse manifest allocation for '{record.description}': {exc}",
                    error_code="ALLOCATION_REVERSAL_FAILED",
                ) from exc
        await db.delete(record)
        del records[record_id]

    saved = []
    for position, line in enumerate(lines):
        record = records.get(line.id)
        if record is None:
            record = ShipmentLineItem(
                id=line.id,
                tenant_id=shipment.tenant_id,
                shipment_id=shipment.id,
                source=line.source,
                manifest_item_id=line.manifest_item_id,
                allocation_id=line.allocation_id,
            )
            db.add(record)
        record.position = position
        record.description = line.description.strip()
        record.expected_quantity = line.expected_quantity
        record.received_quantity = line.received_quantity
        record.vendor = line.vendor
        record.sidemark = line.sidemark
        record.class_id = line.class_id
        record.package_count = line.package_count
        saved.append(record)

    await db.flush()
    return saved


async def add_manifest_lines(
    db: AsyncSession,
    principal: Principal,
    shipment: Shipment,
    manifest_item_ids: list[str],
    allocations: ManifestAllocationService,
) -> list[ShipmentLineItem]:
    """Allocate manifest items to the shipment and persist them as lines."""
    ensure_lines_editable(shipment)
    try:
        candidates = await allocations.allocate(
            shipment.tenant_id, shipment.id, manifest_item_ids, principal.user_id,
        )
    except CollaboratorError as exc:
        raise BusinessLogicError(str(exc), error_code="ALLOCATION_FAILED") from exc

    lines = await load_line_items(db, shipment)
    for candidate in candidates:
        lines = lines.add_from_manifest(candidate)
    records = await save_line_items(db, shipment, lines, allocations)

    await log_activity(
        db, principal,
        action="manifest_items_allocated",
        entity_type="shipment",
        entity_id=shipment.id,
        entity_code=shipment.shipment_number,
        summary=f"Allocated {len(candidates)} manifest item(s)",
        details={"manifest_item_ids": manifest_item_ids},
    )
    return records


async def remove_line(
    db: AsyncSession,
    principal: Principal,
    shipment: Shipment,
    line_id: str,
    allocations: ManifestAllocationService,
) -> None:
    """Delete one persisted line, reversing its manifest allocation first."""
    ensure_lines_editable(shipment)
    result = await db.execute(
        select(ShipmentLineItem).where(
            ShipmentLineItem.tenant_id == shipment.tenant_id,
            ShipmentLineItem.shipment_id == shipment.id,
            ShipmentLineItem.id == line_id,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise ResourceNotFoundError("Line item", line_id)

    if record.allocation_id:
        try:
            await allocations.deallocate(shipment.tenant_id, record.allocation_id)
        except CollaboratorError as exc:
            logger.warning("Allocation %s not reversed, keeping line %s: %s",
                           record.allocation_id, line_id, exc)
            raise BusinessLogicError(
                f"Could not reverse manifest allocation: {exc}",
                error_code="ALLOCATION_REVERSAL_FAILED",
            ) from exc

    await db.delete(record)
    await log_activity(
        db, principal,
        action="line_item_removed",
        entity_type="shipment",
        entity_id=shipment.id,
        entity_code=shipment.shipment_number,
        summary=f"Removed line '{record.description or ''}'",
        details={"line_id": line_id, "allocation_id": record.allocation_id},
    )
    await db.flush()
