"""Confirmation gate between dock intake and detailed receiving.

Shows a read-only summary of what Stage 1 recorded.  The operator either
confirms (→ receiving) or goes back to edit (→ draft).  The only rule is
that the shipment is sitting at stage1_complete.
"""

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from inbound.middleware.exceptions import InvalidTransition
from inbound.models.shipment import Shipment, ShipmentStage
from inbound.services.collaborators import PhotoCounter
from inbound.services.dock_intake import CONDITION, PAPERWORK
from inbound.services.exception_ledger import ExceptionLedger
from inbound.services.shipment_actions import get_account


@dataclass
class ConfirmationSummary:
    shipment_id: str
    shipment_number: str
    account_id: str | None
    account_name: str | None
    account_unidentified: bool
    vendor_name: str | None
    signed_pieces: int | None
    driver_name: str | None
    dock_intake_breakdown: dict | None
    signature_captured: bool
    paperwork_photos: int
    condition_photos: int
    exception_codes: list[str] = field(default_factory=list)
    exception_type: str | None = None


class ConfirmationGate:
    def __init__(self, db: AsyncSession, photos: PhotoCounter, ledger: ExceptionLedger):
        self.db = db
        self.photos = photos
        self.ledger = ledger

    @staticmethod
    def check(shipment: Shipment, target: str) -> None:
        if shipment.stage != ShipmentStage.STAGE1_COMPLETE.value:
            raise InvalidTransition("shipment", shipment.stage, target)

    async def build_summary(self, shipment: Shipment) -> ConfirmationSummary:
        account = None
        if shipment.account_id:
            account = await get_account(self.db, shipment.tenant_id, shipment.account_id)
        counts = await self.photos.count_by_category(shipment.tenant_id, shipment.id)
        codes, _ = await self.ledger.current_selection(shipment)

        return ConfirmationSummary(
            shipment_id=shipment.id,
            shipment_number=shipment.shipment_number,
            account_id=shipment.account_id,
            account_name=account.name if account else None,
            account_unidentified=bool(account and account.is_unidentified),
            vendor_name=shipment.vendor_name,
            signed_pieces=shipment.signed_pieces,
            driver_name=shipment.driver_name,
            dock_intake_breakdown=shipment.dock_intake_breakdown,
            signature_captured=bool(shipment.signature_data or shipment.signature_name),
            paperwork_photos=counts.get(PAPERWORK, 0),
            condition_photos=counts.get(CONDITION, 0),
            exception_codes=codes,
            exception_type=shipment.exception_type,
        )
