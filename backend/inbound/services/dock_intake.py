"""Stage 1 dock-intake validation.

`validate_dock_intake(form)` is pure: it inspects a DockIntakeForm and
returns every problem it finds, in a stable order, so the caller can show
the whole punch-list at once.  The draft → stage1_complete transition is
refused unless the list is empty.

Rules:
  - account chosen (the tenant's unidentified account counts)
  - signed pieces > 0
  - an exception selection made ("no exceptions" counts)
  - REFUSED / OTHER carry a non-empty note
  - at least 1 paperwork photo and 1 condition photo
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

NO_EXCEPTIONS = "NO_EXCEPTIONS"


class ShipmentExceptionCode(str, enum.Enum):
    PIECES_MISMATCH = "PIECES_MISMATCH"
    VENDOR_MISMATCH = "VENDOR_MISMATCH"
    DESCRIPTION_MISMATCH = "DESCRIPTION_MISMATCH"
    SIDEMARK_MISMATCH = "SIDEMARK_MISMATCH"
    SHIPPER_MISMATCH = "SHIPPER_MISMATCH"
    TRACKING_MISMATCH = "TRACKING_MISMATCH"
    REFERENCE_MISMATCH = "REFERENCE_MISMATCH"
    DAMAGE = "DAMAGE"
    WET = "WET"
    OPEN = "OPEN"
    MISSING_DOCS = "MISSING_DOCS"
    REFUSED = "REFUSED"
    CRUSHED_TORN_CARTONS = "CRUSHED_TORN_CARTONS"
    OTHER = "OTHER"


EXCEPTION_LABELS: dict[str, str] = {
    "PIECES_MISMATCH": "Item Count Mismatch",
    "VENDOR_MISMATCH": "Vendor Mismatch",
    "DESCRIPTION_MISMATCH": "Description Mismatch",
    "SIDEMARK_MISMATCH": "Side Mark Mismatch",
    "SHIPPER_MISMATCH": "Shipper Mismatch",
    "TRACKING_MISMATCH": "Tracking Mismatch",
    "REFERENCE_MISMATCH": "Reference Mismatch",
    "DAMAGE": "Damage",
    "WET": "Wet",
    "OPEN": "Open",
    "MISSING_DOCS": "Missing Docs",
    "REFUSED": "Refused",
    "CRUSHED_TORN_CARTONS": "Crushed/Torn Cartons",
    "OTHER": "Other",
}

# Codes that cannot be selected without a justification note
NOTE_REQUIRED_CODES = {ShipmentExceptionCode.REFUSED.value, ShipmentExceptionCode.OTHER.value}

PAPERWORK = "paperwork"
CONDITION = "condition"


def requires_note(code: str) -> bool:
    return code in NOTE_REQUIRED_CODES


@dataclass
class DockIntakeForm:
    """Everything the Stage 1 gate looks at."""
    account_id: str | None
    signed_pieces: int | None
    # Selected chips: real codes, or [NO_EXCEPTIONS]
    exception_codes: list[str] = field(default_factory=list)
    exception_notes: dict[str, str | None] = field(default_factory=dict)
    paperwork_photos: int = 0
    condition_photos: int = 0


def validate_dock_intake(form: DockIntakeForm) -> list[str]:
    errors: list[str] = []

    if not form.account_id:
        errors.append("Account is required (or use UNIDENTIFIED SHIPMENT)")
    if (form.signed_pieces or 0) <= 0:
        errors.append("Signed pieces must be greater than 0")
    if not form.exception_codes:
        errors.append("At least one exception selection is required")

    for code in form.exception_codes:
        if requires_note(code) and not (form.exception_notes.get(code) or "").strip():
            errors.append(f"{EXCEPTION_LABELS[code]} requires a note")

    if form.paperwork_photos < 1:
        errors.append("At least 1 paperwork photo is required")
    if form.condition_photos < 1:
        errors.append("At least 1 condition photo is required")

    return errors
