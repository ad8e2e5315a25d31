"""Per-field debounced autosave for Stage 1 dock-intake fields.

Every edit lands in a pending buffer and (re)starts a short debounce
timer; when it fires, the buffered fields are written in one call to the
injected `save` coroutine.  Writes are serialised, so a burst of edits
never produces overlapping writes, and the newest value of a field always
wins.

Status is observable via `.status` and `subscribe(callback)`:

    idle → saving → saved
                  → offline-unsaved   (connection-level failure, after retries)
                  → error             (anything else)

Fields that failed to write stay pending and go out with the next save.
`save_now()` (alias `flush()`) cancels the timer and writes immediately;
the workflow engine awaits it before validating a stage transition.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.middleware.exceptions import BusinessLogicError, ValidationFailure
from inbound.models.shipment import Shipment, ShipmentStage

logger = logging.getLogger(__name__)

# Failures that mean "could not reach the store" rather than "the store said no"
CONNECTION_ERRORS = (ConnectionError, OSError, TimeoutError, asyncio.TimeoutError)

# Shipment columns the dock-intake form may write while the shipment is a draft
AUTOSAVE_FIELDS = {
    "account_id",
    "vendor_name",
    "signed_pieces",
    "driver_name",
    "notes",
    "dock_intake_breakdown",
    "signature_data",
    "signature_name",
    "signature_timestamp",
}


class SaveStatus(str, enum.Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    OFFLINE_UNSAVED = "offline-unsaved"
    ERROR = "error"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for connection-level failures."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (0-based) failed attempt."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    @classmethod
    def from_settings(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.autosave_max_attempts,
            base_delay=config.autosave_base_delay_seconds,
            max_delay=config.autosave_max_delay_seconds,
        )


SaveFn = Callable[[dict[str, Any]], Awaitable[None]]
StatusCallback = Callable[[SaveStatus], None]


class FieldAutosave:
    def __init__(
        self,
        save: SaveFn,
        *,
        debounce_seconds: float | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._save = save
        if debounce_seconds is None:
            debounce_seconds = settings.autosave_debounce_seconds
        self.debounce_seconds = debounce_seconds
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep

        self._pending: dict[str, Any] = {}
        self._status = SaveStatus.IDLE
        self._subscribers: list[StatusCallback] = []
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self.last_error: BaseException | None = None

    # ── Observation ──────────────────────────────────────────

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def pending(self) -> dict[str, Any]:
        return dict(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a status listener; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _set_status(self, status: SaveStatus) -> None:
        self._status = status
        for callback in list(self._subscribers):
            callback(status)

    # ── Editing ──────────────────────────────────────────────

    def update(self, field: str, value: Any) -> None:
        """Buffer an edit and restart the debounce timer."""
        self._pending[field] = value
        self._cancel_timer()
        self._timer = asyncio.ensure_future(self._debounced())

    async def _debounced(self) -> None:
        await self._sleep(self.debounce_seconds)
        self._timer = None
        await self._write_pending()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    # ── Writing ──────────────────────────────────────────────

    async def save_now(self) -> bool:
        """Write pending fields immediately. True when nothing is left pending."""
        self._cancel_timer()
        return await self._write_pending()

    flush = save_now

    async def _write_pending(self) -> bool:
        async with self._lock:
            if not self._pending:
                return True

            batch = dict(self._pending)
            self._set_status(SaveStatus.SAVING)
            policy = self.retry_policy

            for attempt in range(policy.max_attempts):
                try:
                    await self._save(batch)
                except CONNECTION_ERRORS as exc:
                    self.last_error = exc
                    if attempt + 1 < policy.max_attempts:
                        delay = policy.delay_for(attempt)
                        logger.info(
                            "Autosave attempt %d/%d failed (%s); retrying in %.2fs",
                            attempt + 1, policy.max_attempts, exc, delay,
                        )
                        await self._sleep(delay)
                        continue
                    logger.warning("Autosave offline, %d field(s) unsaved: %s", len(batch), exc)
                    self._set_status(SaveStatus.OFFLINE_UNSAVED)
                    return False
                except Exception as exc:
                    self.last_error = exc
                    logger.warning("Autosave rejected for %s: %s", sorted(batch), exc)
                    self._set_status(SaveStatus.ERROR)
                    return False

                # Drop only the fields whose value did not change mid-write
                for field, value in batch.items():
                    if field in self._pending and self._pending[field] == value:
                        del self._pending[field]
                self.last_error = None
                self._set_status(SaveStatus.SAVED)
                return not self._pending

            return False


def check_field_names(fields: dict[str, Any]) -> None:
    unknown = sorted(set(fields) - AUTOSAVE_FIELDS)
    if unknown:
        raise ValidationFailure(
            [f"Field '{name}' cannot be autosaved" for name in unknown],
            message="Unknown fields",
        )


def apply_shipment_fields(shipment, fields: dict[str, Any]) -> list[str]:
    """Copy autosaved field values onto a shipment. Returns the changed names."""
    check_field_names(fields)
    changed = []
    for name, value in fields.items():
        if getattr(shipment, name) != value:
            setattr(shipment, name, value)
            changed.append(name)
    return changed


async def save_draft_fields(db: AsyncSession, shipment: Shipment, fields: dict[str, Any]) -> list[str]:
    """Server side of an autosave round-trip. Draft shipments only."""
    if shipment.stage != ShipmentStage.DRAFT.value:
        raise BusinessLogicError(
            f"Dock intake fields are locked once the shipment leaves draft (stage: {shipment.stage})",
            error_code="FIELD_LOCKED",
        )
    changed = apply_shipment_fields(shipment, fields)
    if changed:
        await db.flush()
    return changed


def shipment_writer(db: AsyncSession, shipment: Shipment) -> SaveFn:
    """A FieldAutosave `save` coroutine writing straight to the shipment row."""
    async def _save(fields: dict[str, Any]) -> None:
        await save_draft_fields(db, shipment, fields)

    return _save
