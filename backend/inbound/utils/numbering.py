"""Shared number generation utility.

Format tokens:
  {date}       → YYYYMMDD
  {seq:N}      → zero-padded sequence number, N digits

Default formats:
  shipment:        SHP-{date}-{seq:4}     (sequence resets daily)
  inventory_unit:  IC-{seq:7}             (never resets)
  container:       CTN-{date}-{seq:4}

Sequences are kept per (tenant, entity, prefix) in `number_sequences`.
The counter row is locked FOR UPDATE while the next value is taken, so
two sessions can never hand out the same code.
"""

import re
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.models.number_sequence import NumberSequence

DEFAULT_FORMATS = {
    "shipment": "SHP-{date}-{seq:4}",
    "inventory_unit": "IC-{seq:7}",
    "container": "CTN-{date}-{seq:4}",
}


def _build_prefix(fmt: str, today_str: str) -> str:
    """Build the prefix portion of the code (everything before {seq:N})."""
    prefix = fmt.replace("{date}", today_str)
    prefix = re.sub(r"\{seq:\d+\}.*$", "", prefix)
    return prefix


def render_code(fmt: str, today_str: str, seq_num: int) -> str:
    """Fill a format template with the date and sequence number."""
    seq_match = re.search(r"\{seq:(\d+)\}", fmt)
    seq_width = int(seq_match.group(1)) if seq_match else 3

    code = fmt.replace("{date}", today_str)
    return re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", code)


async def _next_value(db: AsyncSession, tenant_id: str, entity: str, prefix: str) -> int:
    """Increment and return the counter for (tenant, entity, prefix)."""
    result = await db.execute(
        select(NumberSequence)
        .where(
            NumberSequence.tenant_id == tenant_id,
            NumberSequence.entity == entity,
            NumberSequence.prefix == prefix,
        )
        .with_for_update()
    )
    sequence = result.scalar_one_or_none()
    if sequence is None:
        sequence = NumberSequence(
            tenant_id=tenant_id, entity=entity, prefix=prefix, last_value=0
        )
        db.add(sequence)

    sequence.last_value += 1
    await db.flush()
    return sequence.last_value


async def generate_code(
    db: AsyncSession,
    tenant_id: str,
    entity: str,
    fmt: str | None = None,
) -> str:
    """Generate the next code for an entity type.

    Args:
        db: Database session
        tenant_id: Owning tenant; sequences never cross tenants
        entity: One of "shipment", "inventory_unit", "container"
        fmt: Override the default format template

    Returns:
        Generated code string, e.g. "IC-0000042"
    """
    fmt = fmt or DEFAULT_FORMATS[entity]
    today_str = date.today().strftime("%Y%m%d")
    prefix = _build_prefix(fmt, today_str)

    seq_num = await _next_value(db, tenant_id, entity, prefix)
    return render_code(fmt, today_str, seq_num)
