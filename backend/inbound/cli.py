"""Management CLI for receiving setup.

Usage:
    python -m inbound.cli ensure-unidentified <tenant_id>
        Create the tenant's UNIDENTIFIED SHIPMENT account if missing
    python -m inbound.cli add-receiving-location <tenant_id> <warehouse_id> <code> [account_id]
        Register a default receiving location (warehouse-wide or per account)
    python -m inbound.cli list-locations <tenant_id>
"""

import sys

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from inbound.config import settings
from inbound.models.account import Account
from inbound.models.location import Location


def get_engine():
    return create_engine(settings.database_url_sync)


def ensure_unidentified(tenant_id: str):
    with Session(get_engine()) as session:
        existing = session.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.is_unidentified == True,  # noqa: E712
            )
        ).scalars().first()
        if existing:
            print(f"  Exists: {existing.name} ({existing.id})")
            return

        account = Account(
            tenant_id=tenant_id,
            name=settings.unidentified_account_name,
            is_unidentified=True,
        )
        session.add(account)
        session.commit()
        print(f"  Created: {account.name} ({account.id})")


def add_receiving_location(tenant_id: str, warehouse_id: str, code: str, account_id: str | None = None):
    with Session(get_engine()) as session:
        location = Location(
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            account_id=account_id,
            code=code,
            is_receiving_default=True,
        )
        session.add(location)
        session.commit()
        scope = f"account {account_id}" if account_id else "warehouse default"
        print(f"  Added {code} ({scope}): {location.id}")


def list_locations(tenant_id: str):
    with Session(get_engine()) as session:
        rows = session.execute(
            select(Location)
            .where(Location.tenant_id == tenant_id)
            .order_by(Location.warehouse_id, Location.code)
        ).scalars().all()
        for loc in rows:
            flag = " [receiving]" if loc.is_receiving_default else ""
            scope = loc.account_id or "-"
            print(f"  {loc.warehouse_id}  {loc.code:<12} account={scope}{flag}")
        print(f"\n{len(rows)} location(s)")


USAGE = "Usage: python -m inbound.cli [ensure-unidentified|add-receiving-location|list-locations] ..."


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]
    if cmd == "ensure-unidentified" and len(args) == 1:
        ensure_unidentified(args[0])
    elif cmd == "add-receiving-location" and len(args) in (3, 4):
        add_receiving_location(*args)
    elif cmd == "list-locations" and len(args) == 1:
        list_locations(args[0])
    else:
        print(USAGE)
