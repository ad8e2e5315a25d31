"""Granular permission system for receiving RBAC.

Design:
  - Each role has a set of DEFAULT permissions (defined here, not in DB).
  - The identity provider may grant/revoke individual permissions per user
    via a {perm: True/False} overrides dict.
  - `resolve_permissions(role, custom_permissions)` computes the effective
    permission set; it is embedded in the JWT so checks are token-only.

Permission naming: `<resource>.<action>`
  Resources: shipment, receiving, exceptions, discrepancy, account
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    # Shipments
    "shipment.read",
    "shipment.write",          # create, autosave fields, complete dock intake, confirm

    # Stage transitions
    "receiving.write",         # edit stage 2 line items, close receiving
    "receiving.override",      # close stage 2 without line items (admin)

    # Exceptions & discrepancies
    "exceptions.read",
    "exceptions.write",        # select / deselect / resolve / reopen
    "discrepancy.write",

    # Shipment-level exception handling
    "shipment.flag",           # mis-ship / return-to-sender
    "account.resolve",         # assign a real account to an unidentified shipment
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "administrator": ALL_PERMISSIONS.copy(),

    "supervisor": {
        "shipment.read", "shipment.write",
        "receiving.write",
        "exceptions.read", "exceptions.write",
        "discrepancy.write",
        "shipment.flag",
    },

    "operator": {
        "shipment.read", "shipment.write",
        "receiving.write",
        "exceptions.read", "exceptions.write",
        "discrepancy.write",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a user.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(user_permissions: list[str] | set[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions
