"""FastAPI dependencies for authentication and authorization.

Users live in the identity provider; the token carries everything the
receiving service needs, so no user table is read here.

Dependencies:
  get_current_principal    → decode JWT, return Principal
  require_permission(...)  → restrict to specific granular permissions
"""

from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from inbound.auth.jwt import decode_token
from inbound.auth.permissions import has_permission

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, built from JWT claims."""
    user_id: str
    tenant_id: str
    role: str
    full_name: str = ""
    permissions: frozenset[str] = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)


# ── Core principal dependency ───────────────────────────────

async def get_current_principal(
    token: str = Depends(oauth2_scheme),
) -> Principal:
    """Decode the JWT and return the caller's Principal."""
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    tenant_id: str | None = payload.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No tenant context in token",
        )

    return Principal(
        user_id=user_id,
        tenant_id=tenant_id,
        role=payload.get("role", ""),
        full_name=payload.get("name") or user_id,
        permissions=frozenset(payload.get("permissions", [])),
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory: restrict to callers who hold ALL listed permissions.

    Usage:
        @router.post("/{shipment_id}/close")
        async def close(principal: Principal = Depends(require_permission("receiving.write"))):
            ...
    """
    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        missing = [p for p in perms if not principal.can(p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return principal

    return _check
