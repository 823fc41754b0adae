"""Authentication and authorization middleware for HoldingDash.

Provides:
- Password hashing (bcrypt)
- JWT creation / validation / revocation
- ``get_current_user()`` dependency
- ``load_permission_snapshot()`` and the ``require_page()``,
  ``require_module()`` and ``require_role()`` dependency factories
- Audit-log helper
"""
from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.config import settings
from holdingdash.database import get_db
from holdingdash.errors import ValidationError
from holdingdash.rbac import PermissionSnapshot

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a plain-text password against a bcrypt hash."""
    return _pwd_context.verify(plain, hashed)


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of a plain-text password."""
    return _pwd_context.hash(plain)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(profile) -> str:
    """Create a signed JWT with *sub* (email), *user_id*, *role*, *jti* and *exp*."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    payload = {
        "sub": profile.email,
        "user_id": str(profile.id),
        "role": profile.role,
        "jti": uuid.uuid4().hex,
        "exp": expire,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT.  Raises ``JWTError`` when invalid or expired."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


# ---------------------------------------------------------------------------
# Revocation list (in-process, until natural expiry)
# ---------------------------------------------------------------------------

_revoked_lock = threading.Lock()
_revoked_tokens: dict[str, float] = {}


def revoke_token(jti: str, exp: float) -> None:
    now = datetime.now(timezone.utc).timestamp()
    with _revoked_lock:
        for key in [k for k, until in _revoked_tokens.items() if until <= now]:
            del _revoked_tokens[key]
        _revoked_tokens[jti] = exp


def is_token_revoked(jti: str | None) -> bool:
    if jti is None:
        return False
    with _revoked_lock:
        return jti in _revoked_tokens


# ---------------------------------------------------------------------------
# OAuth2 scheme (tells Swagger UI where the login endpoint is)
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


def user_to_dict(profile, jti: str | None = None, exp: float | None = None) -> dict[str, Any]:
    return {
        "user_id": profile.id,
        "email": profile.email,
        "role": profile.role,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "display_name": profile.full_name,
        "jti": jti,
        "exp": exp,
    }


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Decode the JWT, look up the profile, and return a dict describing the
    authenticated user.

    Raises ``HTTPException(401)`` when the token is invalid, revoked, or the
    user cannot be found.
    """
    from holdingdash.models.user import Profile

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        email: str | None = payload.get("sub")
        if email is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    if is_token_revoked(payload.get("jti")):
        raise credentials_exception

    result = await db.execute(select(Profile).where(Profile.email == email))
    profile: Profile | None = result.scalar_one_or_none()

    if profile is None:
        raise credentials_exception

    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user_to_dict(profile, payload.get("jti"), payload.get("exp"))


# ---------------------------------------------------------------------------
# Permission snapshot
# ---------------------------------------------------------------------------


async def load_enterprise_slugs(db: AsyncSession) -> dict[uuid.UUID, str]:
    """Every enterprise id mapped to its slug, ordered by name."""
    from holdingdash.models.enterprise import Enterprise

    result = await db.execute(select(Enterprise.id, Enterprise.slug).order_by(Enterprise.name))
    return {row.id: row.slug for row in result.all()}


async def load_permission_snapshot(
    db: AsyncSession,
    user_id: uuid.UUID,
    role: str,
) -> PermissionSnapshot:
    """Load the three grant collections of a user into a ``PermissionSnapshot``."""
    from holdingdash.models.permission import (
        UserAppPermission,
        UserEnterpriseAccess,
        UserModulePermission,
    )

    app_row = (await db.execute(
        select(UserAppPermission).where(UserAppPermission.user_id == user_id)
    )).scalar_one_or_none()
    module_rows = (await db.execute(
        select(UserModulePermission).where(UserModulePermission.user_id == user_id)
    )).scalars().all()
    access_rows = (await db.execute(
        select(UserEnterpriseAccess).where(UserEnterpriseAccess.user_id == user_id)
    )).scalars().all()
    enterprises = await load_enterprise_slugs(db)

    return PermissionSnapshot.from_rows(role, app_row, module_rows, access_rows, enterprises)


async def get_current_permissions(
    current_user: dict[str, Any] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PermissionSnapshot:
    return await load_permission_snapshot(db, current_user["user_id"], current_user["role"])


# ---------------------------------------------------------------------------
# Permission-checking dependency factories
# ---------------------------------------------------------------------------


def require_page(page: str):
    """Return a FastAPI dependency that ensures the authenticated user may open
    *page*.  The permission snapshot is attached to the returned user dict
    under ``"permissions"``.

    Usage::

        @router.get("/api/dashboard")
        async def dashboard(user: dict = Depends(require_page("dashboard"))):
            ...
    """

    async def _check_page(
        current_user: dict[str, Any] = Depends(get_current_user),
        snapshot: PermissionSnapshot = Depends(get_current_permissions),
    ) -> dict[str, Any]:
        if not snapshot.can_access_page(page):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access to page '{page}' is not granted.",
            )
        return {**current_user, "permissions": snapshot}

    return _check_page


def require_module(module: str, action: str):
    """Return a dependency checking *action* on *module* for the enterprise
    named by the ``enterprise_id`` path parameter."""

    async def _check_module(
        enterprise_id: uuid.UUID,
        current_user: dict[str, Any] = Depends(get_current_user),
        snapshot: PermissionSnapshot = Depends(get_current_permissions),
    ) -> dict[str, Any]:
        if enterprise_id not in snapshot.enterprises:
            raise HTTPException(status_code=404, detail="Enterprise not found")
        try:
            allowed = snapshot.can_access_enterprise(enterprise_id) and snapshot.can(
                module, action, enterprise_id
            )
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.message)
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {module}.{action} on this enterprise.",
            )
        return {**current_user, "permissions": snapshot}

    return _check_module


def require_role(*roles: str):
    """Return a FastAPI dependency that ensures the authenticated user holds one
    of the specified *roles*."""
    allowed = set(roles)

    async def _check_role(
        current_user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        if current_user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user['role']}' is not permitted. "
                f"Required: {', '.join(sorted(allowed))}.",
            )
        return current_user

    return _check_role


# ---------------------------------------------------------------------------
# Audit-log helper
# ---------------------------------------------------------------------------


def client_ip(request: Request | None) -> str | None:
    if request is None or request.client is None:
        return None
    return request.client.host


async def write_audit_log(
    db: AsyncSession,
    user: dict[str, Any] | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    """Add an audit row to the current transaction (flushed, not committed)."""
    from holdingdash.models.permission import AuditLog

    user_id = None
    email = None
    if user:
        uid = user.get("user_id")
        if uid:
            user_id = uid if isinstance(uid, uuid.UUID) else uuid.UUID(str(uid))
        email = user.get("email")

    db.add(AuditLog(
        user_id=user_id,
        email=email,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
    ))
    await db.flush()
