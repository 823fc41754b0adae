"""Authentication routes and permission queries for the current user."""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.middleware.auth import (
    client_ip,
    create_access_token,
    get_current_permissions,
    get_current_user,
    revoke_token,
    user_to_dict,
    verify_password,
    write_audit_log,
)
from holdingdash.rbac import PermissionSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def _profile_out(user: dict, snapshot: PermissionSnapshot) -> dict:
    return {
        "id": str(user["user_id"]),
        "email": user["email"],
        "first_name": user["first_name"],
        "last_name": user["last_name"],
        "display_name": user["display_name"],
        "role": user["role"],
        **snapshot.to_dict(),
    }


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    from holdingdash.middleware.auth import load_permission_snapshot
    from holdingdash.models.user import Profile

    email = body.email.strip().lower()
    stmt = select(Profile).where(Profile.email == email, Profile.is_active == True)  # noqa: E712
    result = await db.execute(stmt)
    profile = result.scalar_one_or_none()

    if not profile or not verify_password(body.password, profile.password_hash):
        logger.warning(f"Failed login for {email} from {client_ip(request)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token = create_access_token(profile)
    user = user_to_dict(profile)
    snapshot = await load_permission_snapshot(db, profile.id, profile.role)

    await write_audit_log(
        db,
        user,
        "auth.login",
        resource_type="user",
        resource_id=str(profile.id),
        ip_address=client_ip(request),
    )
    await db.commit()

    return TokenResponse(access_token=token, user=_profile_out(user, snapshot))


@router.get("/me")
async def get_me(
    user: dict = Depends(get_current_user),
    snapshot: PermissionSnapshot = Depends(get_current_permissions),
):
    return _profile_out(user, snapshot)


@router.post("/refresh")
async def refresh_token(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    from holdingdash.models.user import Profile

    stmt = select(Profile).where(Profile.id == user["user_id"], Profile.is_active == True)  # noqa: E712
    result = await db.execute(stmt)
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=401, detail="User not found")

    token = create_access_token(profile)
    return {"access_token": token, "token_type": "bearer"}


@router.post("/logout")
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    if user.get("jti"):
        revoke_token(user["jti"], float(user.get("exp") or 0))

    await write_audit_log(
        db,
        user,
        "auth.logout",
        resource_type="user",
        resource_id=str(user["user_id"]),
        ip_address=client_ip(request),
    )
    await db.commit()
    return {"message": "Logged out"}


# ---------------------------------------------------------------------------
# Permission queries
# ---------------------------------------------------------------------------


@router.get("/me/pages/{page}")
async def check_page(
    page: str,
    snapshot: PermissionSnapshot = Depends(get_current_permissions),
):
    return {"page": page, "allowed": snapshot.can_access_page(page)}


@router.get("/me/can")
async def check_permission(
    module: str = Query(...),
    action: str = Query(...),
    enterprise_id: uuid.UUID | None = Query(None),
    snapshot: PermissionSnapshot = Depends(get_current_permissions),
):
    """``can(module, action, enterprise_id)`` for the current user.

    Omitting ``enterprise_id`` for an enterprise-scoped module is a 422.
    """
    return {
        "module": module,
        "action": action,
        "enterprise_id": str(enterprise_id) if enterprise_id else None,
        "allowed": snapshot.can(module, action, enterprise_id),
    }
