"""User management routes --- profiles and the permission editor."""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.errors import PersistenceError
from holdingdash.middleware.auth import (
    client_ip,
    hash_password,
    load_enterprise_slugs,
    load_permission_snapshot,
    require_page,
    write_audit_log,
)
from holdingdash.rbac import VALID_ROLES, role_description
from holdingdash.services.permission_editor import (
    PermissionDraft,
    load_draft,
    save_user_permissions,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class PermissionDraftIn(BaseModel):
    app: dict[str, bool] = {}
    enterprises: list[uuid.UUID] = []
    modules: dict[uuid.UUID, dict[str, dict[str, bool]]] = {}

    def to_draft(self) -> PermissionDraft:
        return PermissionDraft.from_payload(self.app, self.enterprises, self.modules)


class EditorOperation(BaseModel):
    op: str
    page: str | None = None
    enterprise_id: uuid.UUID | None = None
    module: str | None = None
    action: str | None = None


class PermissionPreview(BaseModel):
    draft: PermissionDraftIn | None = None
    operations: list[EditorOperation] = []


class UserCreate(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    phone: str | None = None
    role: str = "employee"
    permissions: PermissionDraftIn | None = None


class UserUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    photo_url: str | None = None
    role: str | None = None
    is_active: bool | None = None
    password: str | None = None


def _check_role(role: str) -> None:
    if role not in VALID_ROLES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid role '{role}'. Valid roles: {', '.join(VALID_ROLES)}",
        )


def _check_email(email: str) -> str:
    email = email.strip().lower()
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise HTTPException(status_code=422, detail=f"Invalid email '{email}'")
    return email


def _user_out(u) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "phone": u.phone,
        "photo_url": u.photo_url,
        "role": u.role,
        "role_label": role_description(u.role),
        "is_active": u.is_active,
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


async def _get_profile(db: AsyncSession, user_id: uuid.UUID):
    from holdingdash.models.user import Profile

    result = await db.execute(select(Profile).where(Profile.id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


# ---------------------------------------------------------------------------
# USER MANAGEMENT
# ---------------------------------------------------------------------------


@router.get("")
async def list_users(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("users")),
):
    from holdingdash.models.user import Profile

    result = await db.execute(select(Profile).order_by(Profile.last_name, Profile.first_name))
    items = [_user_out(u) for u in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.get("/{user_id}")
async def get_user(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("users")),
):
    profile = await _get_profile(db, user_id)
    snapshot = await load_permission_snapshot(db, profile.id, profile.role)
    return {**_user_out(profile), "permissions": snapshot.to_dict()}


@router.post("", status_code=201)
async def create_user(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("users")),
):
    """Create a profile and, when given, persist its permission draft in the
    same transaction."""
    from holdingdash.models.user import Profile

    _check_role(body.role)
    email = _check_email(body.email)
    if not body.first_name.strip() or not body.last_name.strip():
        raise HTTPException(status_code=422, detail="First and last name are required")
    if len(body.password) < 6:
        raise HTTPException(status_code=422, detail="Password must be at least 6 characters")

    existing = await db.execute(select(Profile).where(Profile.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email already registered")

    draft = body.permissions.to_draft() if body.permissions else PermissionDraft()

    new_user = Profile(
        email=email,
        password_hash=hash_password(body.password),
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
        phone=body.phone,
        role=body.role,
    )
    try:
        db.add(new_user)
        await db.flush()
        await write_audit_log(
            db,
            user,
            action="user.create",
            resource_type="user",
            resource_id=str(new_user.id),
            details={"email": email, "role": body.role},
            ip_address=client_ip(request),
        )
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Could not create user: {e}") from e

    enterprises = await load_enterprise_slugs(db)
    grants = await save_user_permissions(db, new_user.id, draft, enterprises, actor=user)

    return {
        "id": str(new_user.id),
        "email": new_user.email,
        "role": new_user.role,
        "permissions": grants.to_dict(),
    }


@router.put("/{user_id}")
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("users")),
):
    target = await _get_profile(db, user_id)

    changes = {}

    if body.role is not None:
        _check_role(body.role)
        changes["role"] = body.role
        target.role = body.role

    for field in ("first_name", "last_name", "phone", "photo_url", "is_active"):
        value = getattr(body, field)
        if value is not None:
            changes[field] = value
            setattr(target, field, value)

    if body.password is not None:
        if len(body.password) < 6:
            raise HTTPException(status_code=422, detail="Password must be at least 6 characters")
        changes["password"] = "changed"
        target.password_hash = hash_password(body.password)

    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")

    await write_audit_log(
        db,
        user,
        action="user.update",
        resource_type="user",
        resource_id=str(user_id),
        details=changes,
        ip_address=client_ip(request),
    )
    await db.commit()

    return _user_out(target)


@router.delete("/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("users")),
):
    if user_id == user["user_id"]:
        raise HTTPException(status_code=422, detail="You cannot delete your own account")

    target = await _get_profile(db, user_id)
    email = target.email
    await db.delete(target)
    await write_audit_log(
        db,
        user,
        action="user.delete",
        resource_type="user",
        resource_id=str(user_id),
        details={"email": email},
        ip_address=client_ip(request),
    )
    await db.commit()
    return {"message": "User deleted", "id": str(user_id)}


# ---------------------------------------------------------------------------
# PERMISSION EDITOR
# ---------------------------------------------------------------------------


@router.get("/{user_id}/permissions")
async def get_user_permissions(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("users")),
):
    """Committed grants of a user, as an editable draft."""
    await _get_profile(db, user_id)
    draft = await load_draft(db, user_id)
    return draft.to_dict()


@router.put("/{user_id}/permissions")
async def put_user_permissions(
    user_id: uuid.UUID,
    body: PermissionDraftIn,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("users")),
):
    """Replace the user's three grant collections with the draft."""
    await _get_profile(db, user_id)
    enterprises = await load_enterprise_slugs(db)
    grants = await save_user_permissions(db, user_id, body.to_draft(), enterprises, actor=user)
    return {
        "user_id": str(user_id),
        "saved": grants.to_dict(),
        "refresh": True,
    }


@router.post("/{user_id}/permissions/preview")
async def preview_user_permissions(
    user_id: uuid.UUID,
    body: PermissionPreview,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("users")),
):
    """Apply editor operations to a draft and show what a save would persist."""
    await _get_profile(db, user_id)
    enterprises = await load_enterprise_slugs(db)

    draft = body.draft.to_draft() if body.draft else await load_draft(db, user_id)
    for operation in body.operations:
        draft.apply(operation.model_dump(), enterprises)

    return {
        "draft": draft.to_dict(),
        "grants": draft.compute_grants(enterprises).to_dict(),
    }
