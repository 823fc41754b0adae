"""Administration routes --- audit trail and role catalog."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.middleware.auth import require_role
from holdingdash.rbac import ADMIN_ROLE, VALID_ROLES, role_description

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/roles")
async def list_roles(
    _user: dict = Depends(require_role(ADMIN_ROLE)),
):
    return {
        "roles": [{"role": role, "description": role_description(role)} for role in VALID_ROLES],
    }


@router.get("/audit-log")
async def list_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    action: str | None = Query(None),
    email: str | None = Query(None),
    resource_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_role(ADMIN_ROLE)),
):
    """Paginated audit trail."""
    from holdingdash.models.permission import AuditLog

    # Build base query
    stmt = select(AuditLog)
    count_stmt = select(func.count()).select_from(AuditLog)

    if action:
        stmt = stmt.where(AuditLog.action == action)
        count_stmt = count_stmt.where(AuditLog.action == action)
    if email:
        stmt = stmt.where(AuditLog.email == email)
        count_stmt = count_stmt.where(AuditLog.email == email)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
        count_stmt = count_stmt.where(AuditLog.resource_type == resource_type)

    total = (await db.execute(count_stmt)).scalar()

    # Paginate
    offset = (page - 1) * page_size
    stmt = stmt.order_by(AuditLog.created_at.desc()).offset(offset).limit(page_size)
    entries = (await db.execute(stmt)).scalars().all()

    items = [
        {
            "id": str(e.id),
            "user_id": str(e.user_id) if e.user_id else None,
            "email": e.email,
            "action": e.action,
            "resource_type": e.resource_type,
            "resource_id": e.resource_id,
            "details": e.details,
            "ip_address": e.ip_address,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in entries
    ]

    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
    }
