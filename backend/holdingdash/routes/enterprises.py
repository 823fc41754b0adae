"""Enterprise routes — accessible tenants and the module catalog."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.middleware.auth import get_current_permissions
from holdingdash.rbac import (
    ACTIONS,
    ENTERPRISE_MODULES,
    MODULES,
    PermissionSnapshot,
    modules_for_slug,
)

router = APIRouter(prefix="/api/enterprises", tags=["enterprises"])


@router.get("")
async def list_enterprises(
    db: AsyncSession = Depends(get_db),
    snapshot: PermissionSnapshot = Depends(get_current_permissions),
):
    """Enterprises the current user may see, with their effective module grants."""
    from holdingdash.models.enterprise import Enterprise

    result = await db.execute(select(Enterprise).order_by(Enterprise.name))
    enterprises = result.scalars().all()

    items = []
    for e in enterprises:
        if not snapshot.can_access_enterprise(e.id):
            continue
        items.append({
            "id": str(e.id),
            "name": e.name,
            "slug": e.slug,
            "description": e.description,
            "logo_url": e.logo_url,
            "is_active": e.is_active,
            "modules": {
                module: {action: snapshot.can(module, action, e.id) for action in ACTIONS}
                for module in modules_for_slug(e.slug)
            },
        })

    return {"items": items, "total": len(items)}


@router.get("/modules")
async def module_catalog(
    _snapshot: PermissionSnapshot = Depends(get_current_permissions),
):
    return {
        "modules": [{"id": module_id, "label": label} for module_id, label in MODULES],
        "actions": list(ACTIONS),
        "enterprises": {slug: modules_for_slug(slug) for slug in ENTERPRISE_MODULES},
    }
