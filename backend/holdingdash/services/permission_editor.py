"""Permission Editor — draft grants for one user and the replace-all save.

A ``PermissionDraft`` is the editable copy of a user's three grant
collections.  Toggling never touches the database; ``compute_grants``
derives what a save would persist, and ``save_user_permissions`` writes it
in a single transaction.

Module grants left behind by an unchecked enterprise, or by switching the
enterprise page off, stay in the draft.  Only the save decides what is
persisted.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.errors import PersistenceError, ValidationError
from holdingdash.rbac import (
    ACTIONS,
    FULL_GRANT,
    MODULE_IDS,
    NO_GRANT,
    PAGES,
    READ_ONLY_GRANT,
    AppPermissions,
    EnterpriseScope,
    ModuleGrant,
    modules_for_slug,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class PermissionDraft:
    app: AppPermissions = dataclasses.field(default_factory=AppPermissions)
    enterprises: set[uuid.UUID] = dataclasses.field(default_factory=set)
    modules: dict[uuid.UUID, dict[str, ModuleGrant]] = dataclasses.field(default_factory=dict)
    expanded: set[uuid.UUID] = dataclasses.field(default_factory=set)

    @classmethod
    def from_committed(
        cls,
        app_row,
        access_rows: Iterable,
        module_rows: Iterable,
    ) -> PermissionDraft:
        """Start editing from the rows currently stored for a user."""
        draft = cls(app=AppPermissions.from_row(app_row) if app_row is not None else AppPermissions())
        draft.enterprises = {row.enterprise_id for row in access_rows}
        for row in module_rows:
            draft.modules.setdefault(row.enterprise_id, {})[row.module] = ModuleGrant.from_row(row)
        return draft

    @classmethod
    def from_payload(
        cls,
        app: Mapping[str, bool] | None = None,
        enterprises: Iterable[uuid.UUID] = (),
        modules: Mapping[uuid.UUID, Mapping[str, Mapping[str, bool]]] | None = None,
    ) -> PermissionDraft:
        app = app or {}
        unknown_pages = set(app) - set(PAGES)
        if unknown_pages:
            raise ValidationError(f"Unknown page(s): {', '.join(sorted(unknown_pages))}")

        draft = cls(app=AppPermissions(**{page: bool(app.get(page, False)) for page in PAGES}))
        draft.enterprises = set(enterprises)
        for enterprise_id, grants in (modules or {}).items():
            for module, flags in grants.items():
                if module not in MODULE_IDS:
                    raise ValidationError(f"Unknown module '{module}'")
                unknown_actions = set(flags) - set(ACTIONS)
                if unknown_actions:
                    raise ValidationError(f"Unknown action(s): {', '.join(sorted(unknown_actions))}")
                draft.modules.setdefault(enterprise_id, {})[module] = ModuleGrant(
                    **{action: bool(flags.get(action, False)) for action in ACTIONS}
                )
        return draft

    def copy(self) -> PermissionDraft:
        return PermissionDraft(
            app=self.app,
            enterprises=set(self.enterprises),
            modules={ent: dict(grants) for ent, grants in self.modules.items()},
            expanded=set(self.expanded),
        )

    def grant(self, enterprise_id: uuid.UUID, module: str) -> ModuleGrant:
        return self.modules.get(enterprise_id, {}).get(module, NO_GRANT)

    # ------ transitions ------

    @staticmethod
    def _require_enterprise(enterprise_id: uuid.UUID | None) -> None:
        if enterprise_id is None:
            raise ValidationError("This operation requires an enterprise id")

    def toggle_page(self, page: str) -> None:
        if page not in PAGES:
            raise ValidationError(f"Unknown page '{page}'")
        self.app = dataclasses.replace(self.app, **{page: not getattr(self.app, page)})

    def toggle_enterprise(self, enterprise_id: uuid.UUID, slug: str | None) -> None:
        """Check or uncheck membership.

        Checking seeds full CRUD for every module the enterprise offers and
        expands its panel.  Unchecking only drops the membership.
        """
        self._require_enterprise(enterprise_id)
        if enterprise_id in self.enterprises:
            self.enterprises.discard(enterprise_id)
            return
        self.enterprises.add(enterprise_id)
        grants = self.modules.setdefault(enterprise_id, {})
        for module in modules_for_slug(slug):
            grants[module] = FULL_GRANT
        self.expanded.add(enterprise_id)

    def toggle_expanded(self, enterprise_id: uuid.UUID) -> None:
        self._require_enterprise(enterprise_id)
        if enterprise_id in self.expanded:
            self.expanded.discard(enterprise_id)
        else:
            self.expanded.add(enterprise_id)

    def toggle_action(self, enterprise_id: uuid.UUID, module: str, action: str) -> None:
        self._require_enterprise(enterprise_id)
        if module not in MODULE_IDS:
            raise ValidationError(f"Unknown module '{module}'")
        if action not in ACTIONS:
            raise ValidationError(f"Unknown action '{action}'")
        current = self.grant(enterprise_id, module)
        self.modules.setdefault(enterprise_id, {})[module] = dataclasses.replace(
            current, **{action: not getattr(current, action)}
        )

    def toggle_all(self, enterprise_id: uuid.UUID, module: str) -> None:
        """Set every action to the opposite of "all four currently on"."""
        self._require_enterprise(enterprise_id)
        if module not in MODULE_IDS:
            raise ValidationError(f"Unknown module '{module}'")
        value = not self.grant(enterprise_id, module).all()
        self.modules.setdefault(enterprise_id, {})[module] = ModuleGrant(
            **{action: value for action in ACTIONS}
        )

    def apply(self, operation: Mapping[str, Any], slugs: Mapping[uuid.UUID, str]) -> None:
        """Apply one serialized transition (``{"op": ..., ...}``)."""
        op = operation.get("op")
        enterprise_id = operation.get("enterprise_id")
        if op == "toggle_page":
            self.toggle_page(operation.get("page", ""))
        elif op == "toggle_enterprise":
            self.toggle_enterprise(enterprise_id, slugs.get(enterprise_id))
        elif op == "toggle_expanded":
            self.toggle_expanded(enterprise_id)
        elif op == "toggle_action":
            self.toggle_action(enterprise_id, operation.get("module", ""), operation.get("action", ""))
        elif op == "toggle_all":
            self.toggle_all(enterprise_id, operation.get("module", ""))
        else:
            raise ValidationError(f"Unknown editor operation '{op}'")

    # ------ save derivation ------

    def compute_grants(self, enterprises: Mapping[uuid.UUID, str]) -> PermissionGrants:
        """Derive the rows a save persists, given every enterprise (id -> slug)."""
        scope = EnterpriseScope.for_pages(
            self.app, (e for e in self.enterprises if e in enterprises)
        )

        modules: dict[tuple[uuid.UUID, str], ModuleGrant] = {}
        if not scope.is_all_read_only:
            for enterprise_id in enterprises:
                if enterprise_id not in scope.enterprise_ids:
                    continue
                for module in modules_for_slug(enterprises[enterprise_id]):
                    grant = self.grant(enterprise_id, module)
                    if grant.any():
                        modules[(enterprise_id, module)] = grant

        return PermissionGrants(app=self.app, scope=scope, modules=modules)

    def to_dict(self) -> dict:
        return {
            "app": {page: getattr(self.app, page) for page in PAGES},
            "enterprises": sorted(str(e) for e in self.enterprises),
            "modules": {
                str(enterprise_id): {
                    module: {action: grant.allows(action) for action in ACTIONS}
                    for module, grant in grants.items()
                }
                for enterprise_id, grants in self.modules.items()
            },
            "expanded": sorted(str(e) for e in self.expanded),
        }


@dataclasses.dataclass(frozen=True)
class PermissionGrants:
    """What a save writes: the app row, the scope and the module rows."""

    app: AppPermissions
    scope: EnterpriseScope
    modules: Mapping[tuple[uuid.UUID, str], ModuleGrant]

    def effective_grant(self, enterprise_id: uuid.UUID, module: str, slug: str | None) -> ModuleGrant:
        if module not in modules_for_slug(slug):
            return NO_GRANT
        if self.scope.is_all_read_only:
            return READ_ONLY_GRANT
        return self.modules.get((enterprise_id, module), NO_GRANT)

    def to_dict(self) -> dict:
        return {
            "app": self.app.to_columns(),
            "scope": self.scope.kind.value,
            "enterprises": sorted(str(e) for e in self.scope.enterprise_ids),
            "modules": [
                {"enterprise_id": str(enterprise_id), "module": module, **grant.to_columns()}
                for (enterprise_id, module), grant in self.modules.items()
            ],
        }


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def load_draft(db: AsyncSession, user_id: uuid.UUID) -> PermissionDraft:
    from holdingdash.models.permission import (
        UserAppPermission,
        UserEnterpriseAccess,
        UserModulePermission,
    )

    app_row = (await db.execute(
        select(UserAppPermission).where(UserAppPermission.user_id == user_id)
    )).scalar_one_or_none()
    access_rows = (await db.execute(
        select(UserEnterpriseAccess).where(UserEnterpriseAccess.user_id == user_id)
    )).scalars().all()
    module_rows = (await db.execute(
        select(UserModulePermission).where(UserModulePermission.user_id == user_id)
    )).scalars().all()
    return PermissionDraft.from_committed(app_row, access_rows, module_rows)


async def write_grants(db: AsyncSession, user_id: uuid.UUID, grants: PermissionGrants) -> None:
    """Replace the three grant collections of *user_id*.  Flushes, never commits."""
    from holdingdash.models.permission import (
        UserAppPermission,
        UserEnterpriseAccess,
        UserModulePermission,
    )

    # 1. app permissions (upsert)
    app_row = (await db.execute(
        select(UserAppPermission).where(UserAppPermission.user_id == user_id)
    )).scalar_one_or_none()
    if app_row is None:
        db.add(UserAppPermission(user_id=user_id, **grants.app.to_columns()))
    else:
        for column, value in grants.app.to_columns().items():
            setattr(app_row, column, value)

    # 2. enterprise membership
    await db.execute(delete(UserEnterpriseAccess).where(UserEnterpriseAccess.user_id == user_id))
    for enterprise_id in sorted(grants.scope.enterprise_ids, key=str):
        db.add(UserEnterpriseAccess(user_id=user_id, enterprise_id=enterprise_id))

    # 3. module permissions
    await db.execute(delete(UserModulePermission).where(UserModulePermission.user_id == user_id))
    for (enterprise_id, module), grant in grants.modules.items():
        db.add(UserModulePermission(
            user_id=user_id,
            enterprise_id=enterprise_id,
            module=module,
            **grant.to_columns(),
        ))

    await db.flush()


async def save_user_permissions(
    db: AsyncSession,
    user_id: uuid.UUID,
    draft: PermissionDraft,
    enterprises: Mapping[uuid.UUID, str],
    actor: dict[str, Any] | None = None,
    commit: bool = True,
) -> PermissionGrants:
    """Persist *draft* for *user_id* with replace-all semantics.

    All three collections are written in one transaction.  On failure the
    transaction is rolled back and ``PersistenceError`` is raised.  The
    returned grants tell the caller which snapshot to refresh.
    """
    from holdingdash.middleware.auth import write_audit_log

    grants = draft.compute_grants(enterprises)

    try:
        await write_grants(db, user_id, grants)
        await write_audit_log(
            db,
            actor,
            "permissions.save",
            resource_type="user",
            resource_id=str(user_id),
            details={
                "app": grants.app.to_columns(),
                "scope": grants.scope.kind.value,
                "enterprises": len(grants.scope.enterprise_ids),
                "modules": len(grants.modules),
            },
        )
        if commit:
            await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Permission save for user {user_id} failed: {e}")
        raise PersistenceError(f"Could not save permissions: {e}") from e

    logger.info(
        f"Permissions saved for user {user_id}: scope={grants.scope.kind.value} "
        f"enterprises={len(grants.scope.enterprise_ids)} modules={len(grants.modules)}"
    )
    return grants
