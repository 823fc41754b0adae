"""
Permission editor — draft transitions, save derivation, transactional save.
"""
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from holdingdash.errors import PersistenceError, ValidationError
from holdingdash.middleware.auth import load_permission_snapshot
from holdingdash.rbac import (
    ACTIONS,
    FULL_GRANT,
    NO_GRANT,
    AppPermissions,
    ModuleGrant,
    ScopeKind,
    modules_for_slug,
)
from holdingdash.services.permission_editor import PermissionDraft, save_user_permissions

DEEP = uuid.uuid4()
DUBAI = uuid.uuid4()
OMPLEO = uuid.uuid4()
SLUGS = {DEEP: "deep-closer", DUBAI: "dubai", OMPLEO: "ompleo"}


class TestTransitions:

    def test_toggle_page_flips_only_that_page(self):
        draft = PermissionDraft()
        draft.toggle_page("users")
        assert draft.app == AppPermissions(users=True)
        draft.toggle_page("users")
        assert draft.app == AppPermissions()

    def test_toggle_unknown_page_rejected(self):
        with pytest.raises(ValidationError):
            PermissionDraft().toggle_page("reports")

    def test_checking_enterprise_seeds_full_grants_and_expands(self):
        draft = PermissionDraft()
        draft.toggle_enterprise(DEEP, "deep-closer")

        assert DEEP in draft.enterprises
        assert DEEP in draft.expanded
        assert set(draft.modules[DEEP]) == set(modules_for_slug("deep-closer"))
        assert all(g == FULL_GRANT for g in draft.modules[DEEP].values())

    def test_seeding_only_covers_the_enterprise_catalog(self):
        draft = PermissionDraft()
        draft.toggle_enterprise(DUBAI, "dubai")
        assert set(draft.modules[DUBAI]) == {"dashboard", "clients", "expenses_professional"}

    def test_unchecking_keeps_module_grants_in_draft(self):
        draft = PermissionDraft()
        draft.toggle_enterprise(DEEP, "deep-closer")
        draft.toggle_enterprise(DEEP, "deep-closer")

        assert DEEP not in draft.enterprises
        assert draft.grant(DEEP, "salaries") == FULL_GRANT

    def test_page_off_keeps_module_grants_in_draft(self):
        draft = PermissionDraft()
        draft.toggle_page("entreprises")
        draft.toggle_enterprise(OMPLEO, "ompleo")
        draft.toggle_page("entreprises")
        assert draft.grant(OMPLEO, "employees") == FULL_GRANT

    def test_toggle_expanded(self):
        draft = PermissionDraft()
        draft.toggle_expanded(DEEP)
        assert DEEP in draft.expanded
        draft.toggle_expanded(DEEP)
        assert DEEP not in draft.expanded

    def test_toggle_action_flips_one_flag(self):
        draft = PermissionDraft()
        draft.toggle_action(DEEP, "clients", "update")
        assert draft.grant(DEEP, "clients") == ModuleGrant(update=True)
        draft.toggle_action(DEEP, "clients", "update")
        assert draft.grant(DEEP, "clients") == NO_GRANT

    @pytest.mark.parametrize("module,action", [("payroll", "read"), ("clients", "export")])
    def test_toggle_action_rejects_unknown_names(self, module, action):
        with pytest.raises(ValidationError):
            PermissionDraft().toggle_action(DEEP, module, action)

    def test_toggle_all_from_partial_turns_everything_on(self):
        draft = PermissionDraft()
        draft.toggle_action(DEEP, "clients", "read")
        draft.toggle_all(DEEP, "clients")
        assert draft.grant(DEEP, "clients") == FULL_GRANT

    def test_toggle_all_from_full_turns_everything_off(self):
        draft = PermissionDraft()
        draft.toggle_enterprise(DEEP, "deep-closer")
        draft.toggle_all(DEEP, "clients")
        assert draft.grant(DEEP, "clients") == NO_GRANT

    def test_toggle_all_from_empty_turns_everything_on(self):
        draft = PermissionDraft()
        draft.toggle_all(DEEP, "equipment")
        assert draft.grant(DEEP, "equipment").all()

    def test_apply_serialized_operations(self):
        draft = PermissionDraft()
        draft.apply({"op": "toggle_page", "page": "entreprises"}, SLUGS)
        draft.apply({"op": "toggle_enterprise", "enterprise_id": DUBAI}, SLUGS)
        draft.apply({"op": "toggle_action", "enterprise_id": DUBAI, "module": "clients", "action": "delete"}, SLUGS)
        assert draft.app.entreprises
        assert draft.grant(DUBAI, "clients") == ModuleGrant(read=True, create=True, update=True)

    @pytest.mark.parametrize("operation", [
        {"op": "toggle_enterprise"},
        {"op": "toggle_expanded"},
        {"op": "toggle_action", "module": "clients", "action": "read"},
        {"op": "toggle_all", "module": "clients"},
    ])
    def test_enterprise_operations_require_an_enterprise(self, operation):
        draft = PermissionDraft()
        with pytest.raises(ValidationError):
            draft.apply(operation, SLUGS)
        assert draft.enterprises == set()
        assert draft.modules == {}
        assert draft.expanded == set()

    def test_apply_unknown_operation_rejected(self):
        with pytest.raises(ValidationError):
            PermissionDraft().apply({"op": "grant_everything"}, SLUGS)

    def test_from_payload_rejects_unknown_names(self):
        with pytest.raises(ValidationError):
            PermissionDraft.from_payload({"reports": True})
        with pytest.raises(ValidationError):
            PermissionDraft.from_payload(modules={DEEP: {"payroll": {"read": True}}})

    def test_copy_is_independent(self):
        draft = PermissionDraft()
        draft.toggle_enterprise(DEEP, "deep-closer")
        clone = draft.copy()
        clone.toggle_all(DEEP, "clients")
        assert draft.grant(DEEP, "clients") == FULL_GRANT


class TestComputeGrants:

    def test_enterprise_page_persists_chosen_membership(self):
        draft = PermissionDraft(app=AppPermissions(entreprises=True))
        draft.toggle_enterprise(DEEP, "deep-closer")

        grants = draft.compute_grants(SLUGS)
        assert grants.scope.kind is ScopeKind.EXPLICIT
        assert grants.scope.enterprise_ids == {DEEP}
        assert {m for (_, m) in grants.modules} == set(modules_for_slug("deep-closer"))

    def test_all_false_rows_are_dropped(self):
        draft = PermissionDraft(app=AppPermissions(entreprises=True))
        draft.toggle_enterprise(DEEP, "deep-closer")
        draft.toggle_all(DEEP, "salaries")
        assert (DEEP, "salaries") not in draft.compute_grants(SLUGS).modules

    def test_module_outside_catalog_is_not_written(self):
        draft = PermissionDraft.from_payload(
            {"entreprises": True},
            [DUBAI],
            {DUBAI: {"salaries": {a: True for a in ACTIONS}, "clients": {"read": True}}},
        )
        grants = draft.compute_grants(SLUGS)
        assert (DUBAI, "salaries") not in grants.modules
        assert grants.modules[(DUBAI, "clients")] == ModuleGrant(read=True)

    def test_unchecked_enterprise_grants_are_discarded(self):
        draft = PermissionDraft(app=AppPermissions(entreprises=True))
        draft.toggle_enterprise(DEEP, "deep-closer")
        draft.toggle_enterprise(DEEP, "deep-closer")
        grants = draft.compute_grants(SLUGS)
        assert grants.scope.enterprise_ids == frozenset()
        assert grants.modules == {}

    def test_dashboard_only_becomes_all_read_only(self):
        draft = PermissionDraft(app=AppPermissions(dashboard=True))
        draft.toggle_enterprise(DEEP, "deep-closer")

        grants = draft.compute_grants(SLUGS)
        assert grants.scope.is_all_read_only
        assert grants.modules == {}
        for enterprise_id, slug in SLUGS.items():
            for module in modules_for_slug(slug):
                assert grants.effective_grant(enterprise_id, module, slug) == ModuleGrant(read=True)
        assert grants.effective_grant(DUBAI, "salaries", "dubai") == NO_GRANT

    def test_no_page_means_no_enterprise(self):
        draft = PermissionDraft(app=AppPermissions(personal=True))
        draft.toggle_enterprise(DEEP, "deep-closer")
        grants = draft.compute_grants(SLUGS)
        assert grants.scope.enterprise_ids == frozenset()
        assert grants.modules == {}

    def test_deleted_enterprise_is_skipped(self):
        ghost = uuid.uuid4()
        draft = PermissionDraft.from_payload({"entreprises": True}, [ghost, DEEP])
        assert draft.compute_grants(SLUGS).scope.enterprise_ids == {DEEP}


class TestSaveUserPermissions:

    async def test_save_then_snapshot(self, db, member, enterprise_slugs, enterprises):
        deep = enterprises["deep-closer"].id
        draft = PermissionDraft(app=AppPermissions(entreprises=True, users=True))
        draft.toggle_enterprise(deep, "deep-closer")
        draft.toggle_all(deep, "salaries")

        await save_user_permissions(db, member.id, draft, enterprise_slugs)

        snap = await load_permission_snapshot(db, member.id, member.role)
        assert snap.can_access_page("users")
        assert not snap.can_access_page("dashboard")
        assert snap.accessible_enterprise_ids() == [deep]
        assert snap.can("employees", "delete", deep)
        assert not snap.can("salaries", "read", deep)

    async def test_save_replaces_previous_grants(self, db, member, enterprise_slugs, enterprises):
        deep = enterprises["deep-closer"].id
        ompleo = enterprises["ompleo"].id

        first = PermissionDraft(app=AppPermissions(entreprises=True))
        first.toggle_enterprise(deep, "deep-closer")
        await save_user_permissions(db, member.id, first, enterprise_slugs)

        second = PermissionDraft(app=AppPermissions(entreprises=True))
        second.toggle_enterprise(ompleo, "ompleo")
        await save_user_permissions(db, member.id, second, enterprise_slugs)

        snap = await load_permission_snapshot(db, member.id, member.role)
        assert snap.accessible_enterprise_ids() == [ompleo]
        assert not snap.can("employees", "read", deep)
        assert not [key for key in snap.grants if key[0] == deep]

    async def test_dashboard_only_save_grants_read_everywhere(self, db, member, enterprise_slugs):
        draft = PermissionDraft(app=AppPermissions(dashboard=True))
        await save_user_permissions(db, member.id, draft, enterprise_slugs)

        snap = await load_permission_snapshot(db, member.id, member.role)
        for enterprise_id, slug in enterprise_slugs.items():
            assert snap.can_access_enterprise(enterprise_id)
            for module in modules_for_slug(slug):
                assert snap.can(module, "read", enterprise_id)
                assert not snap.can(module, "create", enterprise_id)

    async def test_module_outside_catalog_dropped_on_save(self, db, member, enterprises, enterprise_slugs):
        from holdingdash.models.permission import UserModulePermission

        dubai = enterprises["dubai"].id
        draft = PermissionDraft.from_payload(
            {"entreprises": True}, [dubai], {dubai: {"salaries": {a: True for a in ACTIONS}}},
        )
        await save_user_permissions(db, member.id, draft, enterprise_slugs)

        rows = (await db.execute(
            select(UserModulePermission).where(UserModulePermission.user_id == member.id)
        )).scalars().all()
        assert rows == []
        snap = await load_permission_snapshot(db, member.id, member.role)
        assert not snap.can("salaries", "read", dubai)

    async def test_save_is_audited(self, db, member, admin, enterprise_slugs):
        from holdingdash.models.permission import AuditLog

        actor = {"user_id": admin.id, "email": admin.email}
        await save_user_permissions(db, member.id, PermissionDraft(), enterprise_slugs, actor=actor)

        entry = (await db.execute(
            select(AuditLog).where(AuditLog.action == "permissions.save")
        )).scalar_one()
        assert entry.resource_id == str(member.id)
        assert entry.email == admin.email

    async def test_failure_rolls_back_everything(self, db, member, enterprises, enterprise_slugs, monkeypatch):
        from holdingdash.models.permission import UserAppPermission
        from holdingdash.services import permission_editor

        async def broken_write(session, user_id, grants):
            session.add(UserAppPermission(user_id=user_id, can_access_users=True))
            await session.flush()
            raise OperationalError("DELETE FROM user_enterprise_access", {}, Exception("disk I/O error"))

        user_id = member.id
        monkeypatch.setattr(permission_editor, "write_grants", broken_write)

        with pytest.raises(PersistenceError):
            await save_user_permissions(db, user_id, PermissionDraft(), enterprise_slugs)

        rows = (await db.execute(
            select(UserAppPermission).where(UserAppPermission.user_id == user_id)
        )).scalars().all()
        assert rows == []
