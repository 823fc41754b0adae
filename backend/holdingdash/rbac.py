"""
RBAC registry and permission evaluation — HoldingDash

Authorization has two layers:

1. Page access: four booleans per user (dashboard, entreprises, personal,
   users) stored in ``user_app_permissions``.
2. Module access: CRUD flags per (enterprise, module) stored in
   ``user_permissions``, restricted to the modules the enterprise offers
   (``ENTERPRISE_MODULES``).

Enterprise visibility is either an explicit membership set or, for
dashboard-only users, every enterprise in read-only mode.  The ``admin``
role short-circuits every check.

Evaluation is pure: ``PermissionSnapshot`` is built from rows already
loaded for the request and never touches the database.
"""
from __future__ import annotations

import dataclasses
import enum
import uuid
from collections.abc import Iterable, Mapping

from holdingdash.errors import ValidationError

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

ADMIN_ROLE = "admin"

VALID_ROLES: list[str] = [
    "admin",
    "directeur_general",
    "manager_general",
    "manager",
    "assistante_direction",
    "assistante",
    "employee",
]

MANAGER_ROLES: set[str] = {"manager_general", "manager"}


# ---------------------------------------------------------------------------
# Pages, modules, actions
# ---------------------------------------------------------------------------

PAGES: tuple[str, ...] = ("dashboard", "entreprises", "personal", "users")

# page -> column on UserAppPermission
PAGE_FIELDS: dict[str, str] = {page: f"can_access_{page}" for page in PAGES}

ACTIONS: tuple[str, ...] = ("read", "create", "update", "delete")

# Ordered module catalog (id, label)
MODULES: list[tuple[str, str]] = [
    ("dashboard", "Dashboard"),
    ("employees", "Employés"),
    ("clients", "Clients"),
    ("equipment", "Matériel"),
    ("salaries", "Salaires"),
    ("expenses_professional", "Dépenses Professionnelles"),
    ("expenses_personal", "Dépenses Personnelles"),
    ("organization", "Organisation"),
]

MODULE_IDS: tuple[str, ...] = tuple(module_id for module_id, _ in MODULES)

# Enterprise slug -> modules it exposes.  Unknown slugs expose nothing.
ENTERPRISE_MODULES: dict[str, list[str]] = {
    "deep-closer": [
        "dashboard", "employees", "clients", "equipment", "salaries",
        "expenses_professional", "organization",
    ],
    "ompleo": [
        "dashboard", "employees", "clients", "equipment", "salaries",
        "expenses_professional", "organization",
    ],
    "dubai": ["dashboard", "clients", "expenses_professional"],
}

# Modules whose permission is not tied to an enterprise.  Checks on these
# may omit the enterprise id; the catalog currently has none.
ENTERPRISE_INDEPENDENT_MODULES: frozenset[str] = frozenset()


def modules_for_slug(slug: str | None) -> list[str]:
    """Return the catalog modules an enterprise offers, in catalog order."""
    available = set(ENTERPRISE_MODULES.get(slug or "", ()))
    return [module_id for module_id in MODULE_IDS if module_id in available]


def module_label(module: str) -> str:
    return dict(MODULES).get(module, module)


def role_description(role: str) -> str:
    """Return a human-readable description for a role."""
    _DESCRIPTIONS: dict[str, str] = {
        "admin": "Administrateur (accès complet)",
        "directeur_general": "Directeur général",
        "manager_general": "Manager général",
        "manager": "Manager",
        "assistante_direction": "Assistante de direction",
        "assistante": "Assistante",
        "employee": "Employé",
    }
    return _DESCRIPTIONS.get(role, role)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class AppPermissions:
    dashboard: bool = False
    entreprises: bool = False
    personal: bool = False
    users: bool = False

    @classmethod
    def from_row(cls, row) -> AppPermissions:
        return cls(
            dashboard=bool(row.can_access_dashboard),
            entreprises=bool(row.can_access_entreprises),
            personal=bool(row.can_access_personal),
            users=bool(row.can_access_users),
        )

    def allows(self, page: str) -> bool:
        if page not in PAGES:
            return False
        return getattr(self, page)

    def to_columns(self) -> dict[str, bool]:
        return {PAGE_FIELDS[page]: getattr(self, page) for page in PAGES}


@dataclasses.dataclass(frozen=True)
class ModuleGrant:
    read: bool = False
    create: bool = False
    update: bool = False
    delete: bool = False

    @classmethod
    def from_row(cls, row) -> ModuleGrant:
        return cls(
            read=bool(row.can_read),
            create=bool(row.can_create),
            update=bool(row.can_update),
            delete=bool(row.can_delete),
        )

    def allows(self, action: str) -> bool:
        if action not in ACTIONS:
            return False
        return getattr(self, action)

    def any(self) -> bool:
        return self.read or self.create or self.update or self.delete

    def all(self) -> bool:
        return self.read and self.create and self.update and self.delete

    def to_columns(self) -> dict[str, bool]:
        return {f"can_{action}": getattr(self, action) for action in ACTIONS}


FULL_GRANT = ModuleGrant(read=True, create=True, update=True, delete=True)
READ_ONLY_GRANT = ModuleGrant(read=True)
NO_GRANT = ModuleGrant()


class ScopeKind(str, enum.Enum):
    EXPLICIT = "explicit"  # membership rows decide
    ALL_READ_ONLY = "all_read_only"  # dashboard-only users see everything, read-only


@dataclasses.dataclass(frozen=True)
class EnterpriseScope:
    kind: ScopeKind
    enterprise_ids: frozenset[uuid.UUID] = frozenset()

    @classmethod
    def explicit(cls, enterprise_ids: Iterable[uuid.UUID]) -> EnterpriseScope:
        return cls(ScopeKind.EXPLICIT, frozenset(enterprise_ids))

    @classmethod
    def all_read_only(cls) -> EnterpriseScope:
        return cls(ScopeKind.ALL_READ_ONLY)

    @classmethod
    def for_pages(
        cls, app: AppPermissions | None, chosen: Iterable[uuid.UUID]
    ) -> EnterpriseScope:
        """Derive the scope from page access.

        Enterprise page on: the chosen membership set.  Otherwise, dashboard
        on: every enterprise, read-only.  Otherwise: nothing.
        """
        if app is not None and app.entreprises:
            return cls.explicit(chosen)
        if app is not None and app.dashboard:
            return cls.all_read_only()
        return cls.explicit(())

    @property
    def is_all_read_only(self) -> bool:
        return self.kind is ScopeKind.ALL_READ_ONLY

    def includes(self, enterprise_id: uuid.UUID) -> bool:
        if self.is_all_read_only:
            return True
        return enterprise_id in self.enterprise_ids


# ---------------------------------------------------------------------------
# Permission snapshot
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class PermissionSnapshot:
    """Everything needed to answer authorization queries for one user.

    ``enterprises`` maps every known enterprise id to its slug; it is used
    to resolve the all-enterprises scope and to ignore grants for modules
    an enterprise does not offer.
    """

    role: str
    app: AppPermissions | None
    scope: EnterpriseScope
    grants: Mapping[tuple[uuid.UUID, str], ModuleGrant]
    enterprises: Mapping[uuid.UUID, str]

    @classmethod
    def from_rows(
        cls,
        role: str,
        app_row,
        module_rows: Iterable,
        access_rows: Iterable,
        enterprises: Mapping[uuid.UUID, str],
    ) -> PermissionSnapshot:
        app = AppPermissions.from_row(app_row) if app_row is not None else None
        grants = {
            (row.enterprise_id, row.module): ModuleGrant.from_row(row)
            for row in module_rows
        }
        chosen = [row.enterprise_id for row in access_rows]
        if app is not None and app.dashboard and not app.entreprises:
            scope = EnterpriseScope.all_read_only()
        else:
            scope = EnterpriseScope.explicit(chosen)
        return cls(
            role=role,
            app=app,
            scope=scope,
            grants=grants,
            enterprises=dict(enterprises),
        )

    # ------ roles ------

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    @property
    def is_employee(self) -> bool:
        return self.role == "employee"

    # ------ queries ------

    def can_access_page(self, page: str) -> bool:
        if self.is_admin:
            return True
        if self.app is None:
            return False
        return self.app.allows(page)

    def can_access_enterprise(self, enterprise_id: uuid.UUID) -> bool:
        if self.is_admin:
            return True
        if self.scope.is_all_read_only:
            return enterprise_id in self.enterprises
        return self.scope.includes(enterprise_id)

    def can(
        self,
        module: str,
        action: str,
        enterprise_id: uuid.UUID | None = None,
    ) -> bool:
        """Return whether *action* is allowed on *module*.

        Enterprise-scoped modules require *enterprise_id*; omitting it is a
        caller error rather than a lookup across enterprises.
        """
        if self.is_admin:
            return True
        if action not in ACTIONS:
            return False

        if enterprise_id is None:
            if module not in ENTERPRISE_INDEPENDENT_MODULES:
                raise ValidationError(
                    f"Module '{module}' is enterprise-scoped; an enterprise id is required."
                )
            return self.grants.get((None, module), NO_GRANT).allows(action)

        slug = self.enterprises.get(enterprise_id)
        if slug is None or module not in modules_for_slug(slug):
            return False

        if self.scope.is_all_read_only:
            return READ_ONLY_GRANT.allows(action)

        return self.grants.get((enterprise_id, module), NO_GRANT).allows(action)

    def can_in_any_enterprise(self, module: str, action: str) -> bool:
        """True when *action* on *module* is allowed in at least one enterprise."""
        if self.is_admin:
            return True
        return any(
            self.can(module, action, enterprise_id)
            for enterprise_id in self.accessible_enterprise_ids()
        )

    def accessible_enterprise_ids(self) -> list[uuid.UUID]:
        """Known enterprises this user may see, in ``enterprises`` order."""
        return [
            enterprise_id
            for enterprise_id in self.enterprises
            if self.can_access_enterprise(enterprise_id)
        ]

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "is_admin": self.is_admin,
            "is_manager": self.is_manager,
            "is_employee": self.is_employee,
            "pages": {page: self.can_access_page(page) for page in PAGES},
            "scope": ScopeKind.ALL_READ_ONLY.value if self.scope.is_all_read_only else ScopeKind.EXPLICIT.value,
            "accessible_enterprises": [str(e) for e in self.accessible_enterprise_ids()],
            "permissions": [
                {
                    "enterprise_id": str(enterprise_id),
                    "module": module,
                    **grant.to_columns(),
                }
                for (enterprise_id, module), grant in self.grants.items()
                if enterprise_id is not None
            ],
        }
