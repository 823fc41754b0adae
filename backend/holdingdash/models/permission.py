"""SQLAlchemy models for the grant collections and audit logging.

Three grant collections make up a user's authorization state:

* ``UserAppPermission`` -- one row per user, page-level access booleans.
* ``UserEnterpriseAccess`` -- (user, enterprise) membership pairs.
* ``UserModulePermission`` -- per-enterprise, per-module CRUD flags.

All three are replaced wholesale by the permission editor's save.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import JSON, Boolean, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from holdingdash.database import Base
from holdingdash.models.base import CreatedAtMixin, UUIDPrimaryKeyMixin


class UserAppPermission(UUIDPrimaryKeyMixin, Base):
    """Page-level access for a single user (at most one row per user)."""
    __tablename__ = "user_app_permissions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    can_access_dashboard: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_access_entreprises: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_access_personal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_access_users: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<UserAppPermission user={self.user_id}>"


class UserEnterpriseAccess(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Explicit enterprise membership."""
    __tablename__ = "user_enterprise_access"
    __table_args__ = (
        UniqueConstraint("user_id", "enterprise_id", name="uq_user_enterprise_access"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UserEnterpriseAccess user={self.user_id} enterprise={self.enterprise_id}>"


class UserModulePermission(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """CRUD flags for one module of one enterprise."""
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "enterprise_id", "module", name="uq_user_permission"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    can_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_update: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<UserModulePermission {self.module!r} enterprise={self.enterprise_id}>"


class AuditLog(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Immutable audit trail of all system mutations."""
    __tablename__ = "audit_log"

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL")
    )
    email: Mapped[str | None] = mapped_column(String(200))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(100))
    resource_id: Mapped[str | None] = mapped_column(String(200))
    details: Mapped[dict | None] = mapped_column(JSON)
    ip_address: Mapped[str | None] = mapped_column(String(45))

    def __repr__(self) -> str:
        return f"<AuditLog {self.action!r} by {self.email!r}>"
