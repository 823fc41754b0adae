"""Staff-side records: employees and the equipment assigned to them."""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from holdingdash.database import Base
from holdingdash.models.base import CreatedAtMixin, UUIDPrimaryKeyMixin

EMPLOYEE_STATUSES = ("Actif", "En pause", "Sorti")
CONTRACT_TYPES = ("CDD", "CDI", "Freelance")
EQUIPMENT_STATUSES = ("En stock", "Assigné", "Perdu", "Hors service", "Vendu")

ACTIVE_STATUS = "Actif"
ASSIGNED_STATUS = "Assigné"


class Employee(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """An employee of one enterprise.  Salary figures are in DZD."""
    __tablename__ = "employees"

    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[str | None] = mapped_column(String(200))
    contract_type: Mapped[str] = mapped_column(String(20), nullable=False, default="CDI")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ACTIVE_STATUS)
    hire_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    exit_date: Mapped[datetime.date | None] = mapped_column(Date)
    monthly_salary: Mapped[float] = mapped_column(
        Numeric(14, 2, asdecimal=False), nullable=False, default=0
    )
    declared_salary: Mapped[float] = mapped_column(
        Numeric(14, 2, asdecimal=False), nullable=False, default=0
    )
    recharge: Mapped[float] = mapped_column(
        Numeric(14, 2, asdecimal=False), nullable=False, default=0
    )
    monthly_bonus: Mapped[float] = mapped_column(
        Numeric(14, 2, asdecimal=False), nullable=False, default=0
    )
    notes: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Employee {self.first_name!r} {self.last_name!r} {self.status!r}>"


class Equipment(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """A piece of equipment owned by an enterprise."""
    __tablename__ = "equipment"

    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="En stock")
    assigned_employee_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL")
    )

    def __repr__(self) -> str:
        return f"<Equipment {self.name!r} {self.status!r}>"
