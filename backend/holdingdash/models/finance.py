"""Revenue and cost records: clients, billing rates, client costs, expenses."""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from holdingdash.database import Base
from holdingdash.models.base import CreatedAtMixin, UUIDPrimaryKeyMixin

PROFESSIONAL_EXPENSE = "Professionnel"
PERSONAL_EXPENSE = "Personnel"
EXPENSE_TYPES = (PERSONAL_EXPENSE, PROFESSIONAL_EXPENSE)


class Client(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """A client of one enterprise.

    ``payment_date`` is the day of month on which the client is billed; when
    set, employee rates for this client are prorated over that billing period.
    """
    __tablename__ = "clients"
    __table_args__ = (
        CheckConstraint("payment_date BETWEEN 1 AND 31", name="ck_clients_payment_date"),
    )

    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_person: Mapped[str | None] = mapped_column(String(200))
    email: Mapped[str | None] = mapped_column(String(200))
    phone: Mapped[str | None] = mapped_column(String(50))
    payment_date: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Client {self.name!r}>"


class EmployeeClientRate(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Monthly rate billed to a client for one employee."""
    __tablename__ = "employee_client_rates"

    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    monthly_rate: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date | None] = mapped_column(Date)

    def __repr__(self) -> str:
        return f"<EmployeeClientRate {self.monthly_rate} {self.currency}>"


class ClientCost(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """Flat monthly line item billed to a client."""
    __tablename__ = "client_costs"

    enterprise_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    def __repr__(self) -> str:
        return f"<ClientCost {self.name!r} {self.price} {self.currency}>"


class Expense(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    """An expense.  ``enterprise_id`` is NULL for personal expenses."""
    __tablename__ = "expenses"

    enterprise_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("enterprises.id", ondelete="CASCADE"),
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100))
    amount: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="DZD")
    payment_date: Mapped[datetime.date | None] = mapped_column(Date)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Expense {self.name!r} {self.amount} {self.currency}>"
