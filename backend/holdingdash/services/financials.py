"""Financial Aggregator — consolidated monthly statement across enterprises.

``build_statement`` is pure: it takes records already loaded for the
accessible enterprises and produces a ``FinancialStatement`` whose amounts
are all expressed in EUR.  Display currencies are applied afterwards, per
metric, with ``FinancialStatement.display``.

``FinancialAggregator`` loads the records with one session and then calls
``build_statement``; partial loads are never used.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
import re
import uuid
from collections.abc import Iterable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.errors import ValidationError
from holdingdash.services.exchange_rates import CURRENCY_SYMBOLS, ExchangeRates, normalize_currency
from holdingdash.services.proration import calculate_prorata, is_valid_payment_day, prorated_take_home

logger = logging.getLogger(__name__)

BASE_CURRENCY = "EUR"
PERSONAL_GROUP_NAME = "Dépenses Personnelles"

# Metrics that carry an amount and can be displayed in their own currency
METRICS: tuple[str, ...] = (
    "revenue",
    "salaries",
    "expenses",
    "operating_costs",
    "net_profit",
    "personal_expenses",
    "final_profit",
)

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


# ---------------------------------------------------------------------------
# Month handling
# ---------------------------------------------------------------------------


def parse_month(month: str) -> tuple[int, int]:
    """Parse ``YYYY-MM``."""
    match = _MONTH_RE.match(month or "")
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValidationError(f"Invalid month '{month}'. Expected YYYY-MM.")
    return int(match.group(1)), int(match.group(2))


def current_month(today: datetime.date | None = None) -> str:
    today = today or datetime.date.today()
    return f"{today.year:04d}-{today.month:02d}"


def reference_date(month: str, today: datetime.date | None = None) -> datetime.date:
    """Day the proration periods are evaluated at for *month*.

    Today for the current month, the last day of a past month and the first
    day of a future one.
    """
    today = today or datetime.date.today()
    year, month_number = parse_month(month)
    first = datetime.date(year, month_number, 1)
    next_first = datetime.date(year + month_number // 12, month_number % 12 + 1, 1)
    if first <= today < next_first:
        return today
    if today >= next_first:
        return next_first - datetime.timedelta(days=1)
    return first


# ---------------------------------------------------------------------------
# Inputs & statement
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class FinancialInputs:
    """Raw records for a set of enterprises.

    ``expenses`` are enterprise-scoped; ``personal_expenses`` are the
    personal expenses that belong to no enterprise.
    """

    employees: list = dataclasses.field(default_factory=list)
    clients: list = dataclasses.field(default_factory=list)
    equipment: list = dataclasses.field(default_factory=list)
    expenses: list = dataclasses.field(default_factory=list)
    personal_expenses: list = dataclasses.field(default_factory=list)
    rates: list = dataclasses.field(default_factory=list)
    client_costs: list = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class FinancialStatement:
    month: str
    total_employees: int = 0
    active_employees: int = 0
    total_clients: int = 0
    total_equipment: int = 0
    assigned_equipment: int = 0
    revenue: float = 0.0
    salaries: float = 0.0
    expenses: float = 0.0
    operating_costs: float = 0.0
    net_profit: float = 0.0
    personal_expenses: float = 0.0
    final_profit: float = 0.0

    @classmethod
    def empty(cls, month: str) -> FinancialStatement:
        return cls(month=month)

    def amounts(self) -> dict[str, float]:
        """EUR amount of every metric."""
        return {metric: getattr(self, metric) for metric in METRICS}

    def display(
        self,
        rates: ExchangeRates,
        currencies: Mapping[str, str] | None = None,
    ) -> dict[str, dict]:
        """Render every metric in its chosen currency (EUR when unspecified)."""
        currencies = currencies or {}
        rendered = {}
        for metric, amount_eur in self.amounts().items():
            currency = currencies.get(metric) or BASE_CURRENCY
            rendered[metric] = {
                "amount": rates.from_eur(amount_eur, currency),
                "currency": currency,
                "symbol": CURRENCY_SYMBOLS[currency],
                "amount_eur": amount_eur,
            }
        return rendered

    def to_dict(
        self,
        rates: ExchangeRates,
        currencies: Mapping[str, str] | None = None,
    ) -> dict:
        return {
            "month": self.month,
            "counts": {
                "total_employees": self.total_employees,
                "active_employees": self.active_employees,
                "total_clients": self.total_clients,
                "total_equipment": self.total_equipment,
                "assigned_equipment": self.assigned_equipment,
            },
            "metrics": self.display(rates, currencies),
            "exchange_rates": rates.to_dict(),
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def record_to_eur(rates: ExchangeRates, amount, currency: str | None, source=None) -> float:
    """EUR value of a stored amount.

    Currency codes are normalised (``eur``, ``Euro``); a record whose code
    is still unknown is logged and counts as zero.
    """
    code = normalize_currency(currency, BASE_CURRENCY)
    if code is None:
        logger.warning(f"Skipping {source!r}: unsupported currency {currency!r}")
        return 0.0
    return rates.to_eur(float(amount or 0), code)


def client_revenue(
    client,
    employees: Sequence,
    rates: Sequence,
    client_costs: Sequence,
    exchange_rates: ExchangeRates,
    today: datetime.date | None = None,
) -> float:
    """EUR revenue billed to one client for the period containing *today*.

    A payment day outside 1-31 is logged and billed unprorated, like a
    client with no payment day.
    """
    payment_day = client.payment_date
    if payment_day and not is_valid_payment_day(payment_day):
        logger.warning(f"Client {client.id}: invalid payment day {payment_day!r}, billing unprorated")
        payment_day = None

    employee_revenue = 0.0
    for employee in employees:
        rate = next(
            (r for r in rates if r.employee_id == employee.id and r.client_id == client.id),
            None,
        )
        if rate is None:
            continue
        amount = record_to_eur(exchange_rates, rate.monthly_rate, rate.currency, rate)
        if not payment_day:
            employee_revenue += amount
            continue
        employee_revenue += amount * calculate_prorata(
            rate.start_date, payment_day, rate.end_date, today
        )

    additional = sum(
        record_to_eur(exchange_rates, cost.price, cost.currency, cost)
        for cost in client_costs
        if cost.client_id == client.id
    )
    return employee_revenue + additional


def build_statement(
    enterprises: Iterable,
    accessible_enterprise_ids: Iterable[uuid.UUID],
    month: str,
    rates: ExchangeRates,
    data: FinancialInputs,
    today: datetime.date | None = None,
    include_personal: bool = True,
) -> FinancialStatement:
    """Consolidate the records of the accessible enterprises into one statement.

    Personal expenses are left out when *include_personal* is false (single
    enterprise view).
    """
    from holdingdash.models.finance import PERSONAL_EXPENSE, PROFESSIONAL_EXPENSE
    from holdingdash.models.staff import ACTIVE_STATUS, ASSIGNED_STATUS

    accessible = set(accessible_enterprise_ids)
    scoped = [e for e in enterprises if e.id in accessible]
    if not scoped:
        return FinancialStatement.empty(month)

    as_of = reference_date(month, today)
    scoped_ids = {e.id for e in scoped}

    employees = [e for e in data.employees if e.enterprise_id in scoped_ids]
    clients = [c for c in data.clients if c.enterprise_id in scoped_ids]
    equipment = [q for q in data.equipment if q.enterprise_id in scoped_ids]

    revenue = 0.0
    salaries = 0.0
    expenses = 0.0

    for enterprise in scoped:
        enterprise_employees = [e for e in employees if e.enterprise_id == enterprise.id]
        active = [e for e in enterprise_employees if e.status == ACTIVE_STATUS]

        salaries_dzd = sum(prorated_take_home(e, enterprise.slug, as_of) for e in active)
        salaries += rates.convert(salaries_dzd, "DZD", BASE_CURRENCY)

        expenses += sum(
            record_to_eur(rates, x.amount, x.currency, x)
            for x in data.expenses
            if x.enterprise_id == enterprise.id and x.type == PROFESSIONAL_EXPENSE
        )

        enterprise_rates = [r for r in data.rates if r.enterprise_id == enterprise.id]
        enterprise_costs = [c for c in data.client_costs if c.enterprise_id == enterprise.id]
        for client in clients:
            if client.enterprise_id != enterprise.id:
                continue
            revenue += client_revenue(
                client, enterprise_employees, enterprise_rates, enterprise_costs, rates, as_of
            )

    personal = 0.0 if not include_personal else sum(
        record_to_eur(rates, x.amount, x.currency, x)
        for x in data.personal_expenses
        if x.enterprise_id is None and x.type == PERSONAL_EXPENSE
    )

    operating_costs = salaries + expenses
    net_profit = revenue - operating_costs

    return FinancialStatement(
        month=month,
        total_employees=len(employees),
        active_employees=sum(1 for e in employees if e.status == ACTIVE_STATUS),
        total_clients=len(clients),
        total_equipment=len(equipment),
        assigned_equipment=sum(1 for q in equipment if q.status == ASSIGNED_STATUS),
        revenue=revenue,
        salaries=salaries,
        expenses=expenses,
        operating_costs=operating_costs,
        net_profit=net_profit,
        personal_expenses=personal,
        final_profit=net_profit - personal,
    )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class FinancialAggregator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_inputs(
        self,
        enterprise_ids: Sequence[uuid.UUID],
        include_personal: bool = True,
    ) -> FinancialInputs:
        """Load every record the statement needs for *enterprise_ids*."""
        from holdingdash.models.finance import (
            PERSONAL_EXPENSE,
            Client,
            ClientCost,
            EmployeeClientRate,
            Expense,
        )
        from holdingdash.models.staff import Employee, Equipment

        ids = list(enterprise_ids)

        async def _all(stmt) -> list:
            return list((await self.db.execute(stmt)).scalars().all())

        return FinancialInputs(
            employees=await _all(select(Employee).where(Employee.enterprise_id.in_(ids))),
            clients=await _all(select(Client).where(Client.enterprise_id.in_(ids))),
            equipment=await _all(select(Equipment).where(Equipment.enterprise_id.in_(ids))),
            expenses=await _all(select(Expense).where(Expense.enterprise_id.in_(ids))),
            personal_expenses=await _all(
                select(Expense).where(
                    Expense.enterprise_id.is_(None),
                    Expense.type == PERSONAL_EXPENSE,
                )
            ) if include_personal else [],
            rates=await _all(
                select(EmployeeClientRate)
                .where(EmployeeClientRate.enterprise_id.in_(ids))
                .order_by(EmployeeClientRate.start_date.desc())
            ),
            client_costs=await _all(select(ClientCost).where(ClientCost.enterprise_id.in_(ids))),
        )

    async def compute_statement(
        self,
        enterprises: Sequence,
        accessible_enterprise_ids: Iterable[uuid.UUID],
        month: str,
        rates: ExchangeRates,
        today: datetime.date | None = None,
        include_personal: bool = True,
    ) -> FinancialStatement:
        parse_month(month)
        accessible = set(accessible_enterprise_ids)
        scoped_ids = [e.id for e in enterprises if e.id in accessible]
        if not scoped_ids:
            return FinancialStatement.empty(month)

        data = await self.load_inputs(scoped_ids, include_personal)
        statement = build_statement(
            enterprises, scoped_ids, month, rates, data, today, include_personal
        )
        logger.info(
            f"Statement {month} over {len(scoped_ids)} enterprise(s): "
            f"revenue={statement.revenue:.2f} EUR net={statement.net_profit:.2f} EUR"
        )
        return statement
