"""Proration Engine — what fraction of a pay or billing period a date range covers.

Two independent algorithms:

* ``calculate_work_percentage`` prorates an employee's first salary period.
  Periods end on the 25th by default; the ``deep-closer`` and ``ompleo``
  enterprises went through a one-off elongated period
  (2025-12-25 → 2026-02-01, divided by 30 days) and pay on the 5th since
  2026-02-05.
* ``calculate_prorata`` prorates a client billing rate over the month that
  ends on the client's payment day.

Day boundaries are calendar days: range starts count from 00:00:00.000,
range ends run to 23:59:59.999.
"""
from __future__ import annotations

import calendar
import dataclasses
import datetime
import enum

from holdingdash.errors import ValidationError

DEFAULT_PAYMENT_DAY = 25
POST_TRANSITION_PAYMENT_DAY = 5

TRANSITION_SLUGS: frozenset[str] = frozenset({"deep-closer", "ompleo"})
TRANSITION_START = datetime.date(2025, 12, 25)
TRANSITION_PERIOD_END = datetime.date(2026, 2, 1)
TRANSITION_PAYMENT_DATE = datetime.date(2026, 2, 5)
TRANSITION_DIVISOR = 30

START_OF_DAY = datetime.time.min
END_OF_DAY = datetime.time(23, 59, 59, 999000)


class SalaryRegime(str, enum.Enum):
    DEFAULT = "default"
    TRANSITION = "transition"
    POST_TRANSITION = "post_transition"


@dataclasses.dataclass(frozen=True)
class SalaryPeriod:
    start: datetime.date  # previous payment boundary
    end: datetime.date
    regime: SalaryRegime

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days


def add_months(day: datetime.date, months: int, day_of_month: int | None = None) -> datetime.date:
    """Shift *day* by *months*, keeping *day_of_month* (default: the same day).

    The day is clamped to the length of the target month.
    """
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    wanted = day_of_month if day_of_month is not None else day.day
    return datetime.date(year, month, min(wanted, calendar.monthrange(year, month)[1]))


def _payment_date(year: int, month: int, day_of_month: int) -> datetime.date:
    return datetime.date(year, month, min(day_of_month, calendar.monthrange(year, month)[1]))


def is_valid_payment_day(day) -> bool:
    return isinstance(day, int) and not isinstance(day, bool) and 1 <= day <= 31


# ---------------------------------------------------------------------------
# Salary work percentage
# ---------------------------------------------------------------------------


def salary_period(
    enterprise_slug: str | None = None,
    today: datetime.date | None = None,
) -> SalaryPeriod:
    """Return the salary period containing *today* for an enterprise."""
    today = today or datetime.date.today()
    switched = enterprise_slug in TRANSITION_SLUGS

    if switched and TRANSITION_START <= today < TRANSITION_PAYMENT_DATE:
        return SalaryPeriod(TRANSITION_START, TRANSITION_PERIOD_END, SalaryRegime.TRANSITION)

    if switched and today >= TRANSITION_PAYMENT_DATE:
        end = _payment_date(today.year, today.month, POST_TRANSITION_PAYMENT_DAY)
        if today.day >= POST_TRANSITION_PAYMENT_DAY:
            end = add_months(end, 1, POST_TRANSITION_PAYMENT_DAY)
        start = add_months(end, -1, POST_TRANSITION_PAYMENT_DAY)
        return SalaryPeriod(start, end, SalaryRegime.POST_TRANSITION)

    end = _payment_date(today.year, today.month, DEFAULT_PAYMENT_DAY)
    if today.day > DEFAULT_PAYMENT_DAY:
        end = add_months(end, 1, DEFAULT_PAYMENT_DAY)
    start = add_months(end, -1, DEFAULT_PAYMENT_DAY)
    return SalaryPeriod(start, end, SalaryRegime.DEFAULT)


def calculate_work_percentage(
    hire_date: datetime.date,
    enterprise_slug: str | None = None,
    today: datetime.date | None = None,
) -> float:
    """Fraction of the current salary period an employee hired on *hire_date* worked."""
    period = salary_period(enterprise_slug, today)

    if hire_date >= period.end:
        return 0.0

    total_days = period.total_days
    if hire_date <= period.start:
        worked_days = total_days
    else:
        worked_days = (period.end - hire_date).days

    if period.regime is SalaryRegime.TRANSITION:
        return min(worked_days / TRANSITION_DIVISOR, 1.0)
    return worked_days / total_days


def prorated_take_home(employee, enterprise_slug: str | None = None, today: datetime.date | None = None) -> float:
    """Monthly DZD cost of an employee, with the liquid salary prorated."""
    percentage = calculate_work_percentage(employee.hire_date, enterprise_slug, today)
    monthly_salary = float(employee.monthly_salary or 0)
    declared = float(employee.declared_salary or 0)
    liquid_prorated = monthly_salary * percentage - declared
    liquid_total = liquid_prorated + float(employee.recharge or 0) + float(employee.monthly_bonus or 0)
    return liquid_total + declared


# ---------------------------------------------------------------------------
# Billing prorata
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class BillingPeriod:
    start: datetime.datetime
    end: datetime.datetime

    @property
    def duration(self) -> datetime.timedelta:
        return self.end - self.start


def billing_period(payment_day: int, today: datetime.date | None = None) -> BillingPeriod:
    """The month ending on the next occurrence of *payment_day* (today included)."""
    if not is_valid_payment_day(payment_day):
        raise ValidationError(f"Payment day must be between 1 and 31, got {payment_day!r}")
    today = today or datetime.date.today()
    end_day = _payment_date(today.year, today.month, payment_day)
    if end_day < today:
        end_day = add_months(end_day, 1, payment_day)
    start_day = add_months(end_day, -1, payment_day)
    return BillingPeriod(
        start=datetime.datetime.combine(start_day, START_OF_DAY),
        end=datetime.datetime.combine(end_day, END_OF_DAY),
    )


def calculate_prorata(
    start_date: datetime.date,
    payment_day: int,
    end_date: datetime.date | None = None,
    today: datetime.date | None = None,
) -> float:
    """Fraction of the current billing period covered by [start_date, end_date]."""
    period = billing_period(payment_day, today)
    start = datetime.datetime.combine(start_date, START_OF_DAY)

    if start > period.end:
        return 0.0

    actual_start = max(start, period.start)
    actual_end = period.end
    end = None
    if end_date is not None:
        end = datetime.datetime.combine(end_date, END_OF_DAY)
        if end < period.start:
            return 0.0
        if end < period.end:
            actual_end = end

    if actual_end <= actual_start:
        return 0.0

    if start <= period.start and (end is None or end >= period.end):
        return 1.0

    if period.duration <= datetime.timedelta(0):
        return 0.0

    ratio = (actual_end - actual_start) / period.duration
    return max(0.0, min(1.0, ratio))
