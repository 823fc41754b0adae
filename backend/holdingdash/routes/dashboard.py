"""Dashboard routes — consolidated and per-enterprise financial statements."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.middleware.auth import require_module, require_page
from holdingdash.services.exchange_rates import ExchangeRateStore
from holdingdash.services.financials import METRICS, FinancialAggregator, current_month, reference_date
from holdingdash.services.generations import dashboard_generations

router = APIRouter(tags=["dashboard"])

_CURRENCY_PATTERN = "^(EUR|USD|AED|DZD)$"


def _display_currencies(**chosen: str | None) -> dict[str, str]:
    return {metric: currency for metric, currency in chosen.items() if currency}


async def _enterprises(db: AsyncSession) -> list:
    from holdingdash.models.enterprise import Enterprise

    result = await db.execute(select(Enterprise).order_by(Enterprise.name))
    return list(result.scalars().all())


@router.get("/api/dashboard")
async def get_dashboard(
    month: str | None = Query(None, description="YYYY-MM, defaults to the current month"),
    revenue_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    salaries_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    expenses_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    operating_costs_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    net_profit_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    personal_expenses_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    final_profit_currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("dashboard")),
):
    """Consolidated statement over every enterprise the user may see."""
    snapshot = user["permissions"]
    month = month or current_month()

    # A later request from the same user supersedes this one
    generation = dashboard_generations.issue(user["user_id"])

    rates = await ExchangeRateStore(db).get_rates()
    enterprises = await _enterprises(db)
    accessible = set(snapshot.accessible_enterprise_ids())

    statement = await FinancialAggregator(db).compute_statement(
        enterprises, accessible, month, rates
    )
    dashboard_generations.ensure_current(user["user_id"], generation)

    currencies = _display_currencies(
        revenue=revenue_currency,
        salaries=salaries_currency,
        expenses=expenses_currency,
        operating_costs=operating_costs_currency,
        net_profit=net_profit_currency,
        personal_expenses=personal_expenses_currency,
        final_profit=final_profit_currency,
    )
    return {
        **statement.to_dict(rates, currencies),
        "generation": generation,
        "as_of": reference_date(month).isoformat(),
        "scope": snapshot.scope.kind.value,
        "enterprises": [
            {"id": str(e.id), "name": e.name, "slug": e.slug}
            for e in enterprises
            if e.id in accessible
        ],
    }


@router.get("/api/enterprises/{enterprise_id}/dashboard")
async def get_enterprise_dashboard(
    enterprise_id: uuid.UUID,
    month: str | None = Query(None, description="YYYY-MM, defaults to the current month"),
    currency: str | None = Query(None, pattern=_CURRENCY_PATTERN),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_module("dashboard", "read")),
):
    """Statement of a single enterprise, without personal expenses."""
    month = month or current_month()
    generation = dashboard_generations.issue((user["user_id"], enterprise_id))

    rates = await ExchangeRateStore(db).get_rates()
    enterprises = [e for e in await _enterprises(db) if e.id == enterprise_id]

    statement = await FinancialAggregator(db).compute_statement(
        enterprises, [enterprise_id], month, rates, include_personal=False
    )
    dashboard_generations.ensure_current((user["user_id"], enterprise_id), generation)

    body = statement.to_dict(rates, dict.fromkeys(METRICS, currency) if currency else None)
    body["metrics"] = {
        metric: value for metric, value in body["metrics"].items()
        if metric not in ("personal_expenses", "final_profit")
    }
    return {
        **body,
        "enterprise": {"id": str(enterprises[0].id), "name": enterprises[0].name, "slug": enterprises[0].slug},
        "generation": generation,
        "as_of": reference_date(month).isoformat(),
    }
