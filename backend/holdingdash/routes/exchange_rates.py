"""Exchange-rate routes — read, save, relative editing and live quote."""
from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.database import get_db
from holdingdash.middleware.auth import client_ip, require_page, write_audit_log
from holdingdash.services.exchange_rates import (
    CURRENCIES,
    ExchangeRates,
    ExchangeRateStore,
    apply_relative_rate,
    relative_table,
)
from holdingdash.services.rate_feed import fetch_market_rate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exchange-rates", tags=["exchange-rates"])

Currency = Literal["EUR", "USD", "AED", "DZD"]


class RatesUpdate(BaseModel):
    eur_dzd: float
    usd_dzd: float
    aed_dzd: float
    expected_version: int | None = None


class RelativeEdit(BaseModel):
    base: Currency
    target: Currency
    value: float
    # Rates to derive from; the stored rates when omitted
    eur_dzd: float | None = None
    usd_dzd: float | None = None
    aed_dzd: float | None = None


def _rates_out(rates: ExchangeRates, base: str = "DZD") -> dict:
    return {**rates.to_dict(), "base": base, "relative": relative_table(rates, base)}


@router.get("")
async def get_exchange_rates(
    base: Currency = "DZD",
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("dashboard")),
):
    rates = await ExchangeRateStore(db).get_rates()
    return {**_rates_out(rates, base), "currencies": list(CURRENCIES)}


@router.put("")
async def set_exchange_rates(
    body: RatesUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_page("dashboard")),
):
    """Save the three DZD rates.  ``expected_version`` guards against lost updates."""
    rates = ExchangeRates(eur_dzd=body.eur_dzd, usd_dzd=body.usd_dzd, aed_dzd=body.aed_dzd)
    saved = await ExchangeRateStore(db).set_rates(
        rates, expected_version=body.expected_version, user_id=user["user_id"]
    )

    await write_audit_log(
        db,
        user,
        "exchange_rates.update",
        resource_type="settings",
        details=saved.to_dict(),
        ip_address=client_ip(request),
    )
    await db.commit()
    return _rates_out(saved)


@router.post("/relative")
async def derive_relative_rates(
    body: RelativeEdit,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_page("dashboard")),
):
    """Re-derive the DZD rates from ``1 base = value target``.  Nothing is saved."""
    current = await ExchangeRateStore(db).get_rates()
    start = ExchangeRates(
        eur_dzd=body.eur_dzd if body.eur_dzd is not None else current.eur_dzd,
        usd_dzd=body.usd_dzd if body.usd_dzd is not None else current.usd_dzd,
        aed_dzd=body.aed_dzd if body.aed_dzd is not None else current.aed_dzd,
        version=current.version,
    )
    derived = apply_relative_rate(start, body.base, body.target, body.value)
    derived.validate()
    return _rates_out(derived, body.base)


@router.get("/market")
async def get_market_rate(
    _user: dict = Depends(require_page("dashboard")),
):
    return await fetch_market_rate()
