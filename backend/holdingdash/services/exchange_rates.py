"""Exchange Rate Store — three editable cross-rates pivoting through DZD.

Rates are persisted as ``settings`` rows keyed by currency pair.  Each row
carries a ``version``; a save bumps all three rows to ``max(version) + 1``
and, when the caller passes ``expected_version``, refuses to overwrite
rates that changed since they were read.
"""
from __future__ import annotations

import dataclasses
import logging
import math
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.config import settings
from holdingdash.errors import ConflictError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

CURRENCIES: tuple[str, ...] = ("EUR", "USD", "AED", "DZD")
PIVOT_CURRENCY = "DZD"

# currency -> ExchangeRates field holding its DZD value
RATE_FIELDS: dict[str, str] = {
    "EUR": "eur_dzd",
    "USD": "usd_dzd",
    "AED": "aed_dzd",
}

# ExchangeRates field -> settings key
SETTING_KEYS: dict[str, str] = {
    field: f"exchange_rate_{field}" for field in RATE_FIELDS.values()
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "EUR": "€",
    "USD": "$",
    "AED": "AED",
    "DZD": "DA",
}


# Spellings found on stored records, mapped to their ISO code
CURRENCY_ALIASES: dict[str, str] = {
    "EURO": "EUR",
    "EUROS": "EUR",
    "DA": "DZD",
}


def normalize_currency(code: str | None, default: str = "EUR") -> str | None:
    """Canonical ISO code for a stored currency value, or ``None`` if unknown.

    Lenient on case and common spellings; ``None`` or blank gives *default*.
    API input still goes through ``_check_currency``.
    """
    if code is None or not code.strip():
        return default
    canonical = code.strip().upper()
    canonical = CURRENCY_ALIASES.get(canonical, canonical)
    return canonical if canonical in CURRENCIES else None


def _check_currency(currency: str) -> None:
    if currency not in CURRENCIES:
        raise ValidationError(
            f"Unsupported currency '{currency}'. Valid currencies: {', '.join(CURRENCIES)}"
        )


@dataclasses.dataclass(frozen=True)
class ExchangeRates:
    """DZD value of one EUR, one USD and one AED."""

    eur_dzd: float
    usd_dzd: float
    aed_dzd: float
    version: int = 0

    @classmethod
    def defaults(cls) -> ExchangeRates:
        return cls(
            eur_dzd=settings.DEFAULT_EUR_DZD,
            usd_dzd=settings.DEFAULT_USD_DZD,
            aed_dzd=settings.DEFAULT_AED_DZD,
        )

    def dzd_value(self, currency: str) -> float:
        """DZD value of one unit of *currency*."""
        _check_currency(currency)
        if currency == PIVOT_CURRENCY:
            return 1.0
        return getattr(self, RATE_FIELDS[currency])

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert *amount* between any two supported currencies via DZD."""
        _check_currency(from_currency)
        _check_currency(to_currency)
        if from_currency == to_currency:
            return amount
        return amount * self.dzd_value(from_currency) / self.dzd_value(to_currency)

    def to_eur(self, amount: float, currency: str) -> float:
        return self.convert(amount, currency, "EUR")

    def from_eur(self, amount: float, currency: str) -> float:
        return self.convert(amount, "EUR", currency)

    def validate(self) -> None:
        bad = [
            field for field in RATE_FIELDS.values()
            if not (math.isfinite(getattr(self, field)) and getattr(self, field) > 0)
        ]
        if bad:
            raise ValidationError(
                f"Exchange rates must be strictly positive: {', '.join(bad)}"
            )

    def to_dict(self) -> dict:
        return {
            "eur_dzd": self.eur_dzd,
            "usd_dzd": self.usd_dzd,
            "aed_dzd": self.aed_dzd,
            "version": self.version,
        }


# ---------------------------------------------------------------------------
# Relative-rate editing
# ---------------------------------------------------------------------------


def relative_rate(rates: ExchangeRates, base: str, target: str) -> float:
    """How many *target* units one *base* unit buys."""
    _check_currency(base)
    _check_currency(target)
    if base == target:
        return 1.0
    return rates.dzd_value(base) / rates.dzd_value(target)


def relative_table(rates: ExchangeRates, base: str) -> dict[str, float]:
    """Rates of every other currency relative to *base*."""
    return {
        currency: relative_rate(rates, base, currency)
        for currency in CURRENCIES
        if currency != base
    }


def apply_relative_rate(
    rates: ExchangeRates, base: str, target: str, value: float
) -> ExchangeRates:
    """Re-derive the canonical DZD rates from an edit of ``1 base = value target``.

    Target DZD sets the base's own rate, base DZD inverts the value, and any
    other pair divides the base's DZD rate by the value.
    """
    _check_currency(base)
    _check_currency(target)
    if base == target:
        raise ValidationError("Base and target currencies must differ.")
    if not (math.isfinite(value) and value > 0):
        raise ValidationError("Exchange rates must be strictly positive.")

    if target == PIVOT_CURRENCY:
        return dataclasses.replace(rates, **{RATE_FIELDS[base]: value})
    if base == PIVOT_CURRENCY:
        return dataclasses.replace(rates, **{RATE_FIELDS[target]: 1 / value})
    return dataclasses.replace(
        rates, **{RATE_FIELDS[target]: rates.dzd_value(base) / value}
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _parse_rate(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


class ExchangeRateStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_rows(self) -> dict:
        from holdingdash.models.setting import Setting

        result = await self.db.execute(
            select(Setting).where(Setting.key.in_(SETTING_KEYS.values()))
        )
        return {row.key: row for row in result.scalars().all()}

    async def get_rates(self) -> ExchangeRates:
        """Read the three rates, falling back to defaults per missing value."""
        rows = await self._load_rows()
        defaults = ExchangeRates.defaults()

        values = {}
        for field, key in SETTING_KEYS.items():
            row = rows.get(key)
            parsed = _parse_rate(row.value if row is not None else None)
            if parsed is None:
                if row is not None:
                    logger.warning(f"Unparsable exchange rate {key}={row.value!r}, using default")
                parsed = getattr(defaults, field)
            values[field] = parsed

        version = max((row.version for row in rows.values()), default=0)
        return ExchangeRates(version=version, **values)

    async def set_rates(
        self,
        rates: ExchangeRates,
        expected_version: int | None = None,
        user_id: uuid.UUID | None = None,
    ) -> ExchangeRates:
        """Validate and persist *rates*; returns the stored rates with the new version.

        Does not commit: the caller owns the transaction.
        """
        from holdingdash.models.setting import Setting

        rates.validate()

        rows = await self._load_rows()
        current_version = max((row.version for row in rows.values()), default=0)
        if expected_version is not None and expected_version != current_version:
            raise ConflictError(
                f"Exchange rates changed since they were read "
                f"(expected version {expected_version}, current {current_version})."
            )
        new_version = current_version + 1

        try:
            for field, key in SETTING_KEYS.items():
                value = repr(float(getattr(rates, field)))
                row = rows.get(key)
                if row is None:
                    self.db.add(Setting(
                        key=key, value=value, version=new_version, updated_by=user_id,
                    ))
                    continue
                result = await self.db.execute(
                    update(Setting)
                    .where(Setting.id == row.id, Setting.version == row.version)
                    .values(value=value, version=new_version, updated_by=user_id)
                    .execution_options(synchronize_session="fetch")
                )
                if result.rowcount != 1:
                    raise ConflictError(
                        "Exchange rates were modified concurrently; reload and retry."
                    )
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Exchange rates were created concurrently; reload and retry."
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save exchange rates: {e}") from e

        logger.info(
            f"Exchange rates saved v{new_version}: EUR={rates.eur_dzd} "
            f"USD={rates.usd_dzd} AED={rates.aed_dzd}"
        )
        return dataclasses.replace(rates, version=new_version)
