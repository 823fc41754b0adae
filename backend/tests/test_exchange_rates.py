"""
Exchange rates — DZD-pivot conversion, relative-rate editing, persistence.
"""
import itertools
import math

import pytest
from sqlalchemy import text

from holdingdash.errors import ConflictError, ValidationError
from holdingdash.services.exchange_rates import (
    CURRENCIES,
    ExchangeRates,
    ExchangeRateStore,
    apply_relative_rate,
    relative_rate,
    relative_table,
)

RATES = ExchangeRates(eur_dzd=140.0, usd_dzd=133.0, aed_dzd=36.0)


class TestConversion:

    def test_same_currency_is_identity(self):
        for currency in CURRENCIES:
            assert RATES.convert(123.45, currency, currency) == 123.45

    def test_eur_to_dzd_multiplies_by_rate(self):
        assert RATES.convert(10, "EUR", "DZD") == pytest.approx(1400)

    def test_dzd_to_eur_divides_by_rate(self):
        assert RATES.convert(100000, "DZD", "EUR") == pytest.approx(714.2857, abs=1e-4)

    def test_cross_rate_goes_through_dzd(self):
        # 1 USD = 133 DZD = 133/36 AED
        assert RATES.convert(1, "USD", "AED") == pytest.approx(133 / 36)

    @pytest.mark.parametrize("a,b", list(itertools.permutations(CURRENCIES, 2)))
    def test_round_trip_between_every_pair(self, a, b):
        amount = 987.65
        assert RATES.convert(RATES.convert(amount, a, b), b, a) == pytest.approx(amount)

    def test_unknown_currency_is_rejected(self):
        with pytest.raises(ValidationError):
            RATES.convert(1, "GBP", "EUR")

    def test_defaults_match_configured_fallbacks(self):
        defaults = ExchangeRates.defaults()
        assert (defaults.eur_dzd, defaults.usd_dzd, defaults.aed_dzd) == (140.0, 133.0, 36.0)

    @pytest.mark.parametrize("field", ["eur_dzd", "usd_dzd", "aed_dzd"])
    @pytest.mark.parametrize("value", [0.0, -1.0, math.nan, math.inf])
    def test_validate_rejects_non_positive_or_non_finite(self, field, value):
        rates = ExchangeRates(**{**RATES.to_dict(), field: value})
        with pytest.raises(ValidationError):
            rates.validate()


class TestRelativeRates:

    def test_relative_table_excludes_base(self):
        table = relative_table(RATES, "EUR")
        assert set(table) == {"USD", "AED", "DZD"}
        assert table["DZD"] == pytest.approx(140)
        assert table["USD"] == pytest.approx(140 / 133)

    def test_target_dzd_sets_base_rate_directly(self):
        updated = apply_relative_rate(RATES, "USD", "DZD", 150)
        assert updated.usd_dzd == 150
        assert (updated.eur_dzd, updated.aed_dzd) == (140, 36)

    def test_base_dzd_inverts_value(self):
        updated = apply_relative_rate(RATES, "DZD", "EUR", 1 / 145)
        assert updated.eur_dzd == pytest.approx(145)

    def test_other_pair_divides_base_rate(self):
        # 1 EUR = 1.10 USD  =>  1 USD = 140 / 1.10 DZD
        updated = apply_relative_rate(RATES, "EUR", "USD", 1.10)
        assert updated.usd_dzd == pytest.approx(140 / 1.10)
        assert updated.eur_dzd == 140

    @pytest.mark.parametrize("base", CURRENCIES)
    def test_rebuilding_from_a_relative_table_reproduces_canonical_rates(self, base):
        table = relative_table(RATES, base)
        rebuilt = ExchangeRates(eur_dzd=1.0, usd_dzd=1.0, aed_dzd=1.0)
        # DZD first: it fixes the base rate the other pairs divide by
        for target in sorted(table, key=lambda c: c != "DZD"):
            rebuilt = apply_relative_rate(rebuilt, base, target, table[target])
        assert rebuilt.eur_dzd == pytest.approx(RATES.eur_dzd)
        assert rebuilt.usd_dzd == pytest.approx(RATES.usd_dzd)
        assert rebuilt.aed_dzd == pytest.approx(RATES.aed_dzd)

    def test_switching_base_keeps_canonical_rates(self):
        edited = apply_relative_rate(RATES, "EUR", "AED", 4.0)
        for base in CURRENCIES:
            for target in CURRENCIES:
                if base == target:
                    continue
                again = apply_relative_rate(edited, base, target, relative_rate(edited, base, target))
                assert again.to_dict() == pytest.approx(edited.to_dict())

    def test_same_base_and_target_rejected(self):
        with pytest.raises(ValidationError):
            apply_relative_rate(RATES, "EUR", "EUR", 1.0)

    @pytest.mark.parametrize("value", [0, -2.5])
    def test_non_positive_value_rejected(self, value):
        with pytest.raises(ValidationError):
            apply_relative_rate(RATES, "EUR", "USD", value)


class TestExchangeRateStore:

    async def test_missing_rows_fall_back_to_defaults(self, db):
        rates = await ExchangeRateStore(db).get_rates()
        assert rates == ExchangeRates(eur_dzd=140.0, usd_dzd=133.0, aed_dzd=36.0, version=0)

    async def test_unparsable_row_falls_back_per_value(self, db):
        from holdingdash.models.setting import Setting

        db.add_all([
            Setting(key="exchange_rate_eur_dzd", value="abc"),
            Setting(key="exchange_rate_usd_dzd", value="150"),
            Setting(key="exchange_rate_aed_dzd", value="-4"),
        ])
        await db.commit()

        rates = await ExchangeRateStore(db).get_rates()
        assert (rates.eur_dzd, rates.usd_dzd, rates.aed_dzd) == (140.0, 150.0, 36.0)

    async def test_save_then_read(self, db):
        store = ExchangeRateStore(db)
        saved = await store.set_rates(ExchangeRates(eur_dzd=250.5, usd_dzd=230.0, aed_dzd=62.0))
        await db.commit()

        assert saved.version == 1
        rates = await store.get_rates()
        assert (rates.eur_dzd, rates.usd_dzd, rates.aed_dzd, rates.version) == (250.5, 230.0, 62.0, 1)

    async def test_invalid_rates_are_not_persisted(self, db):
        store = ExchangeRateStore(db)
        with pytest.raises(ValidationError):
            await store.set_rates(ExchangeRates(eur_dzd=0, usd_dzd=230.0, aed_dzd=62.0))
        assert (await store.get_rates()).version == 0

    async def test_every_save_bumps_the_version(self, db):
        store = ExchangeRateStore(db)
        await store.set_rates(ExchangeRates(eur_dzd=141, usd_dzd=134, aed_dzd=37))
        await db.commit()
        second = await store.set_rates(ExchangeRates(eur_dzd=142, usd_dzd=134, aed_dzd=37))
        await db.commit()
        assert second.version == 2

    async def test_stale_expected_version_conflicts(self, db):
        store = ExchangeRateStore(db)
        await store.set_rates(ExchangeRates(eur_dzd=141, usd_dzd=134, aed_dzd=37), expected_version=0)
        await db.commit()

        with pytest.raises(ConflictError):
            await store.set_rates(ExchangeRates(eur_dzd=999, usd_dzd=134, aed_dzd=37), expected_version=0)

        rates = await store.get_rates()
        assert rates.eur_dzd == 141

    async def test_row_changed_between_read_and_write_conflicts(self, db, monkeypatch):
        store = ExchangeRateStore(db)
        await store.set_rates(ExchangeRates(eur_dzd=141, usd_dzd=134, aed_dzd=37))
        await db.commit()

        load_rows = store._load_rows

        async def load_then_concurrent_save():
            rows = await load_rows()
            # Another writer bumps the versions after this save read them
            await db.execute(text("UPDATE settings SET version = version + 1, value = '150.0'"))
            return rows

        monkeypatch.setattr(store, "_load_rows", load_then_concurrent_save)
        with pytest.raises(ConflictError):
            await store.set_rates(ExchangeRates(eur_dzd=999, usd_dzd=134, aed_dzd=37))
        await db.rollback()

        monkeypatch.undo()
        rates = await store.get_rates()
        assert rates.eur_dzd == 141
        assert rates.version == 1
