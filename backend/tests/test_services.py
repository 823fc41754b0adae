"""
Supporting services — request generations, market quote, expense reminders.
"""
import datetime
import json

import httpx
import pytest
from sqlalchemy import select

from holdingdash.config import settings
from holdingdash.errors import ConflictError, NotFoundError, UpstreamError
from holdingdash.services.expense_reminders import (
    currency_totals,
    find_due_expenses,
    render_digest,
    send_expense_reminders,
)
from holdingdash.services.generations import RequestGenerations
from holdingdash.services.rate_feed import extract_paysera_rate, fetch_market_rate

QUOTE_PAGE = """
<table>
  <tr><td>Square</td><td>| 262 DZD</td></tr>
  <tr><td>Paysera EUR</td><td>| 258.50 DZD</td></tr>
</table>
"""


class TestRequestGenerations:

    def test_latest_request_is_current(self):
        generations = RequestGenerations()
        first = generations.issue("user")
        second = generations.issue("user")
        assert second == first + 1
        assert generations.is_current("user", second)
        assert not generations.is_current("user", first)

    def test_superseded_request_is_discarded(self):
        generations = RequestGenerations()
        stale = generations.issue("user")
        generations.issue("user")
        with pytest.raises(ConflictError):
            generations.ensure_current("user", stale)

    def test_keys_are_independent(self):
        generations = RequestGenerations()
        mine = generations.issue("a")
        generations.issue("b")
        generations.ensure_current("a", mine)

    def test_forget_resets_key(self):
        generations = RequestGenerations()
        generations.issue("a")
        generations.forget("a")
        assert generations.latest("a") == 0

    def test_key_table_is_bounded(self):
        generations = RequestGenerations(max_keys=3)
        for user in range(10):
            generations.issue(("user", user))
        assert len(generations) == 3
        assert generations.latest(("user", 0)) == 0
        assert generations.latest(("user", 9)) == 1

    def test_recently_issued_key_survives_eviction(self):
        generations = RequestGenerations(max_keys=2)
        generations.issue("a")
        generations.issue("b")
        current = generations.issue("a")
        generations.issue("c")
        assert generations.latest("b") == 0
        generations.ensure_current("a", current)


class TestMarketRate:

    def test_extracts_paysera_quote(self):
        assert extract_paysera_rate(QUOTE_PAGE) == 258.50

    def test_quote_split_over_markup(self):
        html = "<div>Paysera</div>\n<span>261 DZD</span>"
        assert extract_paysera_rate(html) == 261.0

    def test_missing_quote(self):
        assert extract_paysera_rate("<p>Square | 262 DZD</p>") is None

    async def test_fetch_returns_rate_and_source(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=QUOTE_PAGE))
        async with httpx.AsyncClient(transport=transport) as client:
            quote = await fetch_market_rate("https://quotes.test/", client)
        assert quote["rate"] == 258.50
        assert quote["source"] == "https://quotes.test/"
        assert quote["timestamp"]

    async def test_non_200_is_upstream_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(UpstreamError):
                await fetch_market_rate("https://quotes.test/", client)

    async def test_network_failure_is_upstream_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(UpstreamError):
                await fetch_market_rate("https://quotes.test/", client)

    async def test_page_without_quote_is_not_found(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html></html>"))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(NotFoundError):
                await fetch_market_rate("https://quotes.test/", client)


class TestExpenseReminders:

    TODAY = datetime.date(2026, 3, 10)
    DUE = datetime.date(2026, 3, 12)

    async def _seed(self, db, enterprises):
        from holdingdash.models.finance import Expense

        dubai = enterprises["dubai"].id
        db.add_all([
            Expense(enterprise_id=dubai, name="Office rent", type="Professionnel",
                    amount=1200, currency="AED", payment_date=self.DUE),
            Expense(enterprise_id=dubai, name="Visa fees", type="Professionnel",
                    amount=300, currency="AED", payment_date=self.DUE, is_paid=True),
            Expense(enterprise_id=None, name="Car loan", type="Personnel",
                    amount=45000, currency="DZD", payment_date=self.DUE),
            Expense(enterprise_id=dubai, name="Internet", type="Professionnel",
                    amount=50, currency="AED", payment_date=self.DUE + datetime.timedelta(days=1)),
        ])
        await db.commit()

    async def test_groups_unpaid_expenses_due_in_lead_days(self, db, enterprises):
        await self._seed(db, enterprises)
        groups = await find_due_expenses(db, self.TODAY, lead_days=2)

        assert set(groups) == {"Dubai", "Dépenses Personnelles"}
        assert [e["name"] for e in groups["Dubai"]] == ["Office rent"]
        assert groups["Dépenses Personnelles"][0]["amount"] == 45000

    async def test_nothing_due(self, db, enterprises):
        await self._seed(db, enterprises)
        summary = await send_expense_reminders(db, datetime.date(2026, 1, 1))
        assert summary == {"expenses": 0, "groups": {}}

    def test_currency_totals_per_group(self):
        items = [
            {"amount": 1200.0, "currency": "AED"},
            {"amount": 45000.0, "currency": "DZD"},
            {"amount": 300.0, "currency": "AED"},
        ]
        assert currency_totals(items) == {"AED": 1500.0, "DZD": 45000.0}

    def test_digest_lists_groups_and_totals(self):
        groups = {"Dubai <HQ>": [{
            "name": "Office rent", "type": "Professionnel", "amount": 1200.0, "currency": "AED",
            "payment_date": "2026-03-12", "description": None,
        }]}
        body = render_digest(groups, self.DUE, 2)
        assert "Dubai &lt;HQ&gt;" in body
        assert "Office rent" in body
        assert "Total pour Dubai &lt;HQ&gt;" in body
        assert "1 200.00 AED" in body

    async def test_without_email_service_returns_preview(self, db, enterprises, monkeypatch):
        from holdingdash.models.permission import AuditLog

        monkeypatch.setattr(settings, "RESEND_API_KEY", "")
        await self._seed(db, enterprises)
        summary = await send_expense_reminders(db, self.TODAY)

        assert summary["expenses"] == 2
        assert summary["groups"] == {"Dubai": 1, "Dépenses Personnelles": 1}
        assert summary["totals"]["Dubai"] == {"AED": 1200.0}
        assert summary["delivered"] is False
        assert "Office rent" in summary["preview_html"]

        entry = (await db.execute(
            select(AuditLog).where(AuditLog.action == "expenses.reminder")
        )).scalar_one()
        assert entry.details["expenses"] == 2
        assert "preview_html" not in entry.details

    async def test_digest_is_emailed_when_configured(self, db, enterprises, monkeypatch):
        monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test_key")
        monkeypatch.setattr(settings, "REMINDER_EMAIL_TO", ["finance@holding.test"])
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(200, json={"id": "email-123"})

        await self._seed(db, enterprises)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            summary = await send_expense_reminders(db, self.TODAY, client)

        assert summary["delivered"] is True
        assert summary["email_id"] == "email-123"
        assert "preview_html" not in summary

        request = sent[0]
        assert str(request.url) == settings.RESEND_API_URL
        assert request.headers["Authorization"] == "Bearer re_test_key"
        payload = json.loads(request.content)
        assert payload["to"] == ["finance@holding.test"]
        assert "2 dépense(s)" in payload["subject"]
        assert "Car loan" in payload["html"]

    async def test_rejected_email_is_upstream_error(self, db, enterprises, monkeypatch):
        from holdingdash.models.permission import AuditLog

        monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test_key")
        monkeypatch.setattr(settings, "REMINDER_EMAIL_TO", ["finance@holding.test"])
        transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad sender"}))

        await self._seed(db, enterprises)
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(UpstreamError):
                await send_expense_reminders(db, self.TODAY, client)

        entries = (await db.execute(
            select(AuditLog).where(AuditLog.action == "expenses.reminder")
        )).scalars().all()
        assert entries == []
