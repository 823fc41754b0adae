"""Daily reminder sweep for unpaid expenses falling due shortly.

Due expenses are grouped by enterprise (personal expenses under their own
heading) and rendered as one HTML digest with per-currency totals.  When
Resend is configured the digest is emailed; otherwise it is logged and
returned as a preview.
"""
from __future__ import annotations

import datetime
import html
import logging
from collections import defaultdict

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from holdingdash.config import settings
from holdingdash.errors import UpstreamError
from holdingdash.services.financials import PERSONAL_GROUP_NAME

logger = logging.getLogger(__name__)


async def find_due_expenses(
    db: AsyncSession,
    today: datetime.date | None = None,
    lead_days: int | None = None,
) -> dict[str, list[dict]]:
    """Unpaid expenses due exactly *lead_days* from *today*, grouped by enterprise name."""
    from holdingdash.models.enterprise import Enterprise
    from holdingdash.models.finance import Expense

    today = today or datetime.date.today()
    if lead_days is None:
        lead_days = settings.EXPENSE_REMINDER_LEAD_DAYS
    target = today + datetime.timedelta(days=lead_days)

    stmt = (
        select(Expense, Enterprise.name)
        .outerjoin(Enterprise, Expense.enterprise_id == Enterprise.id)
        .where(Expense.is_paid == False, Expense.payment_date == target)  # noqa: E712
        .order_by(Expense.name)
    )
    result = await db.execute(stmt)

    groups: dict[str, list[dict]] = defaultdict(list)
    for expense, enterprise_name in result.all():
        group = enterprise_name if expense.enterprise_id else PERSONAL_GROUP_NAME
        groups[group].append({
            "id": str(expense.id),
            "name": expense.name,
            "type": expense.type,
            "amount": float(expense.amount),
            "currency": expense.currency,
            "payment_date": expense.payment_date.isoformat(),
            "description": expense.description,
        })
    return dict(groups)


def currency_totals(items: list[dict]) -> dict[str, float]:
    """Sum of *items* per currency, in order of first appearance."""
    totals: dict[str, float] = {}
    for item in items:
        totals[item["currency"]] = totals.get(item["currency"], 0.0) + item["amount"]
    return totals


def _amount(value: float) -> str:
    return f"{value:,.2f}".replace(",", " ")


def render_digest(groups: dict[str, list[dict]], due_date: datetime.date, lead_days: int) -> str:
    """HTML body of the reminder email."""
    parts = [
        "<html><body>",
        "<h1>Rappel de paiement - dépenses à venir</h1>",
        f"<p>Les dépenses suivantes sont dues dans <strong>{lead_days} jours</strong> "
        f"({due_date.isoformat()}) :</p>",
    ]
    for group, items in groups.items():
        parts.append(f"<h2>{html.escape(group)}</h2>")
        for item in items:
            parts.append(
                '<div class="expense-item">'
                f"<strong>{html.escape(item['name'])}</strong> ({html.escape(item['type'])})"
                f"<div>{_amount(item['amount'])} {html.escape(item['currency'])}</div>"
            )
            if item["description"]:
                parts.append(f"<div>Description : {html.escape(item['description'])}</div>")
            parts.append(f"<div>Date de paiement : {item['payment_date']}</div></div>")
        totals = " ".join(
            f"<span>{_amount(total)} {html.escape(currency)}</span>"
            for currency, total in currency_totals(items).items()
        )
        parts.append(f"<div><strong>Total pour {html.escape(group)} :</strong> {totals}</div>")
    parts.append("<p>Rappel automatique HoldingDash.</p></body></html>")
    return "\n".join(parts)


def delivery_configured() -> bool:
    return bool(settings.RESEND_API_KEY and settings.REMINDER_EMAIL_TO)


async def deliver_digest(
    subject: str,
    body: str,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """POST the digest to Resend and return the email id."""
    payload = {
        "from": settings.REMINDER_EMAIL_FROM,
        "to": list(settings.REMINDER_EMAIL_TO),
        "subject": subject,
        "html": body,
    }
    headers = {"Authorization": f"Bearer {settings.RESEND_API_KEY}"}
    url = settings.RESEND_API_URL
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.REMINDER_EMAIL_TIMEOUT_SECONDS) as own:
                resp = await own.post(url, json=payload, headers=headers)
        else:
            resp = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Reminder email to {url} failed: {e}")
        raise UpstreamError(f"Could not reach the email service: {e}") from e

    if not resp.is_success:
        logger.error(f"Reminder email rejected ({resp.status_code}): {resp.text}")
        raise UpstreamError(f"Email service answered {resp.status_code}: {resp.text}")

    return resp.json().get("id")


async def send_expense_reminders(
    db: AsyncSession,
    today: datetime.date | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """Send one digest of every due expense and record the sweep in the audit trail.

    Without an email configuration the digest is returned under
    ``preview_html`` instead of being sent.
    """
    from holdingdash.middleware.auth import write_audit_log

    today = today or datetime.date.today()
    lead_days = settings.EXPENSE_REMINDER_LEAD_DAYS
    groups = await find_due_expenses(db, today, lead_days)
    total = sum(len(items) for items in groups.values())
    if not total:
        logger.info("Expense reminders: nothing due")
        return {"expenses": 0, "groups": {}}

    due_date = today + datetime.timedelta(days=lead_days)
    body = render_digest(groups, due_date, lead_days)
    summary = {
        "expenses": total,
        "groups": {g: len(items) for g, items in groups.items()},
        "totals": {g: currency_totals(items) for g, items in groups.items()},
        "delivered": False,
    }

    if delivery_configured():
        subject = f"Rappel : {total} dépense(s) à payer dans {lead_days} jours"
        summary["email_id"] = await deliver_digest(subject, body, client)
        summary["delivered"] = True
        logger.info(f"Expense reminder sent for {total} expense(s): {summary['email_id']}")
    else:
        logger.info(f"No email service configured; reminder digest for {total} expense(s):\n{body}")

    await write_audit_log(
        db,
        None,
        "expenses.reminder",
        resource_type="expense",
        details=summary,
    )
    await db.commit()

    if not summary["delivered"]:
        return {**summary, "preview_html": body}
    return summary
