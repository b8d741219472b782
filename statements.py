import logging

from access import FilterContext
from database import now
from errors import ValidationFailed
from formatting import format_currency, format_date, round_money
from gateway import Gateway
from payments import FULLY_PAID

logger = logging.getLogger(__name__)


def outstanding_invoices(db, user: dict, client_name: str) -> list:
    ctx = FilterContext.for_user(user)
    invoices = Gateway(db, "invoices").list(ctx, {"clientName": client_name})
    return [inv for inv in invoices if inv.get("status") != FULLY_PAID]


def balance_due(invoice: dict) -> float:
    return max(0, (invoice.get("grandTotal") or 0) - (invoice.get("totalPaid") or 0))


def generate_statement(db, user: dict, client_name: str) -> dict:
    """Draft statement of everything the client still owes."""
    invoices = outstanding_invoices(db, user, client_name)
    if not invoices:
        raise ValidationFailed(f"No outstanding invoices for {client_name}")

    when = now()
    amount = round_money(sum(balance_due(inv) for inv in invoices))
    statement = Gateway(db, "statements").create({
        "clientId": invoices[0].get("clientId"),
        "clientName": client_name,
        "period": format_date(when, "%b %Y"),
        "date": when,
        "amount": amount,
        "status": "Draft",
        "invoiceIds": [inv["id"] for inv in invoices],
        "createdBy": user["id"],
        "companyId": user.get("companyId"),
    })
    logger.info(f"[Statements] {statement['id']} for {client_name}: {format_currency(amount)} over {len(invoices)} invoices")
    return statement
