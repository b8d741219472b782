"""
Payment posting against invoices.

A payment is two writes on a store without multi-document transactions:
the receipt insert and an atomic ``$inc`` of the invoice's ``totalPaid``.
The status follows with a compare-and-set keyed on the new ``totalPaid``,
so the stored status always matches the latest balance even when payments
race. ``reconcile_invoice_payments`` repairs an invoice whose receipts add
up to more than its recorded total.
"""

import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from access import require_mutate
from database import now
from errors import NotFound, ValidationFailed
from fieldmap import client_snapshot
from formatting import format_currency, round_money
from gateway import Gateway

logger = logging.getLogger(__name__)

TO_SEND = "To Send"
SENT = "Sent"
PARTLY_PAID = "Partly Paid"
FULLY_PAID = "Fully Paid"
PAID_STATUSES = (PARTLY_PAID, FULLY_PAID)


def derive_invoice_status(total_paid: float, grand_total: float, current: Optional[str] = None) -> str:
    """Fully Paid once the grand total is covered, which includes a zero-total
    invoice before any payment. Otherwise Partly Paid after any payment, else
    the explicit To Send/Sent.
    """
    total_paid = total_paid or 0
    if total_paid >= (grand_total or 0):
        return FULLY_PAID
    if total_paid > 0:
        return PARTLY_PAID
    return current if current in (TO_SEND, SENT) else TO_SEND


def _apply_status(invoices: Gateway, invoice: dict) -> str:
    total_paid = invoice.get("totalPaid", 0)
    status = derive_invoice_status(total_paid, invoice.get("grandTotal", 0), invoice.get("status"))
    # Only lands if no other payment moved totalPaid in between
    invoices.collection.update_one(
        {"_id": invoice["id"], "totalPaid": total_paid},
        {"$set": {"status": status, "updatedAt": now()}},
    )
    return status


def register_payment(db, user: dict, invoice_id: str, amount: float, method: str = "Cash") -> dict:
    if amount is None or amount <= 0:
        raise ValidationFailed("Payment amount must be greater than zero")

    invoices = Gateway(db, "invoices")
    receipts = Gateway(db, "receipts")
    invoice = invoices.get_or_404(invoice_id)
    require_mutate(user, invoice, "invoices")

    receipt = receipts.create({
        **client_snapshot(invoice),
        "invoiceId": invoice_id,
        "amount": amount,
        "paymentMethod": method,
        "currency": invoice.get("currency"),
        "date": now(),
        "status": SENT,
        "createdBy": user["id"],
        "companyId": invoice.get("companyId") or user.get("companyId"),
    })

    try:
        updated = invoices.collection.find_one_and_update(
            {"_id": invoice_id},
            {"$inc": {"totalPaid": amount}, "$set": {"updatedAt": now()}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError:
        logger.error(f"[Payments] Balance update failed for {invoice_id}, withdrawing receipt {receipt['id']}")
        receipts.delete(receipt["id"])
        raise
    if updated is None:
        receipts.delete(receipt["id"])
        raise NotFound(f"Invoice {invoice_id} not found")

    updated["id"] = updated.pop("_id")
    status = _apply_status(invoices, updated)
    logger.info(
        f"[Payments] {format_currency(amount, invoice.get('currency'))} on {invoice_id} via {method}: "
        f"paid {format_currency(updated.get('totalPaid'), invoice.get('currency'))}, status {status}"
    )
    return {"receipt": receipt, "invoice": invoices.get(invoice_id)}


def change_invoice_status(db, user: dict, invoice_id: str, status: str) -> dict:
    """Manual status change; paid statuses only ever come from payments."""
    invoices = Gateway(db, "invoices")
    invoice = invoices.get_or_404(invoice_id)
    require_mutate(user, invoice, "invoices")
    if status in PAID_STATUSES:
        raise ValidationFailed(f"'{status}' is set by registering payments")
    if derive_invoice_status(invoice.get("totalPaid"), invoice.get("grandTotal")) in PAID_STATUSES:
        raise ValidationFailed("A paid invoice cannot go back to an unpaid status")
    invoices.update(invoice_id, {"status": status})
    logger.info(f"[Payments] Invoice {invoice_id} status {invoice.get('status')} -> {status}")
    return invoices.get(invoice_id)


def reconcile_invoice_payments(db, invoice: dict) -> bool:
    """Raise totalPaid to the sum of the invoice's receipts. Never lowers it."""
    invoices = Gateway(db, "invoices")
    received = round_money(sum(r.get("amount") or 0 for r in Gateway(db, "receipts").find({"invoiceId": invoice["id"]})))
    recorded = invoice.get("totalPaid") or 0
    if received <= recorded:
        return False
    result = invoices.collection.update_one(
        {"_id": invoice["id"], "totalPaid": invoice.get("totalPaid")},
        {"$set": {"totalPaid": received, "updatedAt": now()}},
    )
    if result.modified_count == 0:
        return False
    _apply_status(invoices, {**invoice, "totalPaid": received})
    logger.warning(f"[Payments] Invoice {invoice['id']} totalPaid corrected {recorded} -> {received}")
    return True


def reconcile_all_payments(db) -> list:
    return [inv["id"] for inv in Gateway(db, "invoices").find({}) if reconcile_invoice_payments(db, inv)]
