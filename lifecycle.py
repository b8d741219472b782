"""
Quotation lifecycle: totals, human-readable ids, status changes and the
Won -> Invoice side effect.

Any status may be set from any other. Setting ``Won`` generates at most one
invoice per quotation; leaving ``Won`` again never retracts it. The
one-invoice rule is held by a claim document in ``quotation_invoices`` whose
``_id`` is the quotation id, so two concurrent Won transitions cannot both
create an invoice.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from access import can_view, require_mutate, require_view
from database import as_utc, new_id, now
from errors import ValidationFailed
from fieldmap import client_snapshot
from formatting import client_prefix, format_currency, round_money
from gateway import Gateway
from payments import derive_invoice_status

logger = logging.getLogger(__name__)

WON = "Won"
INVOICE_CLAIMS = "quotation_invoices"


# ---------- Numbering ----------

def next_sequence(db, name: str) -> int:
    counter = db["counters"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def generate_document_id(db, prefix: str, client_name: Optional[str], when: Optional[datetime] = None) -> str:
    when = when or now()
    seq = next_sequence(db, prefix)
    return f"{prefix}-{client_prefix(client_name)}-{when:%Y%m%d}-{seq:04d}"


# ---------- Totals ----------

def compute_totals(items: list, discount: float = 0, vat_rate: Optional[float] = None) -> dict:
    """Line totals, subtotal, VAT on the discounted amount and grand total.

    Client-supplied line totals are ignored and recomputed here.
    """
    vat_rate = config.VAT_RATE if vat_rate is None else vat_rate
    priced = []
    for item in items:
        quantity = item.get("quantity") or 0
        unit_price = item.get("unitPrice") or 0
        if quantity < 1:
            raise ValidationFailed("Item quantity must be at least 1")
        if unit_price < 0:
            raise ValidationFailed("Item unit price cannot be negative")
        priced.append({**item, "total": round_money(quantity * unit_price)})

    sub_total = round_money(sum(i["total"] for i in priced))
    discount = discount or 0
    if discount < 0:
        raise ValidationFailed("Discount cannot be negative")
    if discount > sub_total:
        raise ValidationFailed("Discount cannot exceed the subtotal")

    taxable = max(0, sub_total - discount)
    vat_amount = round_money(taxable * vat_rate)
    return {
        "items": priced,
        "subTotal": sub_total,
        "discount": round_money(discount),
        "vatAmount": vat_amount,
        "grandTotal": round_money(taxable + vat_amount),
    }


def build_items(db, user: dict, raw_items: list, keep_product_ids: Iterable[str] = ()) -> list:
    """Resolve line items against the catalogue visible to ``user``.

    Physical products with no inventory cannot be added, except when the
    document being edited already contains them.
    """
    products = Gateway(db, "products")
    keep = set(keep_product_ids)
    items = []
    for raw in raw_items:
        product_id = raw.get("productTypeId")
        product = products.get(product_id) if product_id else None
        if product is None or (product_id not in keep and not can_view(user, product, "products")):
            raise ValidationFailed(f"Unknown product {product_id}")
        if product.get("type") == "Physical" and (product.get("inventory") or 0) <= 0 and product_id not in keep:
            raise ValidationFailed(f"{product.get('name')} is sold out")
        items.append({
            "id": raw.get("id") or f"item-{new_id()}",
            "productTypeId": product_id,
            "description": raw.get("description") or product.get("name", ""),
            "quantity": raw.get("quantity"),
            "unitPrice": raw.get("unitPrice"),
        })
    return items


def resolve_client(db, user: dict, data: dict) -> dict:
    """Client snapshot for a new document, from client_id or inline fields."""
    client_id = data.get("clientId")
    if client_id:
        client = Gateway(db, "clients").get(client_id)
        if client is None:
            raise ValidationFailed(f"Unknown client {client_id}")
        require_view(user, client, "clients")
        return client_snapshot(client, client_id=client["id"])
    snapshot = client_snapshot(data)
    if not snapshot.get("clientName") or not snapshot.get("clientEmail"):
        raise ValidationFailed("Client name and email are required")
    return snapshot


# ---------- Quotations ----------

def create_quotation(db, user: dict, data: dict) -> dict:
    quotations = Gateway(db, "quotations")
    snapshot = resolve_client(db, user, data)
    items = build_items(db, user, data.get("items") or [])
    if not items:
        raise ValidationFailed("A quotation needs at least one item")
    totals = compute_totals(items, data.get("discount") or 0)

    when = now()
    quotation_id = generate_document_id(db, "Q", snapshot["clientName"], when)
    status = data.get("status") or "To Send"
    doc = {
        **snapshot,
        **totals,
        "quotationDate": when,
        "expiryDate": when + timedelta(days=config.QUOTATION_EXPIRY_DAYS),
        "status": status,
        "notes": data.get("notes"),
        "currency": data.get("currency") or config.DEFAULT_CURRENCY,
        "createdBy": user["id"],
        "companyId": user.get("companyId"),
    }
    quotation = quotations.create(doc, doc_id=quotation_id)
    logger.info(f"[Lifecycle] Quotation {quotation_id} created for {format_currency(quotation['grandTotal'], quotation['currency'])}")
    if status == WON:
        invoice_side_effect(db, quotation)
    return quotation


def update_quotation(db, user: dict, quotation_id: str, changes: dict) -> dict:
    quotations = Gateway(db, "quotations")
    quotation = quotations.get_or_404(quotation_id)
    require_mutate(user, quotation, "quotations")

    if "status" in changes:
        raise ValidationFailed("Status is changed through the status endpoint")

    update = {k: v for k, v in changes.items() if k in ("notes", "currency", "expiryDate")}
    if changes.get("clientId") and changes["clientId"] != quotation.get("clientId"):
        update.update(resolve_client(db, user, {"clientId": changes["clientId"]}))
    if "items" in changes or "discount" in changes:
        if changes.get("items"):
            existing = [i.get("productTypeId") for i in quotation.get("items", [])]
            items = build_items(db, user, changes["items"], keep_product_ids=existing)
        else:
            items = [dict(i) for i in quotation.get("items", [])]
        discount = changes["discount"] if changes.get("discount") is not None else quotation.get("discount", 0)
        update.update(compute_totals(items, discount))

    quotations.update(quotation_id, update)
    return quotations.get(quotation_id)


def change_quotation_status(db, user: dict, quotation_id: str, new_status: str) -> dict:
    """Persist a status change, then run the Won side effect.

    The status change and the invoice generation are reported separately:
    a failed invoice leaves the new status in place and comes back as
    ``invoice.outcome == "failed"``.
    """
    quotations = Gateway(db, "quotations")
    quotation = quotations.get_or_404(quotation_id)
    require_mutate(user, quotation, "quotations")

    previous = quotation.get("status")
    quotations.update(quotation_id, {"status": new_status})
    quotation = quotations.get(quotation_id)
    logger.info(f"[Lifecycle] Quotation {quotation_id} status {previous} -> {new_status} by {user['id']}")

    if new_status == WON:
        invoice = invoice_side_effect(db, quotation)
    else:
        invoice = {"outcome": "skipped", "invoice_id": None, "error": None}
    return {"quotation": quotation, "invoice": invoice}


# ---------- Won -> Invoice ----------

def build_invoice_from_quotation(quotation: dict, when: Optional[datetime] = None) -> dict:
    when = when or now()
    return {
        **client_snapshot(quotation),
        "quotationId": quotation["id"],
        "items": [dict(item) for item in quotation.get("items", [])],
        "subTotal": quotation.get("subTotal", 0),
        "discount": quotation.get("discount", 0),
        "vatAmount": quotation.get("vatAmount", 0),
        "grandTotal": quotation.get("grandTotal", 0),
        "totalPaid": 0,
        "status": derive_invoice_status(0, quotation.get("grandTotal", 0)),
        "invoiceDate": when,
        "dueDate": when + timedelta(days=config.INVOICE_DUE_DAYS),
        "notes": f"Generated from Quotation {quotation['id']}",
        "currency": quotation.get("currency") or config.DEFAULT_CURRENCY,
        "createdBy": quotation.get("createdBy"),
        "companyId": quotation.get("companyId"),
    }


def ensure_invoice_for_quotation(db, quotation: dict):
    """Create the invoice for a won quotation unless one exists.

    Returns ``(outcome, invoice_id)`` where outcome is ``created`` or ``exists``.
    """
    invoices = Gateway(db, "invoices")
    claims = db[INVOICE_CLAIMS]
    quotation_id = quotation["id"]

    existing = invoices.find_one({"quotationId": quotation_id})
    if existing:
        return "exists", existing["id"]

    when = now()
    invoice_id = generate_document_id(db, "INV", quotation.get("clientName"), when)
    try:
        claims.insert_one({"_id": quotation_id, "invoiceId": invoice_id, "createdAt": when})
    except DuplicateKeyError:
        claim = claims.find_one({"_id": quotation_id}) or {}
        logger.info(f"[Lifecycle] Invoice for {quotation_id} already claimed by {claim.get('invoiceId')}")
        return "exists", claim.get("invoiceId")

    try:
        invoices.create(build_invoice_from_quotation(quotation, when), doc_id=invoice_id)
    except Exception:
        claims.delete_one({"_id": quotation_id, "invoiceId": invoice_id})
        raise
    logger.info(f"[Lifecycle] Invoice {invoice_id} generated from quotation {quotation_id}")
    return "created", invoice_id


def invoice_side_effect(db, quotation: dict) -> dict:
    try:
        outcome, invoice_id = ensure_invoice_for_quotation(db, quotation)
    except Exception as exc:
        # The status is already recorded; the reconciliation pass picks this up
        logger.exception(f"[Lifecycle] Invoice generation failed for quotation {quotation['id']}")
        return {"outcome": "failed", "invoice_id": None, "error": str(exc)}
    return {"outcome": outcome, "invoice_id": invoice_id, "error": None}


def delete_invoice(db, invoice: dict) -> None:
    """Delete an invoice and free its quotation for a later Won transition."""
    Gateway(db, "invoices").delete(invoice["id"])
    if invoice.get("quotationId"):
        db[INVOICE_CLAIMS].delete_one({"_id": invoice["quotationId"], "invoiceId": invoice["id"]})


def claim_abandoned(claim: dict) -> bool:
    """True once a claim has outlived the time an in-flight generation needs."""
    created = claim.get("createdAt")
    if created is None:
        return True
    return now() - as_utc(created) > timedelta(seconds=config.INVOICE_CLAIM_TIMEOUT_SECONDS)


def find_won_without_invoice(db) -> list:
    won = Gateway(db, "quotations").find({"status": WON})
    invoiced = {inv.get("quotationId") for inv in Gateway(db, "invoices").find({"quotationId": {"$in": [q["id"] for q in won]}})}
    return [q for q in won if q["id"] not in invoiced]


def reconcile_won_quotations(db) -> list:
    """Generate invoices for Won quotations that never got one."""
    results = []
    invoices = Gateway(db, "invoices")
    for quotation in find_won_without_invoice(db):
        claim = db[INVOICE_CLAIMS].find_one({"_id": quotation["id"]})
        if claim and invoices.get(claim.get("invoiceId")) is None and claim_abandoned(claim):
            db[INVOICE_CLAIMS].delete_one({"_id": quotation["id"], "invoiceId": claim.get("invoiceId")})
        result = invoice_side_effect(db, quotation)
        results.append({"quotation_id": quotation["id"], **result})
        logger.warning(f"[Lifecycle] Reconciled quotation {quotation['id']}: {result['outcome']}")
    return results


# ---------- Manual invoices ----------

def create_invoice(db, user: dict, data: dict) -> dict:
    snapshot = resolve_client(db, user, data)
    items = build_items(db, user, data.get("items") or [])
    if not items:
        raise ValidationFailed("An invoice needs at least one item")
    totals = compute_totals(items, data.get("discount") or 0)
    when = now()
    invoice_id = generate_document_id(db, "INV", snapshot["clientName"], when)
    doc = {
        **snapshot,
        **totals,
        "totalPaid": 0,
        "status": derive_invoice_status(0, totals["grandTotal"]),
        "invoiceDate": when,
        "dueDate": when + timedelta(days=config.INVOICE_DUE_DAYS),
        "notes": data.get("notes"),
        "currency": data.get("currency") or config.DEFAULT_CURRENCY,
        "createdBy": user["id"],
        "companyId": user.get("companyId"),
    }
    invoice = Gateway(db, "invoices").create(doc, doc_id=invoice_id)
    logger.info(f"[Lifecycle] Invoice {invoice_id} created manually by {user['id']}")
    return invoice
