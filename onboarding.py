import logging

from database import now
from gateway import Gateway

logger = logging.getLogger(__name__)


def default_rrp(product: dict) -> dict:
    if product.get("rrp") is None:
        product["rrp"] = round((product.get("unitPrice") or 0) * 1.2, 2)
    return product


def create_product(db, user: dict, product: dict) -> dict:
    doc = default_rrp({**product, "userId": user["id"], "companyId": user.get("companyId")})
    return Gateway(db, "products").create(doc)


def complete_onboarding(db, user: dict, business: dict, products: list) -> dict:
    """Store the business profile and starting catalogue, then mark the user onboarded."""
    businesses = Gateway(db, "businesses")
    record = {**business, "userId": user["id"]}
    if businesses.get(user["id"]):
        businesses.update(user["id"], record)
    else:
        businesses.create(record, doc_id=user["id"])

    created = [create_product(db, user, p) for p in products]

    Gateway(db, "users").update(user["id"], {
        "onboardingCompleted": True,
        "businessDetails": business,
        "businessName": business.get("businessName"),
        "onboardedAt": now(),
    })
    logger.info(f"[Onboarding] User {user['id']} onboarded with {len(created)} products")
    return {"business": businesses.get(user["id"]), "products": created}
