import logging
from typing import Optional

from access import FilterContext, scope_filter
from database import create_document, get_documents, now
from errors import NotFound

logger = logging.getLogger(__name__)

# Entity name -> collection name in the document store
COLLECTIONS = {
    "clients": "clients",
    "products": "user_products",
    "quotations": "quotations",
    "invoices": "invoices",
    "receipts": "receipts",
    "statements": "statements",
    "users": "users",
    "businesses": "businesses",
}

LABELS = {
    "clients": "Client",
    "products": "Product",
    "quotations": "Quotation",
    "invoices": "Invoice",
    "receipts": "Receipt",
    "statements": "Statement",
    "users": "User",
    "businesses": "Business profile",
}


def with_id(doc):
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    return doc


class Gateway:
    """Uniform CRUD over one entity collection, documents in camelCase."""

    def __init__(self, db, entity: str):
        self.entity = entity
        self.collection_name = COLLECTIONS[entity]
        self.label = LABELS[entity]
        self.collection = db[self.collection_name]
        self.db = db

    def list(self, ctx: FilterContext, extra: Optional[dict] = None) -> list:
        predicate = scope_filter(ctx, self.entity)
        if predicate is None:
            logger.warning(f"[Gateway] {self.entity}.list without a user id for role {ctx.role}")
            return []
        query = {**predicate, **(extra or {})}
        docs = get_documents(self.db, self.collection_name, query)
        return [with_id(d) for d in docs]

    def find(self, query: dict) -> list:
        return [with_id(d) for d in self.collection.find(query)]

    def find_one(self, query: dict) -> Optional[dict]:
        return with_id(self.collection.find_one(query))

    def get(self, doc_id: str) -> Optional[dict]:
        return with_id(self.collection.find_one({"_id": doc_id}))

    def get_or_404(self, doc_id: str) -> dict:
        doc = self.get(doc_id)
        if doc is None:
            raise NotFound(f"{self.label} {doc_id} not found")
        return doc

    def create(self, data: dict, doc_id: Optional[str] = None) -> dict:
        inserted = create_document(self.db, self.collection_name, data, doc_id=doc_id)
        logger.info(f"[Gateway] Created {self.entity} {inserted}")
        return self.get(inserted)

    def update(self, doc_id: str, data: dict) -> None:
        changes = {k: v for k, v in data.items() if k not in ("id", "_id", "createdAt")}
        changes["updatedAt"] = now()
        result = self.collection.update_one({"_id": doc_id}, {"$set": changes})
        if result.matched_count == 0:
            raise NotFound(f"{self.label} {doc_id} not found")
        logger.debug(f"[Gateway] Updated {self.entity} {doc_id}: {sorted(changes)}")

    def delete(self, doc_id: str) -> None:
        result = self.collection.delete_one({"_id": doc_id})
        if result.deleted_count == 0:
            raise NotFound(f"{self.label} {doc_id} not found")
        logger.info(f"[Gateway] Deleted {self.entity} {doc_id}")
