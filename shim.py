"""
Relational-style service over the document store.

Callers read and write snake_case records; underneath every call goes
through the camelCase Gateway. Quotation and invoice reads simulate the
``clients(*)`` join with a second point lookup.
"""

import logging
from typing import Optional

from access import FilterContext
from fieldmap import to_external, to_internal
from gateway import Gateway

logger = logging.getLogger(__name__)

JOINED_CLIENT_FIELDS = ("client_name", "client_email", "client_company", "client_phone", "client_address", "client_brn")


class ShimTable:
    def __init__(self, db, entity: str):
        self.entity = entity
        self.gateway = Gateway(db, entity)

    def present(self, doc: Optional[dict]) -> Optional[dict]:
        return to_external(self.entity, doc)

    def get_all(self, ctx: FilterContext) -> list:
        logger.debug(f"[Shim] {self.entity}.get_all(user_id={ctx.user_id}, role={ctx.role}, company_id={ctx.company_id})")
        return [self.present(d) for d in self.gateway.list(ctx)]

    def get_by_id(self, doc_id: str) -> Optional[dict]:
        logger.debug(f"[Shim] {self.entity}.get_by_id({doc_id})")
        return self.present(self.gateway.get(doc_id))

    def create(self, record: dict, doc_id: Optional[str] = None) -> dict:
        doc = self.gateway.create(to_internal(self.entity, record), doc_id=doc_id)
        return self.present(doc)

    def update(self, doc_id: str, changes: dict) -> dict:
        self.gateway.update(doc_id, to_internal(self.entity, changes))
        return self.get_by_id(doc_id)

    def delete(self, doc_id: str) -> None:
        self.gateway.delete(doc_id)


class JoinedShimTable(ShimTable):
    """ShimTable whose records carry a nested ``clients`` object."""

    def __init__(self, db, entity: str):
        super().__init__(db, entity)
        self.clients = Gateway(db, "clients")

    def join_client(self, record: Optional[dict]) -> Optional[dict]:
        if record is None:
            return None
        client_data = None
        client_id = record.get("client_id")
        if client_id:
            client = self.clients.get(client_id)
            if client:
                mapped = to_external("clients", client)
                client_data = {k: mapped.get(k) for k in JOINED_CLIENT_FIELDS}
            else:
                logger.warning(f"[Shim] {self.entity} {record.get('id')} references missing client {client_id}")
        record["clients"] = client_data
        return record

    def present(self, doc: Optional[dict]) -> Optional[dict]:
        return self.join_client(super().present(doc))


class UserShimTable(ShimTable):
    SECRET_FIELDS = ("passwordHash", "passwordSalt")

    def present(self, doc: Optional[dict]) -> Optional[dict]:
        if doc is None:
            return None
        return super().present({k: v for k, v in doc.items() if k not in self.SECRET_FIELDS})


class Profiles:
    """Business profile stored per user in ``businesses`` (id = user id)."""

    FIELDS = {
        "business_name": "businessName",
        "business_address": "businessAddress",
        "brn": "brn",
        "vat_no": "vatNo",
        "telephone": "telephone",
        "website": "website",
        "role": "position",
    }

    def __init__(self, db):
        self.gateway = Gateway(db, "businesses")

    def get(self, user_id: str) -> Optional[dict]:
        business = self.gateway.get(user_id)
        if not business:
            return None
        profile = {"id": user_id}
        for external, internal in self.FIELDS.items():
            profile[external] = business.get(internal)
        profile["onboarding_completed"] = True
        return profile

    def update(self, user_id: str, updates: dict) -> Optional[dict]:
        changes = {internal: updates[external] for external, internal in self.FIELDS.items() if updates.get(external) is not None}
        if changes:
            self.gateway.update(user_id, changes)
        return self.get(user_id)


class Shim:
    def __init__(self, db):
        self.clients = ShimTable(db, "clients")
        self.products = ShimTable(db, "products")
        self.quotations = JoinedShimTable(db, "quotations")
        self.invoices = JoinedShimTable(db, "invoices")
        self.receipts = ShimTable(db, "receipts")
        self.statements = ShimTable(db, "statements")
        self.users = UserShimTable(db, "users")
        self.profiles = Profiles(db)
