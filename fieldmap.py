"""
Field-name mapping between the stored document shape and the API shape.

Documents are stored camelCase (``grandTotal``, ``createdBy``); the HTTP
contract is snake_case (``grand_total``, ``user_id``). Each entity has one
explicit table; keys missing from a table fall back to the generic
camelCase <-> snake_case rule so the mapping stays total. Nested lists and
objects (quotation items, embedded business details) are mapped with their
own table.
"""

import re

CLIENT_SNAPSHOT = {
    "clientId": "client_id",
    "clientName": "client_name",
    "clientEmail": "client_email",
    "clientCompany": "client_company",
    "clientPhone": "client_phone",
    "clientAddress": "client_address",
    "clientBRN": "client_brn",
}

AUDIT = {
    "id": "id",
    "companyId": "company_id",
    "createdBy": "user_id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

TOTALS = {
    "subTotal": "sub_total",
    "discount": "discount",
    "vatAmount": "vat_amount",
    "grandTotal": "grand_total",
    "currency": "currency",
    "status": "status",
    "notes": "notes",
    "items": "items",
}

TABLES = {
    "clients": {
        **AUDIT,
        **{k: v for k, v in CLIENT_SNAPSHOT.items() if k != "clientId"},
    },
    "items": {
        "id": "id",
        "productTypeId": "product_type_id",
        "description": "description",
        "quantity": "quantity",
        "unitPrice": "unit_price",
        "total": "total",
    },
    "products": {
        "id": "id",
        "name": "name",
        "type": "type",
        "description": "description",
        "unitPrice": "unit_price",
        "bulkPrice": "bulk_price",
        "rrp": "rrp",
        "minOrder": "min_order",
        "inventory": "inventory",
        "companyId": "company_id",
        "userId": "user_id",
        "createdAt": "created_at",
        "updatedAt": "updated_at",
    },
    "quotations": {
        **AUDIT,
        **CLIENT_SNAPSHOT,
        **TOTALS,
        "quotationDate": "quotation_date",
        "expiryDate": "expiry_date",
    },
    "invoices": {
        **AUDIT,
        **CLIENT_SNAPSHOT,
        **TOTALS,
        "quotationId": "quotation_id",
        "invoiceDate": "invoice_date",
        "dueDate": "due_date",
        "totalPaid": "total_paid",
    },
    "receipts": {
        **AUDIT,
        **CLIENT_SNAPSHOT,
        "invoiceId": "invoice_id",
        "date": "date",
        "amount": "amount",
        "paymentMethod": "payment_method",
        "currency": "currency",
        "status": "status",
    },
    "statements": {
        **AUDIT,
        "clientId": "client_id",
        "clientName": "client_name",
        "period": "period",
        "date": "date",
        "amount": "amount",
        "status": "status",
        "invoiceIds": "invoice_ids",
    },
    "businesses": {
        "id": "id",
        "businessName": "business_name",
        "businessAddress": "business_address",
        "brn": "brn",
        "telephone": "telephone",
        "position": "position",
        "email": "email",
        "vatNo": "vat_no",
        "mobilePhone": "mobile_phone",
        "whatsapp": "whatsapp",
        "facebookPage": "facebook_page",
        "instagram": "instagram",
        "tiktok": "tiktok",
        "website": "website",
        "userId": "user_id",
        "createdAt": "created_at",
        "updatedAt": "updated_at",
    },
    "users": {
        "id": "id",
        "email": "email",
        "name": "name",
        "role": "role",
        "companyId": "company_id",
        "onboardingCompleted": "onboarding_completed",
        "status": "status",
        "businessName": "business_name",
        "businessDetails": "business_details",
        "products": "products",
        "passwordHash": "password_hash",
        "passwordSalt": "password_salt",
        "createdAt": "created_at",
        "updatedAt": "updated_at",
    },
}

# (entity, internal field) -> table used for the nested value
NESTED = {
    ("quotations", "items"): "items",
    ("invoices", "items"): "items",
    ("users", "businessDetails"): "businesses",
    ("users", "products"): "products",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _check_bijective(tables: dict) -> dict:
    reverse = {}
    for entity, table in tables.items():
        inverted = {v: k for k, v in table.items()}
        if len(inverted) != len(table):
            raise ValueError(f"Field map for {entity} maps two fields onto one name")
        reverse[entity] = inverted
    return reverse


REVERSE = _check_bijective(TABLES)


def _map_nested(value, nested_entity, mapper):
    if isinstance(value, list):
        return [mapper(nested_entity, v) if isinstance(v, dict) else v for v in value]
    if isinstance(value, dict):
        return mapper(nested_entity, value)
    return value


def to_external(entity: str, doc):
    """camelCase document -> snake_case record."""
    if doc is None:
        return None
    table = TABLES[entity]
    out = {}
    for key, value in doc.items():
        nested = NESTED.get((entity, key))
        if nested:
            value = _map_nested(value, nested, to_external)
        out[table.get(key) or camel_to_snake(key)] = value
    return out


def to_internal(entity: str, data):
    """snake_case record -> camelCase document."""
    if data is None:
        return None
    table = REVERSE[entity]
    out = {}
    for key, value in data.items():
        internal = table.get(key) or snake_to_camel(key)
        nested = NESTED.get((entity, internal))
        if nested:
            value = _map_nested(value, nested, to_internal)
        out[internal] = value
    return out


def client_snapshot(source: dict, client_id=None) -> dict:
    """Denormalized client fields copied onto quotations, invoices and receipts.

    ``source`` is either a client document (pass its id as ``client_id``) or
    a document that already carries a snapshot.
    """
    snapshot = {k: source.get(k) for k in CLIENT_SNAPSHOT if k != "clientId"}
    snapshot["clientId"] = client_id if client_id is not None else source.get("clientId")
    return snapshot
