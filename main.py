import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from pymongo.errors import PyMongoError

import config
import database
import lifecycle
import onboarding
import payments
import statements
from access import (
    ELEVATED_ROLES,
    SUPER_ADMIN,
    FilterContext,
    require_delete,
    require_manage_user,
    require_mutate,
    require_role,
    require_view,
)
from auth import (
    authenticate,
    bearer_token,
    bootstrap_admin,
    close_session,
    create_user,
    delete_user,
    get_current_user,
    open_session,
)
from database import get_db
from errors import DomainError, ValidationFailed
from fieldmap import to_internal
from formatting import format_currency, is_valid_brn, round_money
from gateway import Gateway
from schemas import (
    ClientIn,
    ClientUpdate,
    InvoiceIn,
    InvoiceStatusChange,
    InvoiceUpdate,
    OnboardingIn,
    PaymentIn,
    ProductIn,
    ProductUpdate,
    ProfileUpdate,
    QuotationIn,
    QuotationStatusChange,
    QuotationUpdate,
    StatementGenerate,
    StatementIn,
    StatementStatusChange,
    UserCreate,
)
from shim import Shim

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
        bootstrap_admin(database.db)
    yield


app = FastAPI(title="Quotations & Invoices API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"[API] {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Database operation failed"})


# Helpers

def load(db, entity: str, doc_id: str, user: dict) -> dict:
    doc = Gateway(db, entity).get_or_404(doc_id)
    require_view(user, doc, entity)
    return doc


def payload(entity: str, model: BaseModel, **dump_options) -> dict:
    return to_internal(entity, model.model_dump(**dump_options))


def check_brn(brn: Optional[str]):
    if brn and not is_valid_brn(brn):
        raise ValidationFailed("Business registration number must be C or I followed by 8 digits")


def load_profile(db, user_id: str, user: dict) -> Optional[dict]:
    target = Gateway(db, "users").get(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    require_manage_user(user, target)
    return Shim(db).profiles.get(user_id)


# Routes: Health
@app.get("/")
def read_root():
    return {"message": "Quotations & Invoices API running"}


@app.get("/test")
def test_database():
    try:
        names = database.db.list_collection_names() if database.db is not None else []
        return {"status": "ok", "collections": names}
    except Exception as e:
        return {"status": "error", "error": str(e)}


# Routes: Auth
class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str
    user: dict


@app.post("/auth/login", response_model=TokenResponse)
def login(body: LoginPayload, db=Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = open_session(db, user["id"])
    return {"token": token, "user": Shim(db).users.present(user)}


@app.get("/auth/me")
def me(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).users.present(user)


@app.post("/auth/logout")
def logout(authorization: Optional[str] = Header(None), db=Depends(get_db)):
    token = bearer_token(authorization)
    if token:
        close_session(db, token)
    return {"ok": True}


# Routes: Users
@app.get("/users")
def list_users(user=Depends(get_current_user), db=Depends(get_db)):
    require_role(user, ELEVATED_ROLES)
    users = Shim(db).users
    if user["role"] == SUPER_ADMIN:
        docs = users.gateway.find({})
    elif user.get("companyId"):
        docs = users.gateway.find({"companyId": user["companyId"]})
    else:
        docs = [user]
    return [users.present(d) for d in docs]


@app.post("/users")
def add_user(body: UserCreate, user=Depends(get_current_user), db=Depends(get_db)):
    created = create_user(db, user, body.name, body.email, body.password, role=body.role, company_id=body.company_id)
    return Shim(db).users.present(created)


@app.delete("/users/{user_id}")
def remove_user(user_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    delete_user(db, user, user_id)
    return {"ok": True}


# Routes: Profiles & onboarding
@app.get("/profiles/{user_id}")
def get_profile(user_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    profile = load_profile(db, user_id, user)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.patch("/profiles/{user_id}")
def update_profile(user_id: str, body: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    profiles = Shim(db).profiles
    if load_profile(db, user_id, user) is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    check_brn(body.brn)
    return profiles.update(user_id, body.model_dump(exclude_unset=True))


@app.post("/onboarding")
def complete_onboarding(body: OnboardingIn, user=Depends(get_current_user), db=Depends(get_db)):
    check_brn(body.business.brn)
    business = payload("businesses", body.business, exclude_none=True)
    products = [payload("products", p) for p in body.products]
    result = onboarding.complete_onboarding(db, user, business, products)
    shim = Shim(db)
    return {
        "business": shim.profiles.get(user["id"]),
        "products": [shim.products.present(p) for p in result["products"]],
    }


# Routes: Clients
@app.get("/clients")
def list_clients(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).clients.get_all(FilterContext.for_user(user))


@app.post("/clients")
def create_client(body: ClientIn, user=Depends(get_current_user), db=Depends(get_db)):
    check_brn(body.client_brn)
    record = body.model_dump()
    record.update({"user_id": user["id"], "company_id": user.get("companyId")})
    return Shim(db).clients.create(record)


@app.get("/clients/{client_id}")
def get_client(client_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).clients.present(load(db, "clients", client_id, user))


@app.patch("/clients/{client_id}")
def update_client(client_id: str, body: ClientUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    client = load(db, "clients", client_id, user)
    require_mutate(user, client, "clients")
    check_brn(body.client_brn)
    return Shim(db).clients.update(client_id, body.model_dump(exclude_unset=True))


@app.delete("/clients/{client_id}")
def delete_client(client_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "clients", client_id, user)
    require_delete(user, "clients")
    Gateway(db, "clients").delete(client_id)
    return {"ok": True}


# Routes: Products
@app.get("/products")
def list_products(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).products.get_all(FilterContext.for_user(user))


@app.post("/products")
def create_product(body: ProductIn, user=Depends(get_current_user), db=Depends(get_db)):
    product = onboarding.create_product(db, user, payload("products", body))
    return Shim(db).products.present(product)


@app.get("/products/{product_id}")
def get_product(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).products.present(load(db, "products", product_id, user))


@app.patch("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    product = load(db, "products", product_id, user)
    require_mutate(user, product, "products")
    return Shim(db).products.update(product_id, body.model_dump(exclude_unset=True))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "products", product_id, user)
    require_delete(user, "products")
    Gateway(db, "products").delete(product_id)
    return {"ok": True}


# Routes: Quotations
@app.get("/quotations")
def list_quotations(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).quotations.get_all(FilterContext.for_user(user))


@app.post("/quotations")
def create_quotation(body: QuotationIn, user=Depends(get_current_user), db=Depends(get_db)):
    check_brn(body.client_brn)
    quotation = lifecycle.create_quotation(db, user, payload("quotations", body))
    return Shim(db).quotations.present(quotation)


@app.get("/quotations/{quotation_id}")
def get_quotation(quotation_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).quotations.present(load(db, "quotations", quotation_id, user))


@app.patch("/quotations/{quotation_id}")
def update_quotation(quotation_id: str, body: QuotationUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "quotations", quotation_id, user)
    quotation = lifecycle.update_quotation(db, user, quotation_id, payload("quotations", body, exclude_unset=True))
    return Shim(db).quotations.present(quotation)


@app.patch("/quotations/{quotation_id}/status")
def change_quotation_status(quotation_id: str, body: QuotationStatusChange, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "quotations", quotation_id, user)
    result = lifecycle.change_quotation_status(db, user, quotation_id, body.status)
    return {"quotation": Shim(db).quotations.present(result["quotation"]), "invoice": result["invoice"]}


@app.delete("/quotations/{quotation_id}")
def delete_quotation(quotation_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "quotations", quotation_id, user)
    require_delete(user, "quotations")
    Gateway(db, "quotations").delete(quotation_id)
    return {"ok": True}


# Routes: Invoices
@app.get("/invoices")
def list_invoices(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).invoices.get_all(FilterContext.for_user(user))


@app.post("/invoices")
def create_invoice(body: InvoiceIn, user=Depends(get_current_user), db=Depends(get_db)):
    check_brn(body.client_brn)
    invoice = lifecycle.create_invoice(db, user, payload("invoices", body))
    return Shim(db).invoices.present(invoice)


@app.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).invoices.present(load(db, "invoices", invoice_id, user))


@app.patch("/invoices/{invoice_id}")
def update_invoice(invoice_id: str, body: InvoiceUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    invoice = load(db, "invoices", invoice_id, user)
    require_mutate(user, invoice, "invoices")
    return Shim(db).invoices.update(invoice_id, body.model_dump(exclude_unset=True))


@app.patch("/invoices/{invoice_id}/status")
def change_invoice_status(invoice_id: str, body: InvoiceStatusChange, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "invoices", invoice_id, user)
    invoice = payments.change_invoice_status(db, user, invoice_id, body.status)
    return Shim(db).invoices.present(invoice)


@app.post("/invoices/{invoice_id}/payments")
def register_payment(invoice_id: str, body: PaymentIn, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "invoices", invoice_id, user)
    result = payments.register_payment(db, user, invoice_id, body.amount, body.payment_method)
    shim = Shim(db)
    return {"receipt": shim.receipts.present(result["receipt"]), "invoice": shim.invoices.present(result["invoice"])}


@app.delete("/invoices/{invoice_id}")
def delete_invoice(invoice_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    invoice = load(db, "invoices", invoice_id, user)
    require_delete(user, "invoices")
    lifecycle.delete_invoice(db, invoice)
    return {"ok": True}


# Routes: Receipts
@app.get("/receipts")
def list_receipts(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).receipts.get_all(FilterContext.for_user(user))


@app.get("/receipts/{receipt_id}")
def get_receipt(receipt_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).receipts.present(load(db, "receipts", receipt_id, user))


@app.delete("/receipts/{receipt_id}")
def delete_receipt(receipt_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "receipts", receipt_id, user)
    require_delete(user, "receipts")
    Gateway(db, "receipts").delete(receipt_id)
    return {"ok": True}


# Routes: Statements
@app.get("/statements")
def list_statements(user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).statements.get_all(FilterContext.for_user(user))


@app.post("/statements")
def create_statement(body: StatementIn, user=Depends(get_current_user), db=Depends(get_db)):
    record = body.model_dump()
    record.update({"date": database.now(), "user_id": user["id"], "company_id": user.get("companyId")})
    return Shim(db).statements.create(record)


@app.post("/statements/generate")
def generate_statement(body: StatementGenerate, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).statements.present(statements.generate_statement(db, user, body.client_name))


@app.get("/statements/{statement_id}")
def get_statement(statement_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return Shim(db).statements.present(load(db, "statements", statement_id, user))


@app.patch("/statements/{statement_id}/status")
def change_statement_status(statement_id: str, body: StatementStatusChange, user=Depends(get_current_user), db=Depends(get_db)):
    statement = load(db, "statements", statement_id, user)
    require_mutate(user, statement, "statements")
    return Shim(db).statements.update(statement_id, {"status": body.status})


@app.delete("/statements/{statement_id}")
def delete_statement(statement_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    load(db, "statements", statement_id, user)
    require_delete(user, "statements")
    Gateway(db, "statements").delete(statement_id)
    return {"ok": True}


# Routes: Dashboard
@app.get("/dashboard")
def dashboard_summary(user=Depends(get_current_user), db=Depends(get_db)):
    ctx = FilterContext.for_user(user)
    quotations = Gateway(db, "quotations").list(ctx)
    invoices = Gateway(db, "invoices").list(ctx)
    collected = round_money(sum(inv.get("totalPaid") or 0 for inv in invoices))
    outstanding = round_money(sum(statements.balance_due(inv) for inv in invoices))
    return {
        "totals": {
            "quotations": len(quotations),
            "invoices": len(invoices),
            "clients": len(Gateway(db, "clients").list(ctx)),
            "products": len(Gateway(db, "products").list(ctx)),
            "won_quotations": sum(1 for q in quotations if q.get("status") == lifecycle.WON),
            "unpaid_invoices": sum(1 for inv in invoices if inv.get("status") in ("Sent", payments.PARTLY_PAID)),
        },
        "revenue": {
            "collected": collected,
            "outstanding": outstanding,
            "collected_display": format_currency(collected),
            "outstanding_display": format_currency(outstanding),
        },
    }


# Routes: Maintenance
@app.post("/maintenance/reconcile")
def reconcile(user=Depends(get_current_user), db=Depends(get_db)):
    require_role(user, (SUPER_ADMIN,))
    return {
        "invoices_generated": lifecycle.reconcile_won_quotations(db),
        "payments_corrected": payments.reconcile_all_payments(db),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
