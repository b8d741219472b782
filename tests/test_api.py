import pytest

from auth import create_user
from gateway import Gateway
from onboarding import complete_onboarding
from shim import Shim

from .conftest import auth_headers


@pytest.fixture
def alice_headers(db, alice):
    return auth_headers(db, alice)


@pytest.fixture
def won_invoice(client, alice_headers, stand):
    created = client.post("/clients", json={"client_name": "Acme Events", "client_email": "events@acme.mu", "client_brn": "C12345678"}, headers=alice_headers)
    quotation = client.post("/quotations", json={
        "client_id": created.json()["id"],
        "items": [{"product_type_id": stand["id"], "quantity": 1, "unit_price": 90000}],
    }, headers=alice_headers).json()
    result = client.patch(f"/quotations/{quotation['id']}/status", json={"status": "Won"}, headers=alice_headers).json()
    return result["invoice"]["invoice_id"]


def test_root(client):
    assert client.get("/").status_code == 200


def test_login_and_me(client, alice):
    response = client.post("/auth/login", json={"email": "alice@fids.mu", "password": "secret-alice"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == alice["id"]
    assert "password_hash" not in body["user"]

    headers = {"Authorization": f"Bearer {body['token']}"}
    me = client.get("/auth/me", headers=headers)
    assert me.json()["email"] == "alice@fids.mu"

    client.post("/auth/logout", headers=headers)
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_login_with_wrong_password(client, alice):
    response = client.post("/auth/login", json={"email": "alice@fids.mu", "password": "wrong"})
    assert response.status_code == 401


def test_routes_require_a_token(client):
    assert client.get("/quotations").status_code == 401
    assert client.get("/quotations", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_quotation_to_invoice_to_payment(client, db, alice_headers, won_invoice):
    quotations = client.get("/quotations", headers=alice_headers).json()
    assert len(quotations) == 1
    quotation = quotations[0]
    assert quotation["status"] == "Won"
    assert quotation["grand_total"] == 103500
    assert quotation["vat_amount"] == 13500
    assert quotation["clients"]["client_brn"] == "C12345678"
    assert quotation["items"][0]["unit_price"] == 90000

    invoices = client.get("/invoices", headers=alice_headers).json()
    assert [i["id"] for i in invoices] == [won_invoice]
    assert invoices[0]["quotation_id"] == quotation["id"]
    assert invoices[0]["total_paid"] == 0
    assert invoices[0]["status"] == "To Send"

    paid = client.post(f"/invoices/{won_invoice}/payments", json={"amount": 50000}, headers=alice_headers)
    assert paid.status_code == 200
    assert paid.json()["invoice"]["status"] == "Partly Paid"
    assert paid.json()["receipt"]["invoice_id"] == won_invoice

    paid = client.post(f"/invoices/{won_invoice}/payments", json={"amount": 53500, "payment_method": "Bank Transfer"}, headers=alice_headers)
    assert paid.json()["invoice"]["status"] == "Fully Paid"
    assert paid.json()["invoice"]["total_paid"] == 103500

    receipts = client.get("/receipts", headers=alice_headers).json()
    assert sorted(r["amount"] for r in receipts) == [50000, 53500]


def test_won_again_does_not_duplicate_invoice(client, alice_headers, won_invoice):
    quotation_id = client.get("/quotations", headers=alice_headers).json()[0]["id"]
    client.patch(f"/quotations/{quotation_id}/status", json={"status": "Sent"}, headers=alice_headers)
    again = client.patch(f"/quotations/{quotation_id}/status", json={"status": "Won"}, headers=alice_headers).json()
    assert again["invoice"] == {"outcome": "exists", "invoice_id": won_invoice, "error": None}
    assert len(client.get("/invoices", headers=alice_headers).json()) == 1


def test_invalid_payment_amount(client, alice_headers, won_invoice):
    response = client.post(f"/invoices/{won_invoice}/payments", json={"amount": 0}, headers=alice_headers)
    assert response.status_code == 400
    assert "greater than zero" in response.json()["detail"]


def test_invalid_status_is_rejected(client, alice_headers, won_invoice):
    quotation_id = client.get("/quotations", headers=alice_headers).json()[0]["id"]
    response = client.patch(f"/quotations/{quotation_id}/status", json={"status": "Paid"}, headers=alice_headers)
    assert response.status_code == 422


def test_paid_status_cannot_be_set_by_hand(client, alice_headers, won_invoice):
    response = client.patch(f"/invoices/{won_invoice}/status", json={"status": "Fully Paid"}, headers=alice_headers)
    assert response.status_code == 400


def test_other_users_cannot_see_or_pay(client, db, bob, won_invoice):
    bob_headers = auth_headers(db, bob)
    assert client.get("/invoices", headers=bob_headers).json() == []
    assert client.get(f"/invoices/{won_invoice}", headers=bob_headers).status_code == 403
    assert client.post(f"/invoices/{won_invoice}/payments", json={"amount": 10}, headers=bob_headers).status_code == 403


def test_company_admin_sees_company_documents(client, db, admin, won_invoice):
    invoices = client.get("/invoices", headers=auth_headers(db, admin)).json()
    assert [i["id"] for i in invoices] == [won_invoice]


def test_missing_document(client, alice_headers):
    response = client.get("/invoices/INV-NONE", headers=alice_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Invoice INV-NONE not found"


def test_user_cannot_delete_documents(client, db, alice_headers, admin, won_invoice):
    quotation_id = client.get("/quotations", headers=alice_headers).json()[0]["id"]
    assert client.delete(f"/quotations/{quotation_id}", headers=alice_headers).status_code == 403
    assert client.delete(f"/invoices/{won_invoice}", headers=alice_headers).status_code == 403

    admin_headers = auth_headers(db, admin)
    assert client.delete(f"/quotations/{quotation_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/invoices/{won_invoice}", headers=admin_headers).status_code == 200
    assert Gateway(db, "invoices").find({}) == []


def test_only_super_admin_deletes_clients(client, db, alice_headers, admin, super_admin):
    client_id = client.post("/clients", json={"client_name": "Acme", "client_email": "a@acme.mu"}, headers=alice_headers).json()["id"]
    assert client.delete(f"/clients/{client_id}", headers=auth_headers(db, admin)).status_code == 403
    assert client.delete(f"/clients/{client_id}", headers=auth_headers(db, super_admin)).status_code == 200


def test_invalid_brn(client, alice_headers):
    response = client.post("/clients", json={"client_name": "Acme", "client_email": "a@acme.mu", "client_brn": "12345"}, headers=alice_headers)
    assert response.status_code == 400


def test_quotation_needs_items(client, alice_headers):
    response = client.post("/quotations", json={"client_name": "Acme", "client_email": "a@acme.mu", "items": []}, headers=alice_headers)
    assert response.status_code == 422


def test_update_quotation_discount(client, alice_headers, stand):
    quotation = client.post("/quotations", json={
        "client_name": "Acme Events",
        "client_email": "events@acme.mu",
        "items": [{"product_type_id": stand["id"], "quantity": 1, "unit_price": 90000}],
    }, headers=alice_headers).json()
    updated = client.patch(f"/quotations/{quotation['id']}", json={"discount": 10000}, headers=alice_headers).json()
    assert updated["grand_total"] == 92000
    assert updated["clients"] is None


def test_products(client, alice_headers):
    created = client.post("/products", json={"name": "Mug", "type": "Physical", "unit_price": 50, "inventory": 5}, headers=alice_headers)
    assert created.status_code == 200
    product = created.json()
    assert product["rrp"] == 60
    assert product["min_order"] == 1

    updated = client.patch(f"/products/{product['id']}", json={"inventory": 0}, headers=alice_headers).json()
    assert updated["inventory"] == 0
    assert [p["name"] for p in client.get("/products", headers=alice_headers).json()] == ["Mug"]


def test_users_listing(client, db, super_admin, admin, alice, bob):
    assert client.get("/users", headers=auth_headers(db, alice)).status_code == 403

    company = client.get("/users", headers=auth_headers(db, admin)).json()
    assert sorted(u["email"] for u in company) == ["admin@fids.mu", "alice@fids.mu", "bob@fids.mu"]

    everyone = client.get("/users", headers=auth_headers(db, super_admin)).json()
    assert len(everyone) == 4


def test_admin_adds_user(client, db, admin):
    response = client.post("/users", json={"name": "Carol", "email": "carol@fids.mu", "password": "secret-carol"}, headers=auth_headers(db, admin))
    assert response.status_code == 200
    assert response.json()["company_id"] == "acme"

    again = client.post("/users", json={"name": "Carol", "email": "carol@fids.mu", "password": "secret-carol"}, headers=auth_headers(db, admin))
    assert again.status_code == 409


def test_onboarding_and_profile(client, db, alice, bob, alice_headers):
    response = client.post("/onboarding", json={
        "business": {
            "business_name": "FIDS",
            "business_address": "Port Louis",
            "brn": "C12345678",
            "telephone": "2085555",
            "position": "Director",
            "email": "info@fids.mu",
        },
        "products": [{"name": "Expo Stand", "type": "Service", "unit_price": 90000}],
    }, headers=alice_headers)
    assert response.status_code == 200
    assert response.json()["business"]["business_name"] == "FIDS"
    assert response.json()["products"][0]["user_id"] == alice["id"]

    me = client.get("/auth/me", headers=alice_headers).json()
    assert me["onboarding_completed"] is True
    assert me["business_details"]["business_name"] == "FIDS"

    profile = client.patch(f"/profiles/{alice['id']}", json={"vat_no": "VAT123"}, headers=alice_headers).json()
    assert profile["vat_no"] == "VAT123"
    assert client.patch(f"/profiles/{alice['id']}", json={"vat_no": "X"}, headers=auth_headers(db, bob)).status_code == 403


def test_missing_profile(client, alice, alice_headers):
    assert client.get(f"/profiles/{alice['id']}", headers=alice_headers).status_code == 404


def test_statements(client, alice_headers, won_invoice):
    client.post(f"/invoices/{won_invoice}/payments", json={"amount": 3500}, headers=alice_headers)
    statement = client.post("/statements/generate", json={"client_name": "Acme Events"}, headers=alice_headers).json()
    assert statement["amount"] == 100000
    assert statement["invoice_ids"] == [won_invoice]
    assert statement["status"] == "Draft"

    sent = client.patch(f"/statements/{statement['id']}/status", json={"status": "Sent"}, headers=alice_headers).json()
    assert sent["status"] == "Sent"

    missing = client.post("/statements/generate", json={"client_name": "Nobody"}, headers=alice_headers)
    assert missing.status_code == 400


def test_dashboard(client, alice_headers, won_invoice):
    client.post(f"/invoices/{won_invoice}/payments", json={"amount": 50000}, headers=alice_headers)
    summary = client.get("/dashboard", headers=alice_headers).json()
    assert summary["totals"]["quotations"] == 1
    assert summary["totals"]["won_quotations"] == 1
    assert summary["totals"]["unpaid_invoices"] == 1
    assert summary["revenue"]["collected"] == 50000
    assert summary["revenue"]["outstanding"] == 53500
    assert summary["revenue"]["collected_display"] == "MUR 50,000.00"


def test_reconcile_is_super_admin_only(client, db, alice_headers, super_admin):
    assert client.post("/maintenance/reconcile", headers=alice_headers).status_code == 403
    response = client.post("/maintenance/reconcile", headers=auth_headers(db, super_admin))
    assert response.json() == {"invoices_generated": [], "payments_corrected": []}


@pytest.fixture
def other_admin(db):
    return create_user(db, None, "Globex Admin", "admin@globex.mu", "secret-globex", role="Admin", company_id="globex")


def test_admin_of_another_company_cannot_delete(client, db, alice_headers, other_admin, won_invoice):
    headers = auth_headers(db, other_admin)
    quotation_id = client.get("/quotations", headers=alice_headers).json()[0]["id"]
    receipt_id = client.post(f"/invoices/{won_invoice}/payments", json={"amount": 10}, headers=alice_headers).json()["receipt"]["id"]

    assert client.get(f"/quotations/{quotation_id}", headers=headers).status_code == 403
    assert client.delete(f"/quotations/{quotation_id}", headers=headers).status_code == 403
    assert client.delete(f"/invoices/{won_invoice}", headers=headers).status_code == 403
    assert client.delete(f"/receipts/{receipt_id}", headers=headers).status_code == 403

    assert Gateway(db, "quotations").get(quotation_id) is not None
    assert Gateway(db, "invoices").get(won_invoice) is not None
    assert Gateway(db, "receipts").get(receipt_id) is not None


def test_profiles_are_private_to_owner_and_company_admins(client, db, alice, bob, admin, other_admin):
    complete_onboarding(db, alice, {"businessName": "FIDS", "brn": "C12345678", "vatNo": "VAT1"}, [])
    path = f"/profiles/{alice['id']}"

    assert client.get(path, headers=auth_headers(db, alice)).json()["vat_no"] == "VAT1"
    assert client.get(path, headers=auth_headers(db, admin)).status_code == 200

    assert client.get(path, headers=auth_headers(db, bob)).status_code == 403
    assert client.get(path, headers=auth_headers(db, other_admin)).status_code == 403
    assert client.patch(path, json={"vat_no": "X"}, headers=auth_headers(db, other_admin)).status_code == 403
    assert Shim(db).profiles.get(alice["id"])["vat_no"] == "VAT1"

    assert client.patch(path, json={"vat_no": "VAT2"}, headers=auth_headers(db, admin)).json()["vat_no"] == "VAT2"


def test_profile_of_unknown_user(client, alice_headers):
    assert client.get("/profiles/nobody", headers=alice_headers).status_code == 404
