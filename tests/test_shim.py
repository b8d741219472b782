from access import FilterContext
from gateway import Gateway
from onboarding import complete_onboarding
from shim import Shim


def test_create_and_read_in_snake_case(db, alice):
    clients = Shim(db).clients
    created = clients.create({"client_name": "Acme Events", "client_email": "events@acme.mu", "client_brn": "C12345678", "user_id": alice["id"]})

    stored = Gateway(db, "clients").get(created["id"])
    assert stored["clientName"] == "Acme Events"
    assert stored["clientBRN"] == "C12345678"
    assert stored["createdBy"] == alice["id"]

    assert created["client_brn"] == "C12345678"
    assert created["user_id"] == alice["id"]
    assert "created_at" in created


def test_get_all_applies_role_filter(db, alice, bob):
    clients = Shim(db).clients
    clients.create({"client_name": "Mine", "client_email": "m@acme.mu", "user_id": alice["id"]})
    clients.create({"client_name": "Theirs", "client_email": "t@acme.mu", "user_id": bob["id"]})
    names = [c["client_name"] for c in clients.get_all(FilterContext.for_user(alice))]
    assert names == ["Mine"]


def test_update_returns_fresh_record(db, alice):
    clients = Shim(db).clients
    created = clients.create({"client_name": "Acme", "client_email": "a@acme.mu", "user_id": alice["id"]})
    updated = clients.update(created["id"], {"client_phone": "+230 5555 0000"})
    assert updated["client_phone"] == "+230 5555 0000"
    assert updated["updated_at"] is not None


def test_missing_record_reads_as_none(db):
    shim = Shim(db)
    assert shim.clients.get_by_id("missing") is None
    assert shim.invoices.get_by_id("missing") is None


def test_users_never_expose_password_fields(db, alice):
    record = Shim(db).users.get_by_id(alice["id"])
    assert record["email"] == "alice@fids.mu"
    assert "password_hash" not in record
    assert "password_salt" not in record


def test_profiles(db, alice):
    profiles = Shim(db).profiles
    assert profiles.get(alice["id"]) is None

    complete_onboarding(db, alice, {"businessName": "FIDS", "brn": "C12345678", "position": "Director"}, [])
    profile = profiles.get(alice["id"])
    assert profile["business_name"] == "FIDS"
    assert profile["role"] == "Director"
    assert profile["onboarding_completed"] is True

    updated = profiles.update(alice["id"], {"vat_no": "VAT123", "business_name": None})
    assert updated["vat_no"] == "VAT123"
    assert updated["business_name"] == "FIDS"
