import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import create_user, open_session
from database import ensure_indexes, get_db
from onboarding import create_product


@pytest.fixture
def db():
    database = mongomock.MongoClient().get_database("testing")
    ensure_indexes(database)
    return database


@pytest.fixture
def super_admin(db):
    return create_user(db, None, "Root Admin", "root@fids.mu", "secret-root", role="Super Admin")


@pytest.fixture
def admin(db):
    return create_user(db, None, "Company Admin", "admin@fids.mu", "secret-admin", role="Admin", company_id="acme")


@pytest.fixture
def alice(db):
    return create_user(db, None, "Alice", "alice@fids.mu", "secret-alice", company_id="acme")


@pytest.fixture
def bob(db):
    return create_user(db, None, "Bob", "bob@fids.mu", "secret-bob", company_id="acme")


@pytest.fixture
def stand(db, alice):
    return create_product(db, alice, {"name": "Expo Stand", "type": "Service", "description": "3x3 stand", "unitPrice": 90000, "bulkPrice": 80000, "minOrder": 1, "inventory": 0})


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def auth_headers(db, user):
    return {"Authorization": f"Bearer {open_session(db, user['id'])}"}


def quotation_data(product, quantity=1, unit_price=90000, discount=0, **extra):
    data = {
        "clientName": "Acme Events",
        "clientEmail": "events@acme.mu",
        "items": [{"productTypeId": product["id"], "quantity": quantity, "unitPrice": unit_price}],
        "discount": discount,
    }
    data.update(extra)
    return data
