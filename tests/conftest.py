import mongomock
import pytest
import requests
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password, token_claims
from database import create_document, ensure_indexes, get_db
from main import app
from schemas import ProductCreate, User
from storage import SupabaseStorage, get_storage

STORAGE_URL = "https://project-ref.supabase.co"
PASSWORD = "s3cret-pass"


def image_url(path: str) -> str:
    return f"{STORAGE_URL}/storage/v1/object/public/images/{path}"


class RecordingStorage(SupabaseStorage):
    """Blob store double that records deletes instead of calling Supabase."""

    def __init__(self):
        super().__init__(STORAGE_URL, "service-key", bucket="images")
        self.fail = False
        self.removed = []

    def remove(self, keys):
        if self.fail:
            raise requests.ConnectionError("storage unreachable")
        self.removed.extend(keys)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["commerce_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def client(db, storage):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def product_payload():
    def build(**overrides):
        payload = {
            "productID": "PRD000001",
            "name": "Desk Lamp",
            "description": "Adjustable LED desk lamp with dimmer",
            "price": 100,
            "labelledPrice": 120,
            "category": "Lighting",
            "brand": "Lumo",
            "stock": 5,
            "isAvailable": True,
            "images": [image_url("products/lamp%20front.png"), image_url("products/lamp-side.png")],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def make_product(db, product_payload):
    def make(**overrides):
        doc = ProductCreate.model_validate(product_payload(**overrides)).to_document()
        return create_document(db, "product", doc)

    return make


@pytest.fixture
def make_user(db):
    def make(email="alice@mail.com", role="customer", password=PASSWORD, **extra):
        user = User(
            email=email,
            first_name=extra.pop("first_name", "Alice"),
            last_name=extra.pop("last_name", "Smith"),
            password=hash_password(password),
            role=role,
            image=extra.pop("image", [image_url("ProfilePictures/alice.png")]),
        )
        doc = user.model_dump(by_alias=True)
        doc.update(extra)
        return create_document(db, "user", doc)

    return make


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(token_claims(user))}"}


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="root@mail.com", role="admin", first_name="Root", last_name="Admin")


@pytest.fixture
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)
