import copy

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from cart import CartService
from categories import CategoryService
from database import create_document, ensure_indexes
from main import app, create_access_token, get_db
from products import ProductService
from profiles import ProfileService
from stores import CartStore, CategoryStore, ProductStore, ShippingAddressStore, UserStore

COMPLETE_PROFILE = {
    "full_name": "Nguyen Van A",
    "phone": "0901234567",
    "avatar": None,
    "address": {"province": "Ha Noi", "district": "Ba Dinh", "ward": "Kim Ma", "street": None},
}

COMPLETE_SELLER_INFO = {
    "shop_name": "A's closet",
    "trading_area": "Ha Noi",
    "agreements": {"terms_accepted": True, "no_prohibited_items": True},
}


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["market_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def make_user(db):
    def _make(role="user", **fields):
        doc = {
            "email": f"{ObjectId()}@example.com",
            "password_hash": "x" * 20,
            "role": role,
            "is_locked": False,
            "profile": {},
            "seller_info": {},
        }
        doc.update(fields)
        return create_document(db, "user", doc)
    return _make


@pytest.fixture
def make_product(db, make_user):
    def _make(seller=None, **fields):
        seller = seller or make_user()
        doc = {
            "title": "Denim jacket",
            "description": "Worn twice",
            "category_id": ObjectId(),
            "price": 150.0,
            "condition": "good",
            "images": ["https://img.example.com/1.jpg"],
            "defect_images": [],
            "quantity": 4,
            "seller_id": seller["_id"],
            "status": "approved",
            "is_available": True,
        }
        doc.update(fields)
        return create_document(db, "product", doc)
    return _make


@pytest.fixture
def category_service(db):
    return CategoryService(CategoryStore(db))


@pytest.fixture
def cart_service(db):
    users = UserStore(db)
    return CartService(CartStore(db), ProductStore(db, users), users)


@pytest.fixture
def profile_service(db):
    return ProfileService(UserStore(db), ShippingAddressStore(db))


@pytest.fixture
def product_service(db, profile_service):
    users = UserStore(db)
    return ProductService(ProductStore(db, users), CategoryStore(db), users, profile_service)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user["_id"]), "role": user["role"]})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def seller(make_user):
    return make_user(profile=copy.deepcopy(COMPLETE_PROFILE), seller_info=copy.deepcopy(COMPLETE_SELLER_INFO))
