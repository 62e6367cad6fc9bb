"""
Store adapters over the MongoDB collections.

Services never touch `db[...]` directly; they get one of these stores. Any
read that joins documents from another collection is a named method here
(e.g. ProductStore.fetch_products_with_sellers) so the join is visible.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, to_object_id
from schemas import Cart, Category, Product, ShippingAddress, User

Doc = Dict[str, Any]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserStore:
    def __init__(self, db: Database):
        self.collection = db["user"]
        self.db = db

    def find_by_id(self, user_id) -> Optional[Doc]:
        return self.collection.find_one({"_id": to_object_id(user_id)})

    def find_by_email(self, email: str) -> Optional[Doc]:
        return self.collection.find_one({"email": email})

    def create(self, user: User) -> Doc:
        return create_document(self.db, "user", user)

    def set_fields(self, user_id, fields: Doc) -> Optional[Doc]:
        fields = dict(fields, updated_at=_now())
        return self.collection.find_one_and_update(
            {"_id": to_object_id(user_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def find_emails(self, user_ids: Iterable[ObjectId]) -> Dict[ObjectId, str]:
        ids = list({i for i in user_ids if i is not None})
        if not ids:
            return {}
        docs = self.collection.find({"_id": {"$in": ids}}, {"email": 1})
        return {d["_id"]: d.get("email") for d in docs}


class CategoryStore:
    def __init__(self, db: Database):
        self.collection = db["category"]
        self.db = db

    def find_by_id(self, category_id) -> Optional[Doc]:
        return self.collection.find_one({"_id": to_object_id(category_id)})

    def slug_exists(self, slug: str) -> bool:
        return self.collection.find_one({"slug": slug.lower()}, {"_id": 1}) is not None

    def find_sibling(self, parent_id: Optional[ObjectId], name: str) -> Optional[Doc]:
        return self.collection.find_one({"parent_id": parent_id, "name": name.strip()})

    def insert(self, category: Category) -> Doc:
        # raises pymongo.errors.DuplicateKeyError when a unique index fires
        return create_document(self.db, "category", category)

    def find_all(self, is_active: Optional[bool] = None, parent_id: Optional[ObjectId] = None) -> List[Doc]:
        query: Doc = {"parent_id": parent_id}
        if is_active is not None:
            query["is_active"] = is_active
        return get_documents(
            self.db, "category", query,
            sort=[("sort_order", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)],
        )

    def find_descendants(self, path: str, is_active: Optional[bool] = None) -> List[Doc]:
        query: Doc = {"path": {"$regex": "^" + re.escape(path) + "/"}}
        if is_active is not None:
            query["is_active"] = is_active
        return get_documents(
            self.db, "category", query,
            sort=[("level", ASCENDING), ("sort_order", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)],
        )

    def fetch_names(self, category_ids: Iterable[ObjectId]) -> Dict[ObjectId, str]:
        ids = list({i for i in category_ids if i is not None})
        if not ids:
            return {}
        return {d["_id"]: d.get("name") for d in self.collection.find({"_id": {"$in": ids}}, {"name": 1})}


class ProductStore:
    VISIBLE = {"status": "approved", "is_available": True}

    def __init__(self, db: Database, users: Optional[UserStore] = None):
        self.collection = db["product"]
        self.db = db
        self.users = users or UserStore(db)

    def find_by_id(self, product_id) -> Optional[Doc]:
        return self.collection.find_one({"_id": to_object_id(product_id)})

    def find_by_seller_id(self, seller_id) -> List[Doc]:
        return get_documents(
            self.db, "product", {"seller_id": to_object_id(seller_id)},
            sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
        )

    def find_visible_page(self, skip: int, limit: int) -> List[Doc]:
        return get_documents(
            self.db, "product", dict(self.VISIBLE),
            sort=[("created_at", DESCENDING), ("_id", DESCENDING)], skip=skip, limit=limit,
        )

    def count_visible(self) -> int:
        return self.collection.count_documents(dict(self.VISIBLE))

    def insert(self, product: Product) -> Doc:
        return create_document(self.db, "product", product)

    def fetch_products_with_sellers(self, product_ids: Iterable[ObjectId]) -> Dict[ObjectId, Doc]:
        """Products by id, each with `seller_email` joined from the user store."""
        ids = list({i for i in product_ids if i is not None})
        if not ids:
            return {}
        products = {p["_id"]: p for p in self.collection.find({"_id": {"$in": ids}})}
        emails = self.users.find_emails(p.get("seller_id") for p in products.values())
        for p in products.values():
            p["seller_email"] = emails.get(p.get("seller_id"))
        return products


class CartStore:
    def __init__(self, db: Database):
        self.collection = db["cart"]

    def find_by_user_id(self, user_id) -> Optional[Doc]:
        return self.collection.find_one({"user_id": to_object_id(user_id)})

    def get_or_create(self, user_id) -> Doc:
        uid = to_object_id(user_id)
        now = _now()
        on_insert = Cart(user_id=uid).model_dump(exclude={"user_id"})
        on_insert["created_at"] = now
        on_insert["updated_at"] = now
        return self.collection.find_one_and_update(
            {"user_id": uid},
            {"$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def save_items(self, user_id, items: List[Doc]) -> Doc:
        return self.collection.find_one_and_update(
            {"user_id": to_object_id(user_id)},
            {"$set": {"items": items, "updated_at": _now()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def pull_item(self, user_id, product_id) -> Optional[Doc]:
        return self.collection.find_one_and_update(
            {"user_id": to_object_id(user_id)},
            {"$pull": {"items": {"product_id": to_object_id(product_id)}}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )


class ShippingAddressStore:
    # The address holding a flag also carries the owner's id under the flag's
    # key. Sparse unique indexes on those keys (see database.ensure_indexes)
    # let at most one address per user hold each flag.
    FLAG_KEYS = {"is_default": "default_of", "is_default_pickup": "default_pickup_of"}

    def __init__(self, db: Database):
        self.collection = db["shippingaddress"]
        self.db = db

    def _flag_keys(self, fields: Doc, user_id) -> Doc:
        for flag, key in self.FLAG_KEYS.items():
            if fields.get(flag):
                fields[key] = to_object_id(user_id)
        return fields

    def find_by_user_id(self, user_id) -> List[Doc]:
        return get_documents(
            self.db, "shippingaddress", {"user_id": to_object_id(user_id)},
            sort=[("is_default", DESCENDING), ("created_at", DESCENDING)],
        )

    def find_for_user(self, address_id, user_id) -> Optional[Doc]:
        return self.collection.find_one({"_id": to_object_id(address_id), "user_id": to_object_id(user_id)})

    def has_default(self, user_id) -> bool:
        return self.collection.find_one({"user_id": to_object_id(user_id), "is_default": True}, {"_id": 1}) is not None

    def count_for_user(self, user_id) -> int:
        return self.collection.count_documents({"user_id": to_object_id(user_id)})

    def insert(self, address: ShippingAddress) -> Doc:
        # raises pymongo.errors.DuplicateKeyError when another address took a flag first
        doc = self._flag_keys(address.model_dump(), address.user_id)
        return create_document(self.db, "shippingaddress", doc)

    def set_fields(self, address_id, fields: Doc, user_id=None) -> Optional[Doc]:
        fields = dict(fields, updated_at=_now())
        if user_id is not None:
            self._flag_keys(fields, user_id)
        return self.collection.find_one_and_update(
            {"_id": to_object_id(address_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, address_id) -> bool:
        return self.collection.delete_one({"_id": to_object_id(address_id)}).deleted_count == 1

    def unset_flag(self, user_id, flag: str, except_id: Optional[ObjectId] = None) -> None:
        query: Doc = {"user_id": to_object_id(user_id), flag: True}
        if except_id is not None:
            query["_id"] = {"$ne": except_id}
        self.collection.update_many(
            query,
            {"$set": {flag: False, "updated_at": _now()}, "$unset": {self.FLAG_KEYS[flag]: ""}},
        )
