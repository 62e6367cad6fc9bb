"""
Product listings: creation by eligible sellers and the public catalogue.

Self-listed products are approved on creation; there is no moderation queue.
"""
import logging
import math
from typing import Any, Dict, List

from database import to_object_id
from errors import CategoryNotFound, InvalidInput, ProductNotFound, ProfileIncomplete, UserLocked, UserNotFound
from profiles import ProfileService
from schemas import Product, ProductCreate
from stores import CategoryStore, ProductStore, UserStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 9


def check_listing_rules(data: Dict[str, Any]) -> None:
    """Domain rules a listing must satisfy regardless of how the payload was parsed."""
    defects = (data.get("defects") or "").strip()
    if data.get("condition") == "fair" and not defects:
        raise InvalidInput("Defects is required when condition is 'fair'",
                           details={"field_errors": {"defects": "Required when condition is 'fair'"}})
    if defects and not data.get("defect_images"):
        raise InvalidInput("At least one defect image is required when defects are specified",
                           details={"field_errors": {"defect_images": "At least one image required"}})
    if data.get("quantity", 0) < 0:
        raise InvalidInput("Quantity cannot be negative", details={"field_errors": {"quantity": "Must be >= 0"}})


class ProductService:
    def __init__(self, products: ProductStore, categories: CategoryStore, users: UserStore, profiles: ProfileService):
        self.products = products
        self.categories = categories
        self.users = users
        self.profiles = profiles

    def create_product(self, user_id, data: ProductCreate) -> Dict[str, Any]:
        user = self.users.find_by_id(user_id)
        if not user:
            raise UserNotFound()
        if user.get("is_locked"):
            raise UserLocked()

        eligibility = self.profiles.can_sell(user_id)
        if not eligibility["can_sell"]:
            raise ProfileIncomplete(details={
                "reason": eligibility.get("reason"),
                "missing_fields": eligibility.get("missing_fields", []),
            })

        fields = data.model_dump(mode="json")
        check_listing_rules(fields)

        category = self.categories.find_by_id(fields["category_id"])
        if not category or not category.get("is_active"):
            raise CategoryNotFound()

        fields["category_id"] = category["_id"]
        product = Product(**fields, seller_id=user["_id"], status="approved", is_available=True)
        doc = self.products.insert(product)
        logger.info("PRODUCT_CREATED product_id=%s seller_id=%s title=%r", doc["_id"], user_id, doc["title"])
        return doc

    def list_my_products(self, user_id) -> Dict[str, Any]:
        if not self.users.find_by_id(user_id):
            raise UserNotFound()
        products = self.products.find_by_seller_id(user_id)
        return {"products": products, "total": len(products)}

    def list_products(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise InvalidInput("Page and limit must be positive numbers")
        products = self.products.find_visible_page(skip=(page - 1) * limit, limit=limit)
        total = self.products.count_visible()
        self._join_names(products)
        return {
            "products": products,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }

    def get_product(self, product_id) -> Dict[str, Any]:
        product = self.products.find_by_id(to_object_id(product_id))
        if not product or product.get("status") != "approved" or not product.get("is_available"):
            raise ProductNotFound()
        self._join_names([product])
        return product

    def _join_names(self, products: List[Dict[str, Any]]) -> None:
        names = self.categories.fetch_names(p.get("category_id") for p in products)
        emails = self.users.find_emails(p.get("seller_id") for p in products)
        for p in products:
            p["category_name"] = names.get(p.get("category_id"))
            p["seller_email"] = emails.get(p.get("seller_id"))
