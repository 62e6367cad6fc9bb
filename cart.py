"""
Per-user shopping cart.

The cart only stores (product_id, quantity) lines. Price, title and
availability are read from the product collection on every call, and lines
whose product vanished, left "approved" or became unavailable are pruned.
Surviving lines are clamped to current stock, and the reconciled list is what
gets written back, on reads and on every cart write alike.
"""
import logging
from typing import Any, Dict, List

from database import to_object_id
from errors import CartOrItemNotFound, InsufficientQuantity, InvalidInput, ProductNotFound, ProductUnavailable, UserNotFound
from schemas import CartItem
from stores import CartStore, ProductStore, UserStore

logger = logging.getLogger(__name__)


def is_purchasable(product) -> bool:
    return bool(product) and product.get("status") == "approved" and bool(product.get("is_available"))


def _product_view(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(product["_id"]),
        "title": product.get("title"),
        "description": product.get("description"),
        "price": product.get("price"),
        "images": product.get("images", []),
        "condition": product.get("condition"),
        "quantity": product.get("quantity", 0),
        "seller_id": str(product["seller_id"]) if product.get("seller_id") else None,
        "seller_email": product.get("seller_email"),
    }


class CartService:
    def __init__(self, carts: CartStore, products: ProductStore, users: UserStore):
        self.carts = carts
        self.products = products
        self.users = users

    def _require_user(self, user_id):
        if not self.users.find_by_id(user_id):
            raise UserNotFound()

    def _present(self, user_id, items: List[Dict[str, Any]], save: bool = False) -> Dict[str, Any]:
        """
        Reconcile lines against current products and enrich the rest.

        Lines whose product can no longer be bought are dropped and the others
        are clamped to current stock. The reconciled list is written back when
        it differs from `items` or when `save` is set, so no write ever
        persists a line above its product's quantity.
        """
        products = self.products.fetch_products_with_sellers(i["product_id"] for i in items)
        valid = []
        for item in items:
            product = products.get(item["product_id"])
            if not is_purchasable(product):
                continue
            quantity = min(item["quantity"], product.get("quantity", 0))
            if quantity < 1:
                continue
            valid.append(dict(item, quantity=quantity))
        if valid != items:
            stale = sum(1 for i in items if i not in valid)
            logger.warning("Pruned or clamped %d stale item(s) in cart of user %s", stale, user_id)
            save = True
        if save:
            self.carts.save_items(user_id, valid)

        lines = []
        total_items = 0
        total_price = 0.0
        for item in valid:
            product = products[item["product_id"]]
            lines.append({
                "product_id": str(item["product_id"]),
                "quantity": item["quantity"],
                "product": _product_view(product),
            })
            total_items += item["quantity"]
            total_price += float(product.get("price", 0)) * item["quantity"]
        return {"items": lines, "total_items": total_items, "total_price": round(total_price, 2)}

    def get_cart(self, user_id) -> Dict[str, Any]:
        self._require_user(user_id)
        cart = self.carts.get_or_create(user_id)
        return self._present(user_id, cart.get("items", []))

    def add_item(self, user_id, product_id, quantity: int = 1) -> Dict[str, Any]:
        self._require_user(user_id)
        pid = to_object_id(product_id)
        product = self.products.find_by_id(pid)
        if not product:
            raise ProductNotFound()
        if not is_purchasable(product):
            raise ProductUnavailable()
        if quantity < 1:
            raise InvalidInput("Quantity must be at least 1")
        stock = product.get("quantity", 0)
        if quantity > stock:
            raise InsufficientQuantity(details={"available": stock, "requested": quantity})

        cart = self.carts.get_or_create(user_id)
        items = list(cart.get("items", []))
        for item in items:
            if item["product_id"] == pid:
                new_quantity = item["quantity"] + quantity
                if new_quantity > stock:
                    raise InsufficientQuantity(details={"available": stock, "requested": new_quantity})
                item["quantity"] = new_quantity
                break
        else:
            items.append(CartItem(product_id=pid, quantity=quantity).model_dump())

        return self._present(user_id, items, save=True)

    def update_item(self, user_id, product_id, quantity: int) -> Dict[str, Any]:
        self._require_user(user_id)
        if quantity < 1:
            raise InvalidInput("Quantity must be at least 1")
        cart = self.carts.find_by_user_id(user_id)
        if not cart:
            raise CartOrItemNotFound()
        pid = to_object_id(product_id)
        items = list(cart.get("items", []))
        line = next((i for i in items if i["product_id"] == pid), None)
        if line is None:
            raise CartOrItemNotFound("Item not found in cart", code="CART_ITEM_NOT_FOUND")

        product = self.products.find_by_id(pid)
        if not product:
            raise ProductNotFound()
        stock = product.get("quantity", 0)
        if quantity > stock:
            raise InsufficientQuantity(details={"available": stock, "requested": quantity})

        line["quantity"] = quantity
        return self._present(user_id, items, save=True)

    def remove_item(self, user_id, product_id) -> Dict[str, Any]:
        self._require_user(user_id)
        cart = self.carts.pull_item(user_id, product_id)
        if not cart:
            raise CartOrItemNotFound()
        return self._present(user_id, cart.get("items", []))

    def clear_cart(self, user_id) -> Dict[str, Any]:
        self._require_user(user_id)
        self.carts.save_items(user_id, [])
        return {"items": [], "total_items": 0, "total_price": 0.0}
