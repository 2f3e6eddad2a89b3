"""
Cart operations on the cart embedded in each user document.

Every mutation is a read-modify-write of the whole ``cart`` array guarded by
the user's ``cartVersion`` counter: the write only lands if nobody else wrote
the cart in between, otherwise the mutation is recomputed from fresh state.
Line items are unique per ``productId`` and keep the price captured when the
product was first added.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database

from database import now
from errors import Conflict, NotFound, OutOfStock, ValidationFailed
from schemas import CartItem

logger = logging.getLogger(__name__)

MAX_CART_RETRIES = 5

Cart = List[Dict[str, Any]]


def _find_line(cart: Cart, product_id: str) -> Optional[int]:
    for index, line in enumerate(cart):
        if line.get("productId") == product_id:
            return index
    return None


def _load_user(db: Database, email: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email}, {"cart": 1, "cartVersion": 1})
    if not user:
        raise NotFound("User not found")
    return user


def _load_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"productID": product_id})
    if not product:
        raise NotFound("Product not found")
    return product


def _check_stock(product: Dict[str, Any], total: int) -> None:
    if not product.get("isAvailable", False) or int(product.get("stock", 0)) < total:
        raise OutOfStock()


def _new_line(product: Dict[str, Any], quantity: int) -> Dict[str, Any]:
    line = CartItem(product_id=product["productID"], quantity=quantity, price=product["price"])
    return line.model_dump(by_alias=True)


def _mutate_cart(db: Database, email: str, mutate: Callable[[Cart], Cart]) -> Cart:
    users = db["user"]
    for _ in range(MAX_CART_RETRIES):
        user = _load_user(db, email)
        cart = [dict(line) for line in user.get("cart") or []]
        new_cart = mutate(cart)
        if "cartVersion" in user:
            version = user["cartVersion"]
        else:
            version = {"$exists": False}
        result = users.update_one(
            {"_id": user["_id"], "cartVersion": version},
            {"$set": {"cart": new_cart, "updatedAt": now()}, "$inc": {"cartVersion": 1}},
        )
        if result.matched_count:
            return new_cart
        logger.debug("Cart for %s changed concurrently, retrying", email)
    raise Conflict("Cart was modified concurrently, please retry")


def get_cart(db: Database, email: str) -> Cart:
    return list(_load_user(db, email).get("cart") or [])


def add_to_cart(db: Database, email: str, product_id: str, quantity: int = 1) -> Cart:
    """Add ``quantity`` units, merging into an existing line.

    The stock check covers the resulting line total, not just the units
    being added.
    """
    if quantity is None:
        quantity = 1
    if quantity <= 0:
        raise ValidationFailed("Quantity must be at least 1")
    product = _load_product(db, product_id)
    _check_stock(product, quantity)

    def mutate(cart: Cart) -> Cart:
        index = _find_line(cart, product_id)
        if index is None:
            cart.append(_new_line(product, quantity))
            return cart
        total = int(cart[index].get("quantity", 0)) + quantity
        _check_stock(product, total)
        cart[index]["quantity"] = total
        return cart

    return _mutate_cart(db, email, mutate)


def set_cart_quantity(db: Database, email: str, product_id: str, quantity: int) -> Cart:
    """Set the absolute quantity of a line; 0 removes it."""
    if quantity < 0:
        raise ValidationFailed("Quantity cannot be negative")
    product = None
    if quantity > 0:
        product = _load_product(db, product_id)
        _check_stock(product, quantity)

    def mutate(cart: Cart) -> Cart:
        if quantity == 0:
            return [line for line in cart if line.get("productId") != product_id]
        index = _find_line(cart, product_id)
        if index is None:
            cart.append(_new_line(product, quantity))
        else:
            cart[index]["quantity"] = quantity
        return cart

    return _mutate_cart(db, email, mutate)


def remove_from_cart(db: Database, email: str, product_id: str) -> Cart:
    def mutate(cart: Cart) -> Cart:
        if _find_line(cart, product_id) is None:
            raise NotFound("Item not found in cart")
        return [line for line in cart if line.get("productId") != product_id]

    return _mutate_cart(db, email, mutate)


def clear_cart(db: Database, email: str) -> Cart:
    return _mutate_cart(db, email, lambda cart: [])
