import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from database import LOCAL, SESSION, Storage, Transaction
from errors import InsufficientStockError, InvalidQuantityError, ProductNotFoundError
from products import ProductRepository
from schemas import CartItem, CartProduct

logger = logging.getLogger(__name__)

CART_KEY = "cart"
GUEST_CART_KEY = "guest_cart"
CART_MERGES_KEY = "cart_merges"
MAX_MERGE_MARKERS = 20

CartListener = Callable[[str, List[Dict[str, Any]]], None]


class CartService:
    """
    Line items per owner. A signed-in user's cart lives in the durable
    ``cart`` map keyed by user id; a guest cart lives in the session store
    under ``guest_cart`` keyed by session id.

    An emptied guest cart is dropped from the session store.

    Every mutation is broadcast to the listeners registered with subscribe(),
    after the transaction that made it has committed.
    """

    def __init__(self, storage: Storage, products: ProductRepository):
        self.storage = storage
        self.products = products
        self._listeners: List[CartListener] = []

    def subscribe(self, listener: CartListener) -> CartListener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: CartListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, owner: str, cart: List[Dict[str, Any]]) -> None:
        tx = self.storage.current()
        if tx is not None:
            tx.on_commit(lambda: self._broadcast(owner, cart))
            return
        self._broadcast(owner, cart)

    def _broadcast(self, owner: str, cart: List[Dict[str, Any]]) -> None:
        for listener in list(self._listeners):
            try:
                listener(owner, cart)
            except Exception:
                logger.exception("Cart listener %r failed", listener)

    @staticmethod
    def _scope(user_id: Optional[str], session_id: Optional[str]) -> Tuple[str, str, str]:
        if user_id:
            return LOCAL, CART_KEY, user_id
        if session_id:
            return SESSION, GUEST_CART_KEY, session_id
        raise ValueError("A user id or a guest session id is required")

    @staticmethod
    def _load(tx: Transaction, scope: str, key: str, owner: str) -> List[Dict[str, Any]]:
        return tx.get(key, {}, scope).get(owner, [])

    @staticmethod
    def _save(tx: Transaction, scope: str, key: str, owner: str, cart: List[Dict[str, Any]]) -> None:
        carts = tx.get(key, {}, scope)
        if cart or scope == LOCAL:
            carts[owner] = cart
        else:
            carts.pop(owner, None)
        tx.set(key, carts, scope)

    def get_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        scope, key, owner = self._scope(user_id, session_id)
        return self.storage.get(key, {}, scope).get(owner, [])

    def get_cart_total(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> float:
        return cart_total(self.get_cart(user_id, session_id))

    def get_cart_item_count(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> int:
        return sum(item.get("quantity", 0) for item in self.get_cart(user_id, session_id))

    def add_to_cart(self, product_id: str, quantity: int = 1, user_id: Optional[str] = None,
                    session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if quantity < 1:
            raise InvalidQuantityError(f"Quantity must be at least 1 (got {quantity})")
        scope, key, owner = self._scope(user_id, session_id)
        with self.storage.transaction() as tx:
            product = self.products.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            cart = self._load(tx, scope, key, owner)
            existing = next((item for item in cart if item["product"]["id"] == product_id), None)
            new_quantity = quantity + (existing["quantity"] if existing else 0)
            stock = product.get("stock")
            if stock is not None and new_quantity > stock:
                raise InsufficientStockError(stock)
            if existing:
                existing["quantity"] = new_quantity
            else:
                item = CartItem(product=CartProduct(**product), quantity=quantity)
                cart.append(item.model_dump())
            self._save(tx, scope, key, owner, cart)
        self._notify(owner, cart)
        return cart

    def update_cart_item_quantity(self, product_id: str, quantity: int, user_id: Optional[str] = None,
                                  session_id: Optional[str] = None) -> bool:
        if quantity <= 0:
            return self.remove_from_cart(product_id, user_id=user_id, session_id=session_id)
        scope, key, owner = self._scope(user_id, session_id)
        with self.storage.transaction() as tx:
            cart = self._load(tx, scope, key, owner)
            item = next((i for i in cart if i["product"]["id"] == product_id), None)
            if item is None:
                return False
            product = self.products.get_product(product_id)
            stock = product.get("stock") if product else None
            if stock is not None and quantity > stock:
                raise InsufficientStockError(stock)
            item["quantity"] = quantity
            self._save(tx, scope, key, owner, cart)
        self._notify(owner, cart)
        return True

    def remove_from_cart(self, product_id: str, user_id: Optional[str] = None,
                         session_id: Optional[str] = None) -> bool:
        scope, key, owner = self._scope(user_id, session_id)
        with self.storage.transaction() as tx:
            cart = self._load(tx, scope, key, owner)
            remaining = [i for i in cart if i["product"]["id"] != product_id]
            if len(remaining) == len(cart):
                return False
            self._save(tx, scope, key, owner, remaining)
        self._notify(owner, remaining)
        return True

    def clear_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> bool:
        scope, key, owner = self._scope(user_id, session_id)
        with self.storage.transaction() as tx:
            self._save(tx, scope, key, owner, [])
        self._notify(owner, [])
        return True

    def clean_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Drop malformed entries (no product, non-numeric price, quantity < 1)."""
        scope, key, owner = self._scope(user_id, session_id)
        with self.storage.transaction() as tx:
            cart = self._load(tx, scope, key, owner)
            cleaned = [item for item in cart if _is_valid_item(item)]
            if len(cleaned) != len(cart):
                logger.warning("Removed %d invalid item(s) from cart of %s", len(cart) - len(cleaned), owner)
                self._save(tx, scope, key, owner, cleaned)
        if len(cleaned) != len(cart):
            self._notify(owner, cleaned)
        return cleaned

    def migrate_guest_cart(self, user_id: str, session_id: str) -> bool:
        """Fold the guest cart of ``session_id`` into the cart of ``user_id``.

        The guest cart is deleted in the same commit and the session id is
        remembered per user, so calling this twice for one login merges once.
        Returns True when a merge happened.
        """
        with self.storage.transaction() as tx:
            merges = tx.get(CART_MERGES_KEY, {})
            done = merges.get(user_id, [])
            if session_id in done:
                return False
            guest_cart = self._load(tx, SESSION, GUEST_CART_KEY, session_id)
            if not guest_cart:
                return False

            user_cart = self._load(tx, LOCAL, CART_KEY, user_id)
            by_product = {item["product"]["id"]: item for item in user_cart}
            for guest_item in guest_cart:
                existing = by_product.get(guest_item["product"]["id"])
                if existing:
                    existing["quantity"] += guest_item["quantity"]
                else:
                    user_cart.append(guest_item)
                    by_product[guest_item["product"]["id"]] = guest_item
            self._save(tx, LOCAL, CART_KEY, user_id, user_cart)

            guest_carts = tx.get(GUEST_CART_KEY, {}, SESSION)
            guest_carts.pop(session_id, None)
            tx.set(GUEST_CART_KEY, guest_carts, SESSION)

            merges[user_id] = (done + [session_id])[-MAX_MERGE_MARKERS:]
            tx.set(CART_MERGES_KEY, merges)
        logger.info("Merged %d guest line(s) from session %s into cart of %s", len(guest_cart), session_id, user_id)
        self._notify(user_id, user_cart)
        return True


def cart_total(cart: List[Dict[str, Any]]) -> float:
    total = 0.0
    for item in cart:
        product = item.get("product") or {}
        try:
            total += float(product.get("price", 0)) * int(item.get("quantity", 1))
        except (TypeError, ValueError):
            continue
    return round(total, 2)


def _is_valid_item(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    product = item.get("product")
    if not isinstance(product, dict) or not product.get("id"):
        return False
    price = product.get("price")
    quantity = item.get("quantity")
    return isinstance(price, (int, float)) and isinstance(quantity, int) and quantity > 0
