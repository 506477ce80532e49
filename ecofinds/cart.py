import logging
from typing import List, Optional

from ecofinds.models import CartItemDB, CartLine
from ecofinds.store import MarketplaceStore
from ecofinds.shared.utils import NotFoundException, ValidationException

logger = logging.getLogger(__name__)


def check_quantity(quantity) -> int:
    # bool is an int subclass; True is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationException(
            "Quantity must be a positive integer",
            details=[{"loc": ["quantity"], "msg": "must be a positive integer", "input": quantity}],
        )
    return quantity


class CartManager:
    """Per-user cart lines. Every mutation of one user's cart runs under that user's lock."""

    def __init__(self, store: MarketplaceStore):
        self.store = store

    def get_item(self, cart_item_id: int) -> Optional[CartItemDB]:
        return self.store.cart_items.get(cart_item_id)

    def items_for_user(self, user_id: int) -> List[CartItemDB]:
        return self.store.cart_items.find_by(lambda item: item.user_id == user_id)

    def find_line(self, user_id: int, product_id: int) -> Optional[CartItemDB]:
        return self.store.cart_items.find_first(
            lambda item: item.user_id == user_id and item.product_id == product_id
        )

    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> CartItemDB:
        check_quantity(quantity)
        with self.store.user_lock(user_id):
            existing = self.find_line(user_id, product_id)
            if existing:
                return self.store.cart_items.update(
                    existing.id, {"quantity": existing.quantity + quantity}
                )
            return self.store.cart_items.insert({
                "user_id": user_id,
                "product_id": product_id,
                "quantity": quantity,
            })

    def set_quantity(self, cart_item_id: int, quantity: int) -> CartItemDB:
        check_quantity(quantity)
        item = self.get_item(cart_item_id)
        if item is None:
            raise NotFoundException("Cart item not found")
        with self.store.user_lock(item.user_id):
            updated = self.store.cart_items.update(cart_item_id, {"quantity": quantity})
        if updated is None:
            # Removed while we waited for the lock
            raise NotFoundException("Cart item not found")
        return updated

    def remove(self, cart_item_id: int) -> bool:
        return self.store.cart_items.delete(cart_item_id)

    def clear(self, user_id: int) -> bool:
        with self.store.user_lock(user_id):
            removed = self.store.cart_items.delete_where(lambda item: item.user_id == user_id)
        logger.info(f"Cart cleared ({removed} lines)", extra={"user_id": user_id})
        return True

    def list_with_products(self, user_id: int) -> List[CartLine]:
        return [
            CartLine(item=item, product=self.store.get_product(item.product_id))
            for item in self.items_for_user(user_id)
        ]
