import logging
from decimal import Decimal
from typing import List

from ecofinds.cart import CartManager
from ecofinds.models import OrderDB, OrderItemDB, ORDER_STATUS_COMPLETED
from ecofinds.store import MarketplaceStore
from ecofinds.shared.utils import EmptyCartException

logger = logging.getLogger(__name__)


class OrderAssembler:
    def __init__(self, store: MarketplaceStore, cart: CartManager):
        self.store = store
        self.cart = cart

    def place_order(self, user_id: int) -> OrderDB:
        """
        Turn the user's cart into a completed order.

        Lines whose product has been deleted are left out of both the total
        and the order items. The order, its items and the cart clear commit
        together: if any step fails, every table is rolled back.
        """
        with self.store.user_lock(user_id):
            lines = self.cart.list_with_products(user_id)
            if not lines:
                raise EmptyCartException("Cart is empty")

            priced = [line for line in lines if line.product is not None]
            if not priced:
                raise EmptyCartException("Cart has no available products")

            skipped = len(lines) - len(priced)
            if skipped:
                logger.warning(
                    f"Skipping {skipped} cart lines for deleted products",
                    extra={"user_id": user_id},
                )

            total_amount = sum((line.subtotal for line in priced), Decimal(0))

            with self.store.transaction():
                order = self.store.orders.insert({
                    "user_id": user_id,
                    "total_amount": total_amount,
                    "status": ORDER_STATUS_COMPLETED,
                })
                for line in priced:
                    self.store.order_items.insert({
                        "order_id": order.id,
                        "product_id": line.item.product_id,
                        "quantity": line.item.quantity,
                        "price": line.product.price,
                    })
                self.cart.clear(user_id)

        logger.info(
            f"Order placed with {len(priced)} items, total {total_amount}",
            extra={"user_id": user_id, "order_id": order.id},
        )
        return order

    def list_orders(self, user_id: int) -> List[OrderDB]:
        orders = self.store.orders.find_by(lambda o: o.user_id == user_id)
        return sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)

    def order_items(self, order_id: int) -> List[OrderItemDB]:
        return self.store.order_items.find_by(lambda item: item.order_id == order_id)
