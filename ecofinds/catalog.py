"""
Read-side joins: stored rows composed with the rows they reference.

A missing reference (deleted product, unknown category) is rendered as
``None`` rather than treated as an error.
"""
from typing import Dict, List, Optional

from ecofinds.models import CartLine, CategoryDB, OrderDB, ProductDB
from ecofinds.orders import OrderAssembler
from ecofinds.store import MarketplaceStore
from ecofinds.schemas import (
    CategoryResponse, ProductResponse, ProductWithCategoryResponse,
    ProductDetailResponse, SellerSummary, CartLineResponse,
    OrderLineResponse, OrderWithItemsResponse,
)


def _category_index(store: MarketplaceStore) -> Dict[int, CategoryDB]:
    return {category.id: category for category in store.get_categories()}


def _product_view(product: Optional[ProductDB]) -> Optional[ProductResponse]:
    if product is None:
        return None
    return ProductResponse.model_validate(product)


def with_category(product: ProductDB, categories: Dict[int, CategoryDB]) -> ProductWithCategoryResponse:
    category = categories.get(product.category_id)
    return ProductWithCategoryResponse(
        **product.model_dump(),
        category=CategoryResponse.model_validate(category) if category else None,
    )


def products_with_category(store: MarketplaceStore, products: List[ProductDB]) -> List[ProductWithCategoryResponse]:
    categories = _category_index(store)
    return [with_category(product, categories) for product in products]


def product_detail(store: MarketplaceStore, product: ProductDB) -> ProductDetailResponse:
    seller = store.get_user(product.seller_id)
    base = with_category(product, _category_index(store))
    return ProductDetailResponse(
        **base.model_dump(),
        seller=SellerSummary(id=seller.id, username=seller.username) if seller else None,
    )


def cart_line_view(line: CartLine) -> CartLineResponse:
    return CartLineResponse(**line.item.model_dump(), product=_product_view(line.product))


def order_with_items(store: MarketplaceStore, orders: OrderAssembler, order: OrderDB) -> OrderWithItemsResponse:
    items = [
        OrderLineResponse(**item.model_dump(), product=_product_view(store.get_product(item.product_id)))
        for item in orders.order_items(order.id)
    ]
    return OrderWithItemsResponse(**order.model_dump(), items=items)


def filter_products(store: MarketplaceStore, category: Optional[str] = None, search: Optional[str] = None) -> List[ProductDB]:
    """Category slug wins over keyword; an unknown slug matches nothing."""
    if category:
        category_obj = store.get_category_by_slug(category)
        if category_obj is None:
            return []
        return store.get_products_by_category(category_obj.id)
    if search:
        return store.search_products(search)
    return store.get_products()
