from typing import Optional
from fastapi import Depends, Header, Request

from ecofinds.cart import CartManager
from ecofinds.models import ProductDB, UserDB
from ecofinds.orders import OrderAssembler
from ecofinds.store import MarketplaceStore
from ecofinds.shared.utils import (
    ForbiddenException, UnauthorizedException, parse_bearer, verify_token
)


def get_store(request: Request) -> MarketplaceStore:
    return request.app.state.store

def get_cart_manager(store: MarketplaceStore = Depends(get_store)) -> CartManager:
    return CartManager(store)

def get_order_assembler(
    store: MarketplaceStore = Depends(get_store),
    cart: CartManager = Depends(get_cart_manager),
) -> OrderAssembler:
    return OrderAssembler(store, cart)

async def get_token_payload(
    authorization: Optional[str] = Header(None),
    store: MarketplaceStore = Depends(get_store),
) -> dict:
    payload = verify_token(parse_bearer(authorization))
    if "jti" in payload and store.is_token_revoked(payload["jti"]):
        raise UnauthorizedException("Token has been revoked")
    return payload

async def get_current_user(
    request: Request,
    payload: dict = Depends(get_token_payload),
    store: MarketplaceStore = Depends(get_store),
) -> UserDB:
    try:
        user_id = int(payload.get("sub", ""))
    except ValueError:
        raise UnauthorizedException("Invalid authentication credentials")
    user = store.get_user(user_id)
    if user is None:
        raise UnauthorizedException("User no longer exists")
    # Picked up by request logging
    request.state.user_id = user.id
    return user

def ensure_owner(user: UserDB, product: ProductDB, action: str = "modify"):
    if product.seller_id != user.id:
        raise ForbiddenException(f"You can only {action} your own products")
