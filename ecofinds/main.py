from fastapi import FastAPI, Depends, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime
from typing import Optional, List

from ecofinds import __version__
from ecofinds.shared.utils import (
    settings, SuccessResponse, ErrorResponse, HealthResponse,
    NotFoundException, UnauthorizedException, ConflictException, ValidationException,
    get_password_hash, verify_password, create_access_token, create_refresh_token,
    verify_refresh_token,
)
from ecofinds.shared.logging_config import setup_logging, RequestLoggingMiddleware
from ecofinds.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from ecofinds.schemas import (
    UserRegister, UserLogin, Token, RefreshTokenRequest, ProfileUpdate, UserResponse,
    CategoryResponse, ProductCreate, ProductUpdate, ProductResponse,
    ProductWithCategoryResponse, ProductDetailResponse,
    CartItemAdd, CartItemUpdate, CartItemResponse, CartLineResponse,
    OrderResponse, OrderWithItemsResponse,
)
from ecofinds.models import UserDB
from ecofinds.store import MarketplaceStore
from ecofinds.cart import CartManager
from ecofinds.orders import OrderAssembler
from ecofinds.catalog import (
    filter_products, products_with_category, product_detail, cart_line_view, order_with_items
)
from ecofinds.dependencies import (
    get_store, get_cart_manager, get_order_assembler, get_token_payload,
    get_current_user, ensure_owner,
)

# Setup Logging
logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="EcoFinds API", version=__version__)

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_store():
    app.state.store = MarketplaceStore()
    logger.info("Store ready")

# --- Error Handlers ---

def error_response(status_code: int, error: str, details=None, headers: Optional[dict] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)

def validation_details(errors) -> List[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(
        exc.status_code, str(exc.detail), getattr(exc, "details", None), getattr(exc, "headers", None)
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request data", validation_details(exc.errors()))

@app.exception_handler(ValidationError)
async def record_validation_handler(request: Request, exc: ValidationError):
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid data", validation_details(exc.errors()))

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        exc_info=exc,
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

# --- Helpers ---

def issue_tokens(user_id: int) -> Token:
    claims = {"sub": str(user_id)}
    return Token(
        access_token=create_access_token(data=claims),
        refresh_token=create_refresh_token(data=claims),
        token_type="bearer",
    )

def check_identity_free(store: MarketplaceStore, username: Optional[str], email: Optional[str], user_id: Optional[int] = None):
    if username:
        existing = store.get_user_by_username(username)
        if existing and existing.id != user_id:
            raise ConflictException("Username already exists")
    if email:
        existing = store.get_user_by_email(email)
        if existing and existing.id != user_id:
            raise ConflictException("Email already registered")

def check_category(store: MarketplaceStore, category_id: int):
    if store.get_category(category_id) is None:
        raise ValidationException(
            "Invalid product data",
            details=[{"loc": ["body", "category_id"], "msg": f"Category {category_id} not found", "type": "value_error"}],
        )

def load_product(store: MarketplaceStore, product_id: int):
    product = store.get_product(product_id)
    if not product:
        raise NotFoundException("Product not found")
    return product

# --- Endpoints ---

# Accounts
@app.post("/api/register", response_model=SuccessResponse[UserResponse], status_code=status.HTTP_201_CREATED)
async def register(user: UserRegister, store: MarketplaceStore = Depends(get_store)):
    data = user.model_dump(exclude={"password"})
    data["password"] = get_password_hash(user.password)
    with store.lock:
        check_identity_free(store, user.username, user.email)
        created = store.create_user(data)
    logger.info("User registered", extra={"user_id": created.id})
    return SuccessResponse(data=UserResponse.model_validate(created), message="User registered successfully")

@app.post("/api/login", response_model=SuccessResponse[Token])
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(credentials: UserLogin, request: Request, store: MarketplaceStore = Depends(get_store)):
    user = store.get_user_by_username(credentials.username) or store.get_user_by_email(credentials.username)
    if not user or not verify_password(credentials.password, user.password):
        raise UnauthorizedException("Incorrect username or password")
    return SuccessResponse(data=issue_tokens(user.id))

@app.post("/api/refresh", response_model=SuccessResponse[Token])
async def refresh_token(body: RefreshTokenRequest, store: MarketplaceStore = Depends(get_store)):
    payload = verify_refresh_token(body.refresh_token)
    if "jti" in payload and store.is_token_revoked(payload["jti"]):
        raise UnauthorizedException("Refresh token has been revoked")
    user = store.get_user(int(payload["sub"]))
    if user is None:
        raise UnauthorizedException("User no longer exists")
    # Rotate: the presented refresh token can not be used again
    if "jti" in payload:
        store.revoke_token(payload["jti"], payload.get("exp"))
    return SuccessResponse(data=issue_tokens(user.id))

@app.post("/api/logout", response_model=SuccessResponse[dict])
async def logout(
    body: Optional[RefreshTokenRequest] = None,
    payload: dict = Depends(get_token_payload),
    store: MarketplaceStore = Depends(get_store),
):
    if "jti" in payload:
        store.revoke_token(payload["jti"], payload.get("exp"))
    if body is not None:
        refresh_payload = verify_refresh_token(body.refresh_token)
        if "jti" in refresh_payload:
            store.revoke_token(refresh_payload["jti"], refresh_payload.get("exp"))
    return SuccessResponse(message="Logged out successfully")

@app.get("/api/user", response_model=SuccessResponse[UserResponse])
async def get_profile(user: UserDB = Depends(get_current_user)):
    return SuccessResponse(data=UserResponse.model_validate(user))

@app.put("/api/user", response_model=SuccessResponse[UserResponse])
async def update_profile(
    profile_update: ProfileUpdate,
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
):
    update_data = profile_update.model_dump(exclude_unset=True)
    update_data.pop("password", None)

    with store.lock:
        check_identity_free(store, update_data.get("username"), update_data.get("email"), user_id=user.id)
        updated = store.update_user(user.id, update_data)
    if updated is None:
        raise NotFoundException("User not found")
    return SuccessResponse(data=UserResponse.model_validate(updated), message="Profile updated successfully")

# Categories
@app.get("/api/categories", response_model=SuccessResponse[List[CategoryResponse]])
async def list_categories(store: MarketplaceStore = Depends(get_store)):
    return SuccessResponse(data=[CategoryResponse.model_validate(c) for c in store.get_categories()])

# Products
@app.get("/api/products", response_model=SuccessResponse[List[ProductWithCategoryResponse]])
@limiter.limit(settings.READ_RATE_LIMIT)
async def list_products(
    request: Request,
    category: Optional[str] = Query(None, description="Category slug"),
    search: Optional[str] = Query(None, description="Keyword in title or description"),
    store: MarketplaceStore = Depends(get_store),
):
    products = filter_products(store, category=category, search=search)
    return SuccessResponse(data=products_with_category(store, products))

@app.get("/api/products/{product_id}", response_model=SuccessResponse[ProductDetailResponse])
@limiter.limit(settings.READ_RATE_LIMIT)
async def get_product(product_id: int, request: Request, store: MarketplaceStore = Depends(get_store)):
    product = load_product(store, product_id)
    return SuccessResponse(data=product_detail(store, product))

@app.post("/api/products", response_model=SuccessResponse[ProductResponse], status_code=status.HTTP_201_CREATED)
async def create_product(
    product: ProductCreate,
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
):
    check_category(store, product.category_id)
    created = store.create_product({**product.model_dump(), "seller_id": user.id})
    logger.info("Product listed", extra={"user_id": user.id, "product_id": created.id})
    return SuccessResponse(data=ProductResponse.model_validate(created), message="Product created successfully")

@app.put("/api/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(
    product_id: int,
    product_update: ProductUpdate,
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
):
    product = load_product(store, product_id)
    ensure_owner(user, product, "update")

    # Omitted fields stay as they are; an explicit null clears optional ones
    update_data = product_update.model_dump(exclude_unset=True)
    if update_data.get("category_id") is not None:
        check_category(store, update_data["category_id"])

    updated = store.update_product(product_id, update_data)
    if updated is None:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse.model_validate(updated), message="Product updated successfully")

@app.delete("/api/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: int,
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
):
    product = load_product(store, product_id)
    ensure_owner(user, product, "delete")
    store.delete_product(product_id)
    logger.info("Product deleted", extra={"user_id": user.id, "product_id": product_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@app.get("/api/user/products", response_model=SuccessResponse[List[ProductWithCategoryResponse]])
async def list_my_products(user: UserDB = Depends(get_current_user), store: MarketplaceStore = Depends(get_store)):
    products = store.get_products_by_seller(user.id)
    return SuccessResponse(data=products_with_category(store, products))

# Cart
@app.get("/api/cart", response_model=SuccessResponse[List[CartLineResponse]])
async def get_cart(user: UserDB = Depends(get_current_user), cart: CartManager = Depends(get_cart_manager)):
    return SuccessResponse(data=[cart_line_view(line) for line in cart.list_with_products(user.id)])

@app.post("/api/cart", response_model=SuccessResponse[CartItemResponse], status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    item: CartItemAdd,
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
    cart: CartManager = Depends(get_cart_manager),
):
    load_product(store, item.product_id)
    cart_item = cart.add_to_cart(user.id, item.product_id, item.quantity)
    return SuccessResponse(data=CartItemResponse.model_validate(cart_item))

@app.put("/api/cart/{cart_item_id}", response_model=SuccessResponse[CartItemResponse])
async def update_cart_item(
    cart_item_id: int,
    update: CartItemUpdate,
    user: UserDB = Depends(get_current_user),
    cart: CartManager = Depends(get_cart_manager),
):
    existing = cart.get_item(cart_item_id)
    if existing is None or existing.user_id != user.id:
        raise NotFoundException("Cart item not found")
    cart_item = cart.set_quantity(cart_item_id, update.quantity)
    return SuccessResponse(data=CartItemResponse.model_validate(cart_item))

@app.delete("/api/cart/{cart_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(
    cart_item_id: int,
    user: UserDB = Depends(get_current_user),
    cart: CartManager = Depends(get_cart_manager),
):
    existing = cart.get_item(cart_item_id)
    if existing is not None and existing.user_id == user.id:
        cart.remove(cart_item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@app.delete("/api/cart", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(user: UserDB = Depends(get_current_user), cart: CartManager = Depends(get_cart_manager)):
    cart.clear(user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

# Orders
@app.post("/api/orders", response_model=SuccessResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
async def create_order(user: UserDB = Depends(get_current_user), orders: OrderAssembler = Depends(get_order_assembler)):
    order = orders.place_order(user.id)
    return SuccessResponse(data=OrderResponse.model_validate(order), message="Order created successfully")

@app.get("/api/orders", response_model=SuccessResponse[List[OrderWithItemsResponse]])
async def list_orders(
    user: UserDB = Depends(get_current_user),
    store: MarketplaceStore = Depends(get_store),
    orders: OrderAssembler = Depends(get_order_assembler),
):
    return SuccessResponse(data=[order_with_items(store, orders, o) for o in orders.list_orders(user.id)])

@app.get("/health", response_model=HealthResponse)
async def health_check(store: MarketplaceStore = Depends(get_store)):
    return HealthResponse(
        service=settings.SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version=__version__,
        database="in-memory",
        dependencies=store.stats(),
    )
