from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from ecofinds.shared.security_config import sanitize_input, password_problems


class ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Accounts ---

class UserRegister(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator('password')
    def password_complexity(cls, v):
        problems = password_problems(v)
        if problems:
            raise ValueError('Password must contain ' + ', '.join(problems))
        return v

    @field_validator('full_name', 'phone', 'address')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserLogin(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class ProfileUpdate(BaseModel):
    # Unknown keys, password included, are dropped
    model_config = ConfigDict(extra="ignore")

    username: Optional[str] = Field(None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator('full_name', 'phone', 'address')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserResponse(ResponseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime


# --- Catalog ---

class CategoryResponse(ResponseModel):
    id: int
    name: str
    slug: str

class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    description: str = ""
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    image: Optional[str] = None
    category_id: int

    @field_validator('title', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    image: Optional[str] = None
    category_id: Optional[int] = None

    @field_validator('title', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductResponse(ResponseModel):
    id: int
    title: str
    description: str
    price: Decimal
    image: Optional[str] = None
    category_id: int
    seller_id: int
    created_at: datetime

class ProductWithCategoryResponse(ProductResponse):
    category: Optional[CategoryResponse] = None

class SellerSummary(ResponseModel):
    id: int
    username: str

class ProductDetailResponse(ProductWithCategoryResponse):
    seller: Optional[SellerSummary] = None


# --- Cart ---

class CartItemAdd(BaseModel):
    product_id: int
    quantity: int = Field(1, gt=0, strict=True)

class CartItemUpdate(BaseModel):
    quantity: int = Field(..., gt=0, strict=True)

class CartItemResponse(ResponseModel):
    id: int
    user_id: int
    product_id: int
    quantity: int

class CartLineResponse(CartItemResponse):
    product: Optional[ProductResponse] = None


# --- Orders ---

class OrderResponse(ResponseModel):
    id: int
    user_id: int
    total_amount: Decimal
    status: str
    created_at: datetime

class OrderItemResponse(ResponseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal

class OrderLineResponse(OrderItemResponse):
    product: Optional[ProductResponse] = None

class OrderWithItemsResponse(OrderResponse):
    items: List[OrderLineResponse]
