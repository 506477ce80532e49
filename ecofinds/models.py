from datetime import datetime
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

ORDER_STATUS_COMPLETED = "completed"


class Record(BaseModel):
    """Base for stored rows. Rows are replaced on update, never mutated."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., gt=0)


class UserDB(Record):
    username: str = Field(..., min_length=1)
    email: str
    password: str  # bcrypt hash
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CategoryDB(Record):
    name: str
    slug: str


class ProductDB(Record):
    title: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., gt=0)
    image: Optional[str] = None
    category_id: int
    seller_id: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CartItemDB(Record):
    user_id: int
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderDB(Record):
    user_id: int
    total_amount: Decimal
    status: str = ORDER_STATUS_COMPLETED
    created_at: datetime = Field(default_factory=datetime.utcnow)


class OrderItemDB(Record):
    order_id: int
    product_id: int
    quantity: int = Field(..., ge=1)
    price: Decimal  # Snapshot


class CartLine(BaseModel):
    """A cart item joined with its product; product is None once deleted."""
    model_config = ConfigDict(frozen=True)

    item: CartItemDB
    product: Optional[ProductDB] = None

    @property
    def subtotal(self) -> Decimal:
        if self.product is None:
            return Decimal(0)
        return self.product.price * self.item.quantity
