from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field

ORDER_STATUSES = ["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]

class CartItemDB(BaseModel):
    title: str # Identity key within a cart
    author: str
    price: Decimal # Snapshot at add time
    description: str = ""
    quantity: int = 1
    book_id: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.utcnow)

class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    email: str
    password_hash: str
    role: str = "user" # user, admin
    cart: List[CartItemDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CategoryDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class BookDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    title: str
    author: str
    description: str = ""
    price: Decimal
    category: Optional[str] = None # Category id
    stock: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class OrderItemDB(BaseModel):
    book_id: str
    title: str
    author: str
    price: Decimal
    quantity: int
    subtotal: Decimal

class StatusHistoryDB(BaseModel):
    status: str
    notes: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

class ShippingAddressDB(BaseModel):
    address: str
    city: str
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    order_number: str
    user_id: str
    items: List[OrderItemDB]
    total_amount: Decimal
    status: str = "pending"
    status_history: List[StatusHistoryDB] = []
    shipping_address: ShippingAddressDB
    payment_method: str
    notes: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True


def to_mongo(model: BaseModel) -> dict:
    """
    Dump a DB model for insertion. Decimals are stored as floats, the
    ``id`` placeholder is dropped so MongoDB assigns ``_id``.
    """
    return _decimals_to_float(model.dict(by_alias=True, exclude={"id"}))

def _decimals_to_float(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _decimals_to_float(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decimals_to_float(v) for v in value]
    return value
