from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input, validate_password_strength
from shared.utils import settings

# --- Users ---

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str

    @field_validator('password')
    def password_length(cls, v):
        if not validate_password_strength(v):
            raise ValueError(f'Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long')
        return v

    @field_validator('name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

    @field_validator('email')
    def lower_email(cls, v):
        return v.lower()

class UserLogin(BaseModel):
    email: EmailStr
    password: str

    @field_validator('email')
    def lower_email(cls, v):
        return v.lower()

class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=1)

    @field_validator('name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

# --- Cart ---

class CartItemAdd(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0)
    description: Optional[str] = ""
    book_id: Optional[str] = None

    @field_validator('title', 'author', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CartItemUpdate(BaseModel):
    title: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)

    @field_validator('title')
    def sanitize_title(cls, v):
        return sanitize_input(v)

class CartItemRemove(BaseModel):
    title: str = Field(..., min_length=1)

    @field_validator('title')
    def sanitize_title(cls, v):
        return sanitize_input(v)

class CartItemResponse(BaseModel):
    title: str
    author: str
    price: Decimal
    description: Optional[str] = ""
    quantity: int
    book_id: Optional[str] = None
    added_at: Optional[datetime] = None

class UserResponse(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str
    cart: List[CartItemResponse] = []
    created_at: Optional[datetime] = None

class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

# --- Categories ---

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = ""
    is_active: bool = True

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = ""
    is_active: bool
    book_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# --- Books ---

class BookCreate(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    description: Optional[str] = ""
    price: Decimal = Field(..., gt=0)
    category: Optional[str] = None
    stock: int = Field(0, ge=0)

    @field_validator('title', 'author', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)

    @field_validator('title', 'author', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class BookResponse(BaseModel):
    id: str
    title: str
    author: str
    description: Optional[str] = ""
    price: Decimal
    category: Optional[str] = None
    stock: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# --- Orders ---
# Order payloads are deliberately lenient: the order engine owns the
# validation rules and their error messages.

class OrderItemCreate(BaseModel):
    book_id: Optional[str] = None
    quantity: Optional[int] = None

class ShippingAddress(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None

    @field_validator('address', 'city', 'state', 'postal_code', 'country', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderCreate(BaseModel):
    items: Optional[List[OrderItemCreate]] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('payment_method', 'notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderFromCart(BaseModel):
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('payment_method', 'notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = ""

    @field_validator('status', 'notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderUpdate(BaseModel):
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('payment_method', 'notes')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ShippingAddressResponse(BaseModel):
    address: str
    city: str
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None

class OrderItemResponse(BaseModel):
    book_id: str
    title: str
    author: str
    price: Decimal
    quantity: int
    subtotal: Decimal

class StatusHistoryResponse(BaseModel):
    status: str
    notes: Optional[str] = ""
    timestamp: datetime

class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: List[OrderItemResponse]
    total_amount: Decimal
    status: str
    status_history: List[StatusHistoryResponse]
    shipping_address: ShippingAddressResponse
    payment_method: str
    notes: Optional[str] = ""
    created_at: datetime
    updated_at: Optional[datetime] = None

class OrderStatsResponse(BaseModel):
    total_orders: int = 0
    total_revenue: Decimal = Decimal(0)
    pending_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
