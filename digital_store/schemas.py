from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from digital_store.models import OrderStatus, Role


# Categories

class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class CategoryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


# Products

class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    brand: Optional[str] = Field(None, max_length=100)
    category_id: int
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=0)


class ProductView(BaseModel):
    id: int
    name: str
    brand: Optional[str] = None
    category_id: int
    category_name: Optional[str] = None
    price: Decimal
    quantity: int

    @classmethod
    def from_product(cls, product):
        category = product.category
        return cls(
            id=product.id,
            name=product.name,
            brand=product.brand,
            category_id=product.category_id,
            category_name=category.name if category is not None else None,
            price=product.price,
            quantity=product.quantity,
        )


class ProductFilter(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    category_name: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None


# Users

class RegisterUserRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)


class UserCreate(RegisterUserRequest):
    role: Role = Role.CLIENT


class UserUpdate(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    role: Role
    password: Optional[str] = None  # Blank keeps the current one


class ProfileUpdate(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    password: Optional[str] = None


class UserView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Role
    created_at: datetime
    updated_at: Optional[datetime] = None


class UserUpdateResult(BaseModel):
    """Outcome of an edit to a user record.

    ``refreshed_identity`` is set when the edited record belongs to the
    caller: the caller must re-issue its session for that email, since the
    one it holds may name an address that no longer exists.
    """
    user: UserView
    refreshed_identity: Optional[str] = None


class UserFilter(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[Role] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    updated_from: Optional[datetime] = None
    updated_to: Optional[datetime] = None


# Orders

class OrderCreate(BaseModel):
    user_email: EmailStr
    product_id: int
    quantity: int = Field(1, ge=1)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderView(BaseModel):
    """An order joined with its owner and product at read time.

    Only ``total_price`` is a snapshot; user and product fields always show
    the current records.
    """
    id: int
    user_id: int
    user_email: Optional[str] = None
    user_full_name: Optional[str] = None
    product_id: int
    product_name: Optional[str] = None
    product_brand: Optional[str] = None
    unit_price: Optional[Decimal] = None
    quantity: int
    total_price: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order):
        user, product = order.user, order.product
        return cls(
            id=order.id,
            user_id=order.user_id,
            user_email=user.email if user is not None else None,
            user_full_name=user.full_name if user is not None else None,
            product_id=order.product_id,
            product_name=product.name if product is not None else None,
            product_brand=product.brand if product is not None else None,
            unit_price=product.price if product is not None else None,
            quantity=order.quantity,
            total_price=order.total_price,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderFilter(BaseModel):
    user_email: Optional[str] = None
    product_name: Optional[str] = None
    status: Optional[OrderStatus] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    updated_from: Optional[datetime] = None
    updated_to: Optional[datetime] = None


class StatusChoices(BaseModel):
    order_id: int
    statuses: List[OrderStatus]
