"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in the database.
Model name lowercased is the collection name.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    user = "user"
    seller = "seller"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique across all roles")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.user, description="Role: user | seller | admin")
    created_at: datetime = Field(default_factory=utcnow)


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(0, ge=0, description="Units on hand")
    seller_id: Optional[str] = Field(None, description="Account that listed the product")
    created_at: datetime = Field(default_factory=utcnow)


class OrderItem(BaseModel):
    """Snapshot of a product at the time it was ordered."""

    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., gt=0)


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: float = Field(..., ge=0)
    shipping_address: str
    status: OrderStatus = OrderStatus.pending
    created_at: datetime = Field(default_factory=utcnow)
