"""
Database Schemas for the Storefront API

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.

Fields are declared in snake_case and stored/serialized in camelCase
(createdAt, isAdmin, customerName, ...), which is what the frontend sends.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    # BSON dates hold milliseconds; anything finer would not survive a read back
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Review(Document):
    user: Optional[str] = None
    rating: Optional[float] = None
    comment: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)


class Product(Document):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    image: Optional[str] = Field(None, description="Public image URL")
    reviews: List[Review] = []
    created_at: datetime = Field(default_factory=utcnow)


class User(Document):
    name: str = Field(..., description="Full name")
    email: str
    password: str = Field(..., description="bcrypt hash, never the plaintext")
    is_admin: bool = False


class Order(Document):
    customer_name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    # line items have no fixed shape
    items: List[Any] = []
    total_amount: Optional[float] = None
    status: str = Field("Pending", description="Pending, Shipped, Delivered, ...")
    order_date: datetime = Field(default_factory=utcnow)


class Subscriber(Document):
    email: str
    subscribed_at: datetime = Field(default_factory=utcnow)


# ----------------------- Request bodies -----------------------
class ProductUpdate(Document):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    image: Optional[str] = None
    reviews: Optional[List[Review]] = None


class ReviewBody(Document):
    user: Optional[str] = None
    rating: float
    comment: Optional[str] = None


class SignupBody(BaseModel):
    name: str
    email: str
    password: str


class LoginBody(BaseModel):
    email: str
    password: str


class StatusBody(BaseModel):
    status: str


class SubscribeBody(BaseModel):
    email: str
