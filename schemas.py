"""
Database Schemas for Threadline

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Use these models for validation when creating or updating documents.
Documents travel and are stored in camelCase (realPrice, orderItems, ...).
"""

import math
import re
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

CART_MIN_QUANTITY = 1
CART_MAX_QUANTITY = 10

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def discount_percentage(real_price, discounted_price) -> int:
    if not real_price:
        return 0
    # half-up rounding, not banker's
    return int(math.floor((real_price - (discounted_price or 0)) / real_price * 100 + 0.5))


def unwrap_tags(tags) -> List[str]:
    """Accept bare strings or {"value": ...} wrappers from tag inputs; drop blanks."""
    if tags is None:
        return []
    if not isinstance(tags, list):
        return tags
    out = []
    for tag in tags:
        if isinstance(tag, dict):
            tag = tag.get("value")
        if isinstance(tag, str):
            tag = tag.strip()
            if not tag:
                continue
        out.append(tag)
    return out


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Address(CamelModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""


# ---------------------------------
# Product
# ---------------------------------

class ProductImage(CamelModel):
    url: str = Field(..., min_length=1, description="Image URL")
    alt: str = Field("", description="Alt text")
    is_main: bool = Field(False, description="Main listing image")


class ProductSize(CamelModel):
    name: Literal["S", "M", "L", "XL", "XXL"]
    stock: int = Field(0, ge=0, description="Stock for this size")


class Product(CamelModel):
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    sku: str = Field(..., min_length=1, description="Stock keeping unit")
    images: List[ProductImage] = Field(..., min_length=1)
    real_price: float = Field(..., ge=0, description="List price")
    discounted_price: float = Field(..., ge=0, description="Selling price")
    description: str = Field(..., max_length=2000)
    short_description: str = Field(..., max_length=200)
    sizes: List[ProductSize] = Field(default_factory=list, description="Size-level stock")
    category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    is_available: bool = Field(True, description="Shown as purchasable; independent of stock")

    @field_validator("name", "sku", "category", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags", mode="before")
    @classmethod
    def _unwrap_tags(cls, v):
        return unwrap_tags(v)

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.discounted_price > self.real_price:
            raise ValueError("Discounted price cannot be greater than real price")
        mains = sum(1 for img in self.images if img.is_main)
        if mains != 1:
            raise ValueError("Exactly one image must be marked as the main image")
        names = [s.name for s in self.sizes]
        if len(names) != len(set(names)):
            raise ValueError("Each size may only be listed once")
        return self

    @computed_field
    @property
    def slug(self) -> str:
        return slugify(self.name)

    @computed_field(alias="totalStock")
    @property
    def total_stock(self) -> int:
        return sum(s.stock for s in self.sizes)

    @computed_field(alias="discountPercentage")
    @property
    def discount_pct(self) -> int:
        return discount_percentage(self.real_price, self.discounted_price)

    def to_document(self) -> dict:
        # discountPercentage is derived on output only
        return self.model_dump(by_alias=True, exclude={"discount_pct"})


# ---------------------------------
# User
# ---------------------------------

class CartItem(CamelModel):
    product_id: str  # stored as an ObjectId reference to product
    quantity: int = Field(1, ge=CART_MIN_QUANTITY, le=CART_MAX_QUANTITY)


class User(CamelModel):
    fullname: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password: str = Field(..., description="bcrypt hash, or a placeholder for identity-provider accounts")
    phone: str = ""
    address: Address = Field(default_factory=Address)
    wishlist: List[str] = Field(default_factory=list)  # stored as ObjectId references to product
    cart: List[CartItem] = Field(default_factory=list)

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


# ---------------------------------
# Order
# ---------------------------------

class OrderItem(CamelModel):
    product: str = Field(..., description="Referenced product id")
    name: str = Field(..., min_length=1, description="Snapshot of product name")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    size: str = Field(..., min_length=1)

    @field_validator("product")
    @classmethod
    def _valid_product_id(cls, v):
        if not ObjectId.is_valid(v):
            raise ValueError("Invalid product ID")
        return v


class ShippingAddress(CamelModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class OrderCreate(CamelModel):
    order_items: List[OrderItem] = Field(default_factory=list)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    payment_result: Optional[PaymentResult] = None
    items_price: float
    tax_price: float
    shipping_price: float
    total_price: float


class Order(OrderCreate):
    user: str
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    status: str = "Processing"


# ---------------------------------
# Request bodies
# ---------------------------------

class CartItemRequest(CamelModel):
    product_id: Optional[str] = None
    quantity: int = 1


class WishlistToggleRequest(CamelModel):
    product_id: Optional[str] = None


class DeleteProductRequest(CamelModel):
    product_id: Optional[str] = None


class RegisterRequest(CamelModel):
    fullname: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)


class LoginRequest(CamelModel):
    email: str
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
