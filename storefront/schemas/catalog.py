# storefront/schemas/catalog.py

from pydantic import BaseModel, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime


# ────────────── Collection ──────────────
class CollectionBase(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    visible: Optional[bool] = True
    launch_date: Optional[datetime] = None

class CollectionCreate(CollectionBase):
    name: str

class CollectionUpdate(CollectionBase):
    visible: Optional[bool] = None

class Collection(CollectionBase):
    id: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


# ────────────── Product ──────────────
class ProductBase(BaseModel):
    collection_id: Optional[str] = None
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    variants: Optional[List[Dict[str, Any]]] = None     # [{"id", "name", "options"}]
    variant_prices: Optional[Dict[str, float]] = None
    visible: Optional[bool] = True

class ProductCreate(ProductBase):
    collection_id: str
    name: str
    price: float = 0

class ProductUpdate(ProductBase):
    visible: Optional[bool] = None

class Product(ProductBase):
    id: str
    created_at: datetime

    model_config = {
        "from_attributes": True
    }


# ────────────── Coupon ──────────────
class CouponBase(BaseModel):
    """
    Discount code. eligibility_rules looks like
    {"groups": [{"operator": "AND", "rules": [{"type": "token", "value": <mint>, "quantity": 1}]}]}
    """
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[str] = "percentage"        # percentage | fixed
    discount_value: Optional[float] = None
    max_discount_amount: Optional[float] = None
    collection_ids: Optional[List[str]] = None
    eligibility_rules: Optional[Dict[str, Any]] = None
    status: Optional[str] = "active"
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, value):
        return value.strip().upper() if value else value

    @field_validator("discount_type")
    @classmethod
    def known_discount_type(cls, value):
        if value is not None and value not in ("percentage", "fixed"):
            raise ValueError("discount_type must be 'percentage' or 'fixed'")
        return value

class CouponCreate(CouponBase):
    code: str
    discount_value: float

class CouponUpdate(CouponBase):
    discount_type: Optional[str] = None
    status: Optional[str] = None

class Coupon(CouponBase):
    id: str
    current_uses: int = 0
    created_at: datetime

    model_config = {
        "from_attributes": True
    }
