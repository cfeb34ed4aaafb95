# storefront/models/catalog.py

from sqlalchemy import Column, Integer, String, Text, Float, Boolean, DateTime, JSON, ForeignKey
from storefront.utils.database import Base, utcnow
from storefront.models.order import new_uuid


class Collection(Base):
    __tablename__ = "collections"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name        = Column(String, nullable=False)
    slug        = Column(String, nullable=True, unique=True)
    description = Column(Text, nullable=True)
    visible     = Column(Boolean, nullable=False, default=True)
    launch_date = Column(DateTime, nullable=True)
    created_at  = Column(DateTime, nullable=False, default=utcnow)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_uuid)
    collection_id  = Column(String(36), ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True)
    name           = Column(String, nullable=False)
    sku            = Column(String, nullable=True)
    description    = Column(Text, nullable=True)
    price          = Column(Float, nullable=False, default=0)     # USD
    quantity       = Column(Integer, nullable=True)              # None = unlimited
    variants       = Column(JSON, nullable=True)                 # [{"id", "name", "options"}]
    variant_prices = Column(JSON, nullable=True)                 # {"<variantKey>": price}
    visible        = Column(Boolean, nullable=False, default=True)
    created_at     = Column(DateTime, nullable=False, default=utcnow)


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, default=new_uuid)
    code                = Column(String, nullable=False, unique=True, index=True)   # stored upper-case
    description         = Column(Text, nullable=True)
    discount_type       = Column(String, nullable=False, default="percentage")     # percentage | fixed
    discount_value      = Column(Float, nullable=False)
    max_discount_amount = Column(Float, nullable=True)
    collection_ids      = Column(JSON, nullable=True)
    eligibility_rules   = Column(JSON, nullable=True)                              # {"groups": [...]}
    status              = Column(String, nullable=False, default="active")         # active | inactive | expired
    expires_at          = Column(DateTime, nullable=True)
    max_uses            = Column(Integer, nullable=True)
    current_uses        = Column(Integer, nullable=False, default=0)
    created_at          = Column(DateTime, nullable=False, default=utcnow)
