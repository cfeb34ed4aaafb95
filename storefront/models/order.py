# storefront/models/order.py

import uuid
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON
from storefront.utils.database import Base, utcnow

# ────────────── Order statuses ──────────────
DRAFT = "draft"
PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
ERROR = "error"

ORDER_STATUSES = (DRAFT, PENDING_PAYMENT, CONFIRMED, SHIPPED, DELIVERED, CANCELLED, ERROR)

# statuses a payment can still be attached to
PAYABLE_STATUSES = (DRAFT, PENDING_PAYMENT)


def new_uuid() -> str:
    return str(uuid.uuid4())


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_uuid)

    order_number         = Column(String, nullable=True, index=True)    # SF-1001, shared inside a batch
    batch_order_id       = Column(String(36), nullable=True, index=True)
    item_index           = Column(Integer, nullable=True)               # 1-based position in the batch
    total_items_in_batch = Column(Integer, nullable=True)

    product_id         = Column(String(36), nullable=True, index=True)
    collection_id      = Column(String(36), nullable=True, index=True)
    variant_selections = Column(JSON, nullable=True)                    # [{"name": ..., "value": ...}]
    quantity           = Column(Integer, nullable=False, default=1)
    shipping_address   = Column(JSON, nullable=True)
    contact_info       = Column(JSON, nullable=True)
    wallet_address     = Column(String, nullable=True, index=True)

    status                = Column(String, nullable=False, default=DRAFT, index=True)
    transaction_signature = Column(String, nullable=True, index=True)   # Stripe PaymentIntent id or Solana signature
    amount_sol            = Column(Float, nullable=True)
    amount                = Column(Float, nullable=True)                # USD for this line
    total_amount_paid_for_batch = Column(Float, nullable=True)
    payment_metadata      = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
