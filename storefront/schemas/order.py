# storefront/schemas/order.py

from pydantic import BaseModel, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from storefront.models.order import ORDER_STATUSES

class OrderBase(BaseModel):
    order_number: Optional[str] = None
    batch_order_id: Optional[str] = None
    item_index: Optional[int] = None
    total_items_in_batch: Optional[int] = None
    product_id: Optional[str] = None
    collection_id: Optional[str] = None
    variant_selections: Optional[List[Dict[str, Any]]] = None
    quantity: Optional[int] = 1
    shipping_address: Optional[Dict[str, Any]] = None
    contact_info: Optional[Dict[str, Any]] = None
    wallet_address: Optional[str] = None
    status: Optional[str] = None
    transaction_signature: Optional[str] = None
    amount_sol: Optional[float] = None
    amount: Optional[float] = None
    total_amount_paid_for_batch: Optional[float] = None
    payment_metadata: Optional[Dict[str, Any]] = None

class Order(OrderBase):
    id: str
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True
    }

class OrderStatusUpdate(BaseModel):
    """Status change requested from the merchant dashboard."""
    status: str

    @field_validator("status")
    @classmethod
    def known_status(cls, value):
        if value not in ORDER_STATUSES:
            raise ValueError(f"status must be one of {', '.join(ORDER_STATUSES)}")
        return value

class BatchRepair(BaseModel):
    """Either one batch to repair or fix_all for the most recent batches."""
    batch_order_id: Optional[str] = None
    transaction_signature: Optional[str] = None
    fix_all: bool = False
