# storefront/schemas/checkout.py

# Request bodies of the storefront checkout endpoints.
# The storefront client sends camelCase keys; required fields are checked in
# the services so that missing ones come back as 400 {error, details}.

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ────────────── create-order ──────────────
class CreateOrderRequest(CamelModel):
    product_id: Optional[str] = None
    variants: Optional[Union[List[Dict[str, Any]], Dict[str, Any]]] = None
    shipping_info: Optional[Dict[str, Any]] = None
    wallet_address: Optional[str] = None
    payment_metadata: Optional[Dict[str, Any]] = None


# ────────────── create-batch-order ──────────────
class BatchItem(CamelModel):
    product: Optional[Dict[str, Any]] = None       # {"id", "name", "price", "variants"}
    selected_options: Optional[Dict[str, Any]] = None
    quantity: int = 1


class CreateBatchOrderRequest(CamelModel):
    items: Optional[List[BatchItem]] = None
    shipping_info: Optional[Dict[str, Any]] = None
    wallet_address: Optional[str] = None
    payment_metadata: Optional[Dict[str, Any]] = None


# ────────────── create-payment-intent ──────────────
class PaymentIntentRequest(CamelModel):
    order_id: Optional[str] = None
    batch_order_id: Optional[str] = None
    product_name: Optional[str] = None
    shipping_info: Optional[Dict[str, Any]] = None
    wallet_address: Optional[str] = None
    coupon_code: Optional[str] = None


# ────────────── update-stripe-order ──────────────
class UpdateStripeOrderRequest(CamelModel):
    order_id: Optional[str] = None
    payment_intent_id: Optional[str] = None


# ────────────── update-order-transaction ──────────────
class UpdateOrderTransactionRequest(CamelModel):
    order_id: Optional[str] = None
    batch_order_id: Optional[str] = None
    transaction_signature: Optional[str] = None
    amount_sol: Optional[float] = None
    is_free_order: bool = False


# ────────────── verify-transaction ──────────────
class ExpectedDetails(CamelModel):
    amount: float
    buyer: str
    recipient: str


class VerifyTransactionRequest(CamelModel):
    order_id: Optional[str] = None
    signature: Optional[str] = None
    expected_details: Optional[ExpectedDetails] = None


# ────────────── validate-coupons ──────────────
class ValidateCouponRequest(CamelModel):
    code: Optional[str] = None
    wallet_address: Optional[str] = None
    product_collection_ids: Optional[List[str]] = None


# ────────────── find-order-by-payment ──────────────
class FindOrderByPaymentRequest(CamelModel):
    payment_intent_id: Optional[str] = None
