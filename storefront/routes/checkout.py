# storefront/routes/checkout.py

# Public storefront endpoints. Failures come back as {"error", "details"}.

from fastapi import APIRouter, Header, Query, Request
from typing import Optional
from storefront.schemas.checkout import (
    CreateOrderRequest,
    CreateBatchOrderRequest,
    PaymentIntentRequest,
    UpdateStripeOrderRequest,
    UpdateOrderTransactionRequest,
    VerifyTransactionRequest,
    ValidateCouponRequest,
    FindOrderByPaymentRequest,
)
from storefront.services.checkout import create_order_service, create_batch_order_service
from storefront.services.payment_intent import create_payment_intent_service
from storefront.services.stripe_order import update_stripe_order_service
from storefront.services.order_transaction import update_order_transaction_service
from storefront.services.solana import verify_transaction_service, verify_pending_transactions_service
from storefront.services.stripe_webhook import stripe_webhook_service
from storefront.services.coupons import validate_coupon_service
from storefront.services.order_lookup import (
    find_order_by_payment_service,
    get_order_service,
    get_batch_orders_service,
)
from storefront.services.pricing import sol_price_service

router = APIRouter()

ERROR_RESPONSES = {
    400: {"description": "Missing or invalid parameters"},
    500: {"description": "Internal server error"},
}


# ────────────── ORDERS ──────────────
@router.post(
    "/create-order",
    summary="Create a draft order for one product",
    response_description="Order id and number; free orders come back confirmed",
    responses={200: {"description": "Order created, or the existing duplicate"}, **ERROR_RESPONSES},
)
async def create_order(body: CreateOrderRequest, request: Request):
    try:
        return await create_order_service(body, request)
    except Exception as e:
        await request.app.state.log.log_error("checkout", f"create-order failed: {e}")
        raise


@router.post(
    "/create-batch-order",
    summary="Create one order per cart item under a shared batch id",
    responses={200: {"description": "Batch created"}, **ERROR_RESPONSES},
)
async def create_batch_order(body: CreateBatchOrderRequest, request: Request):
    try:
        return await create_batch_order_service(body, request)
    except Exception as e:
        await request.app.state.log.log_error("checkout", f"create-batch-order failed: {e}")
        raise


# ────────────── PAYMENTS ──────────────
@router.post(
    "/create-payment-intent",
    summary="Create a Stripe PaymentIntent for an order or batch",
    responses={
        200: {"description": "clientSecret and paymentIntentId"},
        404: {"description": "Order or batch not found"},
        **ERROR_RESPONSES,
    },
)
async def create_payment_intent(body: PaymentIntentRequest, request: Request):
    try:
        return await create_payment_intent_service(body, request)
    except Exception as e:
        await request.app.state.log.log_error("payment_intent", f"create-payment-intent failed: {e}")
        raise


@router.post(
    "/update-stripe-order",
    summary="Attach a paid PaymentIntent to its order after the card step",
    response_description="Confirmed when Stripe reports the intent as succeeded",
    responses={
        200: {"description": "Order updated, or already processed"},
        404: {"description": "Order or payment intent not found"},
        502: {"description": "Stripe unavailable"},
        **ERROR_RESPONSES,
    },
)
async def update_stripe_order(body: UpdateStripeOrderRequest, request: Request):
    try:
        return await update_stripe_order_service(body, request)
    except Exception as e:
        await request.app.state.log.log_error("stripe_order", f"update-stripe-order failed: {e}")
        raise


@router.post(
    "/update-order-transaction",
    summary="Attach a payment signature to an order or batch",
    responses={
        200: {"description": "Orders updated"},
        404: {"description": "Order or batch not found"},
        **ERROR_RESPONSES,
    },
)
async def update_order_transaction(body: UpdateOrderTransactionRequest, request: Request):
    try:
        return await update_order_transaction_service(body, request)
    except Exception as e:
        await request.app.state.log.log_error("order_tx", f"update-order-transaction failed: {e}")
        raise


@router.post(
    "/verify-transaction",
    summary="Verify a Solana payment on chain and confirm its order",
    responses={200: {"description": "Transaction verified"}, **ERROR_RESPONSES},
)
async def verify_transaction(body: VerifyTransactionRequest, request: Request):
    return await verify_transaction_service(body, request)


@router.post(
    "/verify-pending-transactions",
    summary="Re-verify pending Solana transactions",
    responses={200: {"description": "Counts of verified and failed transactions"}},
)
async def verify_pending_transactions(request: Request):
    return await verify_pending_transactions_service(request)


@router.post(
    "/stripe-webhook",
    summary="Stripe event receiver",
    responses={
        200: {"description": "Event received"},
        400: {"description": "Missing or invalid stripe-signature"},
    },
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
):
    payload = await request.body()
    return await stripe_webhook_service(payload, stripe_signature, request)


# ────────────── COUPONS ──────────────
@router.post(
    "/validate-coupons",
    summary="Check a coupon code against the cart and the wallet",
    responses={
        200: {"description": "Coupon is valid"},
        403: {"description": "Eligibility rules not met"},
        404: {"description": "Coupon not found or inactive"},
        **ERROR_RESPONSES,
    },
)
async def validate_coupons(body: ValidateCouponRequest, request: Request):
    return await validate_coupon_service(body, request)


# ────────────── LOOKUPS ──────────────
@router.post(
    "/find-order-by-payment",
    summary="Find the order behind a PaymentIntent",
    responses={200: {"description": "Order found"}, 404: {"description": "No matching order"}, **ERROR_RESPONSES},
)
async def find_order_by_payment(body: FindOrderByPaymentRequest, request: Request):
    return await find_order_by_payment_service(body, request)


@router.get(
    "/get-order",
    summary="Get an order by id",
    responses={200: {"description": "Order"}, 404: {"description": "Order not found"}, **ERROR_RESPONSES},
)
async def get_order(request: Request, order_id: Optional[str] = Query(None, alias="orderId")):
    return await get_order_service(order_id, request)


@router.get(
    "/get-batch-orders",
    summary="Get every order of a batch",
    responses={200: {"description": "Orders with a status summary"}, 404: {"description": "Batch not found"}, **ERROR_RESPONSES},
)
async def get_batch_orders(request: Request, batch_order_id: Optional[str] = Query(None, alias="batchOrderId")):
    return await get_batch_orders_service(batch_order_id, request)


@router.get(
    "/sol-price",
    summary="Current SOL price in USD",
    responses={200: {"description": "Price"}, 502: {"description": "Price source unavailable"}},
)
async def sol_price(request: Request):
    return await sol_price_service(request)
