# storefront/routes/merchant.py

from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import List, Optional
from storefront.schemas.catalog import (
    Collection,
    CollectionCreate,
    CollectionUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    Coupon,
    CouponCreate,
    CouponUpdate,
)
from storefront.models.merchant import Merchant
from storefront.schemas.order import Order, OrderStatusUpdate, BatchRepair
from storefront.services import catalog
from storefront.services.order import read_orders_service, read_order_service, update_order_status_service
from storefront.services.batch_repair import repair_batches_service
from storefront.services.receipts import backfill_receipts_service
from storefront.routes.auth import get_current_user

router = APIRouter(dependencies=[Depends(get_current_user)])

AUTH_RESPONSES = {
    401: {"description": "Missing or invalid token"},
    500: {"description": "Internal server error"},
}


# ────────────── COLLECTIONS ──────────────
@router.get(
    "/collections",
    response_model=List[Collection],
    summary="List collections",
    responses={200: {"description": "Collections"}, **AUTH_RESPONSES},
)
async def list_collections(request: Request, skip: int = 0, limit: int = 100):
    return await catalog.read_collections_service(request, skip, limit)


@router.post(
    "/collections",
    response_model=Collection,
    status_code=status.HTTP_201_CREATED,
    summary="Create a collection",
    responses={
        201: {"description": "Collection created"},
        409: {"description": "Slug already taken"},
        422: {"description": "Invalid request data"},
        **AUTH_RESPONSES,
    },
)
async def create_collection(collection: CollectionCreate, request: Request):
    try:
        return await catalog.create_collection_service(collection, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Collection create failed: {e}")
        raise


@router.get(
    "/collections/{id}",
    response_model=Collection,
    summary="Get a collection",
    responses={404: {"description": "Collection not found"}, **AUTH_RESPONSES},
)
async def get_collection(id: str, request: Request):
    return await catalog.read_collection_service(id, request)


@router.put(
    "/collections/{id}",
    response_model=Collection,
    summary="Update a collection",
    responses={404: {"description": "Collection not found"}, 409: {"description": "Slug already taken"}, **AUTH_RESPONSES},
)
async def update_collection(id: str, update: CollectionUpdate, request: Request):
    try:
        return await catalog.update_collection_service(id, update, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Collection update failed: {e}", {"id": id})
        raise


@router.delete(
    "/collections/{id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a collection",
    responses={204: {"description": "Collection deleted"}, 404: {"description": "Collection not found"}, **AUTH_RESPONSES},
)
async def delete_collection(id: str, request: Request):
    await catalog.delete_collection_service(id, request)


# ────────────── PRODUCTS ──────────────
@router.get(
    "/products",
    response_model=List[Product],
    summary="List products, optionally of one collection",
    responses={200: {"description": "Products"}, **AUTH_RESPONSES},
)
async def list_products(request: Request, collection_id: Optional[str] = None, skip: int = 0, limit: int = 100):
    return await catalog.read_products_service(request, collection_id, skip, limit)


@router.post(
    "/products",
    response_model=Product,
    status_code=status.HTTP_201_CREATED,
    summary="Create a product",
    responses={
        201: {"description": "Product created"},
        404: {"description": "Collection not found"},
        422: {"description": "Invalid request data"},
        **AUTH_RESPONSES,
    },
)
async def create_product(product: ProductCreate, request: Request):
    try:
        return await catalog.create_product_service(product, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Product create failed: {e}")
        raise


@router.get(
    "/products/{id}",
    response_model=Product,
    summary="Get a product",
    responses={404: {"description": "Product not found"}, **AUTH_RESPONSES},
)
async def get_product(id: str, request: Request):
    return await catalog.read_product_service(id, request)


@router.put(
    "/products/{id}",
    response_model=Product,
    summary="Update a product",
    responses={404: {"description": "Product or collection not found"}, **AUTH_RESPONSES},
)
async def update_product(id: str, update: ProductUpdate, request: Request):
    try:
        return await catalog.update_product_service(id, update, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Product update failed: {e}", {"id": id})
        raise


@router.delete(
    "/products/{id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a product",
    responses={204: {"description": "Product deleted"}, 404: {"description": "Product not found"}, **AUTH_RESPONSES},
)
async def delete_product(id: str, request: Request):
    await catalog.delete_product_service(id, request)


# ────────────── ORDERS ──────────────
@router.get(
    "/orders",
    response_model=List[Order],
    summary="List orders",
    response_description="Newest first; filter by status and collection_id",
    responses={200: {"description": "Orders"}, **AUTH_RESPONSES},
)
async def list_orders(
    request: Request,
    status: Optional[str] = None,
    collection_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
):
    return await read_orders_service(request, status, collection_id, skip, limit)


@router.get(
    "/orders/{id}",
    response_model=Order,
    summary="Get an order",
    responses={404: {"description": "Order not found"}, **AUTH_RESPONSES},
)
async def get_order(id: str, request: Request):
    return await read_order_service(id, request)


@router.patch(
    "/orders/{id}",
    response_model=Order,
    summary="Change an order status",
    responses={
        200: {"description": "Status changed"},
        400: {"description": "Transition not allowed from the current status"},
        404: {"description": "Order not found"},
        422: {"description": "Unknown status"},
        **AUTH_RESPONSES,
    },
)
async def update_order_status(id: str, update: OrderStatusUpdate, request: Request):
    try:
        return await update_order_status_service(id, update, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Order status update failed: {e}", {"id": id})
        raise


@router.post(
    "/orders/receipts",
    summary="Store missing Stripe receipt links (admin only)",
    responses={
        200: {"description": "Per-order results"},
        403: {"description": "Not an admin"},
        **AUTH_RESPONSES,
    },
)
async def backfill_receipts(request: Request, limit: int = 50, current_user: Merchant = Depends(get_current_user)):
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins backfill receipts")
    return await backfill_receipts_service(request, limit)


# ────────────── BATCHES ──────────────
@router.post(
    "/batches/repair",
    summary="Repair batch ids, order numbers, item indexes and signatures",
    response_description="Counts of fixed rows per batch",
    responses={
        200: {"description": "Repair results"},
        400: {"description": "Neither batch_order_id nor fix_all given"},
        404: {"description": "Batch not found"},
        **AUTH_RESPONSES,
    },
)
async def repair_batches(body: BatchRepair, request: Request):
    return await repair_batches_service(body, request)


# ────────────── COUPONS ──────────────
@router.get(
    "/coupons",
    response_model=List[Coupon],
    summary="List coupons",
    responses={200: {"description": "Coupons"}, **AUTH_RESPONSES},
)
async def list_coupons(request: Request, skip: int = 0, limit: int = 100):
    return await catalog.read_coupons_service(request, skip, limit)


@router.post(
    "/coupons",
    response_model=Coupon,
    status_code=status.HTTP_201_CREATED,
    summary="Create a coupon",
    responses={
        201: {"description": "Coupon created"},
        409: {"description": "Code already exists"},
        422: {"description": "Invalid request data"},
        **AUTH_RESPONSES,
    },
)
async def create_coupon(coupon: CouponCreate, request: Request):
    try:
        return await catalog.create_coupon_service(coupon, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Coupon create failed: {e}")
        raise


@router.get(
    "/coupons/{id}",
    response_model=Coupon,
    summary="Get a coupon",
    responses={404: {"description": "Coupon not found"}, **AUTH_RESPONSES},
)
async def get_coupon(id: str, request: Request):
    return await catalog.read_coupon_service(id, request)


@router.put(
    "/coupons/{id}",
    response_model=Coupon,
    summary="Update a coupon",
    responses={404: {"description": "Coupon not found"}, 409: {"description": "Code already exists"}, **AUTH_RESPONSES},
)
async def update_coupon(id: str, update: CouponUpdate, request: Request):
    try:
        return await catalog.update_coupon_service(id, update, request)
    except Exception as e:
        await request.app.state.log.log_error("merchant", f"Coupon update failed: {e}", {"id": id})
        raise


@router.delete(
    "/coupons/{id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a coupon",
    responses={204: {"description": "Coupon deleted"}, 404: {"description": "Coupon not found"}, **AUTH_RESPONSES},
)
async def delete_coupon(id: str, request: Request):
    await catalog.delete_coupon_service(id, request)
