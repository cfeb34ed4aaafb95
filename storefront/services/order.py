# storefront/services/order.py

from typing import Optional
from sqlalchemy.future import select
from fastapi import HTTPException, Request

from storefront.models.order import Order as OrderModel
from storefront.schemas.order import OrderStatusUpdate
from storefront.services import rpc


async def read_orders_service(
    request: Request,
    status: Optional[str] = None,
    collection_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> list[OrderModel]:
    """
    Orders for the dashboard, newest first, optionally filtered by status and collection.
    """
    db = request.state.db
    log = request.app.state.log

    query = select(OrderModel)
    if status:
        query = query.where(OrderModel.status == status)
    if collection_id:
        query = query.where(OrderModel.collection_id == collection_id)

    result = await db.execute(query.order_by(OrderModel.created_at.desc()).offset(skip).limit(limit))
    orders = result.scalars().all()

    await log.log_info("order", f"{len(orders)} orders loaded", {"status": status, "collectionId": collection_id})
    return orders


async def read_order_service(id: str, request: Request) -> OrderModel:
    db = request.state.db
    log = request.app.state.log

    db_order = await db.get(OrderModel, id)
    if db_order is None:
        await log.log_error("order", "Order not found", {"id": id})
        raise HTTPException(status_code=404, detail="Order not found")

    return db_order


async def update_order_status_service(id: str, update: OrderStatusUpdate, request: Request) -> OrderModel:
    """
    Status change from the dashboard through merchant_update_order_status.
    404 for an unknown order, 400 for a transition the merchant may not make.
    """
    db = request.state.db
    log = request.app.state.log

    await read_order_service(id, request)

    result = await rpc.merchant_update_order_status(db, id, update.status)
    if not result["success"]:
        await log.log_warning("order", result["message"], {"id": id})
        raise HTTPException(status_code=400, detail=result["message"])

    await log.log_info("order", result["message"], {"id": id})

    refreshed = await db.execute(
        select(OrderModel).where(OrderModel.id == id).execution_options(populate_existing=True)
    )
    return refreshed.scalar_one()
