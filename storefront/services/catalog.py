# storefront/services/catalog.py

# Dashboard CRUD for collections, products and coupons.

from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from fastapi import HTTPException, Request

from storefront.models.catalog import Collection as CollectionModel, Product as ProductModel, Coupon as CouponModel
from storefront.schemas.catalog import (
    CollectionCreate,
    CollectionUpdate,
    ProductCreate,
    ProductUpdate,
    CouponCreate,
    CouponUpdate,
)


async def _get_or_404(request: Request, model, id: str, label: str):
    db_obj = await request.state.db.get(model, id)
    if db_obj is None:
        await request.app.state.log.log_error("catalog", f"{label} not found", {"id": id})
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return db_obj


async def _save(request: Request, db_obj, label: str):
    db = request.state.db
    db.add(db_obj)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail=f"{label} conflicts with an existing one")
    await db.refresh(db_obj)
    return db_obj


async def _delete(request: Request, model, id: str, label: str) -> None:
    db = request.state.db
    db_obj = await _get_or_404(request, model, id, label)
    await db.delete(db_obj)
    await db.commit()
    await request.app.state.log.log_info("catalog", f"{label} deleted", {"id": id})


# ────────────── Collections ──────────────
async def read_collections_service(request: Request, skip: int = 0, limit: int = 100) -> list[CollectionModel]:
    result = await request.state.db.execute(
        select(CollectionModel).order_by(CollectionModel.created_at.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


async def read_collection_service(id: str, request: Request) -> CollectionModel:
    return await _get_or_404(request, CollectionModel, id, "Collection")


async def create_collection_service(collection: CollectionCreate, request: Request) -> CollectionModel:
    db_collection = await _save(request, CollectionModel(**collection.model_dump()), "Collection")
    await request.app.state.log.log_info("catalog", "Collection created", {"id": db_collection.id})
    return db_collection


async def update_collection_service(id: str, update: CollectionUpdate, request: Request) -> CollectionModel:
    db_collection = await _get_or_404(request, CollectionModel, id, "Collection")
    for key, value in update.model_dump(exclude_unset=True).items():
        setattr(db_collection, key, value)
    db_collection = await _save(request, db_collection, "Collection")
    await request.app.state.log.log_info("catalog", "Collection updated", {"id": id})
    return db_collection


async def delete_collection_service(id: str, request: Request) -> None:
    await _delete(request, CollectionModel, id, "Collection")


# ────────────── Products ──────────────
async def read_products_service(
    request: Request, collection_id: Optional[str] = None, skip: int = 0, limit: int = 100
) -> list[ProductModel]:
    query = select(ProductModel)
    if collection_id:
        query = query.where(ProductModel.collection_id == collection_id)
    result = await request.state.db.execute(query.order_by(ProductModel.created_at.desc()).offset(skip).limit(limit))
    return result.scalars().all()


async def read_product_service(id: str, request: Request) -> ProductModel:
    return await _get_or_404(request, ProductModel, id, "Product")


async def create_product_service(product: ProductCreate, request: Request) -> ProductModel:
    await _get_or_404(request, CollectionModel, product.collection_id, "Collection")
    db_product = await _save(request, ProductModel(**product.model_dump()), "Product")
    await request.app.state.log.log_info("catalog", "Product created", {
        "id": db_product.id,
        "collectionId": db_product.collection_id,
    })
    return db_product


async def update_product_service(id: str, update: ProductUpdate, request: Request) -> ProductModel:
    db_product = await _get_or_404(request, ProductModel, id, "Product")
    changes = update.model_dump(exclude_unset=True)
    if changes.get("collection_id"):
        await _get_or_404(request, CollectionModel, changes["collection_id"], "Collection")
    for key, value in changes.items():
        setattr(db_product, key, value)
    db_product = await _save(request, db_product, "Product")
    await request.app.state.log.log_info("catalog", "Product updated", {"id": id})
    return db_product


async def delete_product_service(id: str, request: Request) -> None:
    await _delete(request, ProductModel, id, "Product")


# ────────────── Coupons ──────────────
async def read_coupons_service(request: Request, skip: int = 0, limit: int = 100) -> list[CouponModel]:
    result = await request.state.db.execute(
        select(CouponModel).order_by(CouponModel.created_at.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


async def read_coupon_service(id: str, request: Request) -> CouponModel:
    return await _get_or_404(request, CouponModel, id, "Coupon")


async def create_coupon_service(coupon: CouponCreate, request: Request) -> CouponModel:
    db_coupon = await _save(request, CouponModel(**coupon.model_dump()), "Coupon")
    await request.app.state.log.log_info("catalog", "Coupon created", {"id": db_coupon.id, "code": db_coupon.code})
    return db_coupon


async def update_coupon_service(id: str, update: CouponUpdate, request: Request) -> CouponModel:
    db_coupon = await _get_or_404(request, CouponModel, id, "Coupon")
    for key, value in update.model_dump(exclude_unset=True).items():
        setattr(db_coupon, key, value)
    db_coupon = await _save(request, db_coupon, "Coupon")
    await request.app.state.log.log_info("catalog", "Coupon updated", {"id": id})
    return db_coupon


async def delete_coupon_service(id: str, request: Request) -> None:
    await _delete(request, CouponModel, id, "Coupon")
