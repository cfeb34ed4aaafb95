# storefront/services/merchants.py

from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select
from fastapi import HTTPException, Request

from storefront.models.merchant import Merchant as MerchantModel
from storefront.schemas.merchant import MerchantCreate, MerchantUpdate


async def read_merchants_service(request: Request, skip: int = 0, limit: int = 100) -> list[MerchantModel]:
    """
    List dashboard accounts.
    """
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(select(MerchantModel).order_by(MerchantModel.id).offset(skip).limit(limit))
    merchants = result.scalars().all()

    await log.log_info("merchant", f"{len(merchants)} accounts loaded")
    return merchants


async def find_merchant_by_login(login: str, request: Request) -> Optional[MerchantModel]:
    db = request.state.db
    result = await db.execute(select(MerchantModel).where(MerchantModel.login == login))
    return result.scalar_one_or_none()


async def create_merchant_service(merchant: MerchantCreate, request: Request) -> MerchantModel:
    """
    Create an account. The caller hashes the password.
    """
    db = request.state.db
    log = request.app.state.log

    db_merchant = MerchantModel(**merchant.model_dump())
    db.add(db_merchant)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    await db.refresh(db_merchant)

    await log.log_info("merchant", "Account created", {"id": db_merchant.id, "login": db_merchant.login})
    return db_merchant


async def read_merchant_service(id: int, request: Request) -> MerchantModel:
    db = request.state.db
    log = request.app.state.log

    result = await db.execute(select(MerchantModel).where(MerchantModel.id == id))
    db_merchant = result.scalar_one_or_none()
    if db_merchant is None:
        await log.log_error("merchant", "Account not found", {"id": id})
        raise HTTPException(status_code=404, detail="Account not found")

    return db_merchant


async def update_merchant_service(id: int, merchant_update: MerchantUpdate, request: Request) -> MerchantModel:
    """
    Update the fields that were sent.
    """
    db = request.state.db
    log = request.app.state.log

    db_merchant = await read_merchant_service(id, request)
    for key, value in merchant_update.model_dump(exclude_unset=True).items():
        setattr(db_merchant, key, value)

    db.add(db_merchant)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    await db.refresh(db_merchant)

    await log.log_info("merchant", "Account updated", {"id": id})
    return db_merchant


async def delete_merchant_service(id: int, request: Request) -> None:
    db = request.state.db
    log = request.app.state.log

    db_merchant = await read_merchant_service(id, request)
    await db.delete(db_merchant)
    await db.commit()
    await log.log_info("merchant", "Account deleted", {"id": id})
