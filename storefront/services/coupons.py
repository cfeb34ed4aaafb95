# storefront/services/coupons.py

import asyncio
from typing import Optional

from fastapi import Request
from sqlalchemy import update, or_
from sqlalchemy.future import select

from storefront.models.catalog import Coupon
from storefront.schemas.catalog import Coupon as CouponSchema
from storefront.schemas.checkout import ValidateCouponRequest
from storefront.utils.database import utcnow
from storefront.utils.errors import CheckoutError, PaymentProviderError


def apply_coupon(price: float, coupon: Coupon) -> float:
    """
    Discount a coupon gives on a price.
    Percentage discounts are capped by max_discount_amount, fixed ones by the price.
    """
    price = float(price or 0)
    if price <= 0:
        return 0.0

    if coupon.discount_type == "percentage":
        discount = price * float(coupon.discount_value or 0) / 100
        if coupon.max_discount_amount is not None:
            discount = min(discount, float(coupon.max_discount_amount))
    else:
        discount = float(coupon.discount_value or 0)

    return round(max(min(discount, price), 0.0), 2)


def coupon_exhausted(coupon: Coupon) -> bool:
    return coupon.max_uses is not None and (coupon.current_uses or 0) >= coupon.max_uses


async def find_active_coupon(db, code: str) -> Optional[Coupon]:
    """Active, unexpired coupon by code; codes are stored upper-case."""
    result = await db.execute(
        select(Coupon).where(Coupon.code == code.strip().upper(), Coupon.status == "active")
    )
    coupon = result.scalars().first()
    if coupon is None or (coupon.expires_at is not None and coupon.expires_at < utcnow()):
        return None
    return coupon


async def redeem_coupon(db, coupon: Coupon) -> bool:
    """
    Count one use. The limit is part of the UPDATE, so two checkouts racing
    for the last use cannot both count it.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
        )
        .values(current_uses=Coupon.current_uses + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


# ────────────── rules ──────────────
def verify_whitelist(wallet_address: str, whitelist: Optional[str]) -> dict:
    if not wallet_address or not whitelist:
        return {"isValid": False, "error": "Invalid input parameters"}

    wallets = [address.strip() for address in whitelist.split(",") if address.strip()]
    if wallet_address in wallets:
        return {"isValid": True}
    return {"isValid": False, "error": "Wallet not whitelisted"}


async def verify_token_holding(client, wallet_address: str, mint: Optional[str], min_amount: float) -> dict:
    if not wallet_address or not mint or min_amount < 0:
        return {"isValid": False, "error": "Invalid input parameters", "balance": 0}

    try:
        balance = await client.get_token_balance(wallet_address, mint)
    except PaymentProviderError:
        return {"isValid": False, "error": "Failed to verify token balance", "balance": 0}

    if balance <= 0:
        return {"isValid": False, "error": f"No tokens found. You need {min_amount} tokens to proceed.", "balance": 0}
    if balance < min_amount:
        return {
            "isValid": False,
            "error": f"Insufficient tokens. You have {balance} but need {min_amount} tokens.",
            "balance": balance,
        }
    return {"isValid": True, "balance": balance}


async def check_rule(client, rule: dict, wallet_address: str) -> dict:
    rule_type = rule.get("type")
    if rule_type == "token":
        quantity = rule.get("quantity")
        return await verify_token_holding(client, wallet_address, rule.get("value"), float(1 if quantity is None else quantity))
    if rule_type == "whitelist":
        return verify_whitelist(wallet_address, rule.get("value"))
    return {"isValid": False, "error": f"Unknown rule type: {rule_type}"}


async def check_group(client, group: dict, wallet_address: str) -> dict:
    results = await asyncio.gather(*(check_rule(client, rule, wallet_address) for rule in group.get("rules") or []))

    if group.get("operator") == "AND":
        failed = next((r for r in results if not r["isValid"]), None)
        return {"isValid": failed is None, "error": failed and failed.get("error")}

    if any(r["isValid"] for r in results):
        return {"isValid": True}
    return {"isValid": False, "error": "None of the requirements were met"}


async def verify_eligibility(client, coupon: Coupon, wallet_address: str, collection_ids: list) -> dict:
    if coupon.collection_ids and collection_ids:
        if not any(cid in coupon.collection_ids for cid in collection_ids):
            return {"isValid": False, "error": "This coupon is not valid for these products"}

    groups = (coupon.eligibility_rules or {}).get("groups") or []
    if not groups:
        return {"isValid": True}

    results = await asyncio.gather(*(check_group(client, group, wallet_address) for group in groups))
    failed = next((r for r in results if not r["isValid"]), None)
    if failed:
        return {"isValid": False, "error": failed.get("error")}
    return {"isValid": True}


# ────────────── validate-coupons ──────────────
async def validate_coupon_service(body: ValidateCouponRequest, request: Request) -> dict:
    db = request.state.db
    log = request.app.state.log
    client = request.app.state.solana

    if not body.code or not body.wallet_address or body.product_collection_ids is None:
        raise CheckoutError(400, "Missing required parameters")

    coupon = await find_active_coupon(db, body.code)
    if coupon is None:
        raise CheckoutError(404, "Coupon not found or inactive", "No matching coupon")
    if coupon_exhausted(coupon):
        raise CheckoutError(403, "Coupon usage limit reached", {"code": coupon.code, "maxUses": coupon.max_uses})

    eligibility = await verify_eligibility(client, coupon, body.wallet_address, body.product_collection_ids)

    await log.log_info("coupons", "Coupon checked", {
        "code": coupon.code,
        "walletAddress": body.wallet_address,
        "isValid": eligibility["isValid"],
        "error": eligibility.get("error"),
    })

    if not eligibility["isValid"]:
        raise CheckoutError(403, "Coupon is not eligible", eligibility.get("error"))

    return {"success": True, "coupon": CouponSchema.model_validate(coupon).model_dump(mode="json")}
