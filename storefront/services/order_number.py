# storefront/services/order_number.py

import re
import random
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.future import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import Order

FIRST_ORDER_NUMBER = "SF-1001"

SEQUENTIAL_RE = re.compile(r"^SF-(\d+)$")


def dated_order_number(now: Optional[datetime] = None) -> str:
    """SF-MMDD-XXXX with a random 4-digit suffix."""
    now = now or datetime.now()
    return f"SF-{now:%m%d}-{random.randint(1000, 9999)}"


def next_order_number(current: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Order number following the highest existing one.

    SF-1041 -> SF-1042, nothing yet -> SF-1001, anything else (dated or
    foreign format) -> a fresh dated number.
    """
    if not current:
        return FIRST_ORDER_NUMBER

    match = SEQUENTIAL_RE.match(current)
    if match:
        return f"SF-{int(match.group(1)) + 1}"

    return dated_order_number(now)


async def generate_order_number(db: AsyncSession, log=None) -> str:
    try:
        result = await db.execute(
            select(Order.order_number)
            .where(Order.order_number.is_not(None))
            .order_by(Order.order_number.desc())
            .limit(1)
        )
        current = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        if log:
            await log.log_error("order_number", f"Could not read latest order number: {e}")
        return f"SF-{str(int(time.time() * 1000))[-6:]}"

    return next_order_number(current)
