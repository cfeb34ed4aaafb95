# tests/test_order_number.py

import re
from datetime import datetime

from storefront.models.order import Order
from storefront.services.order_number import (
    FIRST_ORDER_NUMBER,
    dated_order_number,
    next_order_number,
    generate_order_number,
)

DATED = re.compile(r"^SF-\d{4}-\d{4}$")


def test_first_number_when_none_exists():
    assert next_order_number(None) == FIRST_ORDER_NUMBER == "SF-1001"


def test_sequential_number_increments():
    assert next_order_number("SF-1041") == "SF-1042"


def test_dated_or_unknown_format_starts_a_dated_number():
    now = datetime(2025, 3, 7, 12, 0)
    for current in ("SF-0307-1234", "ORD-77"):
        number = next_order_number(current, now)
        assert DATED.match(number)
        assert number.startswith("SF-0307-")


def test_dated_suffix_range():
    suffix = int(dated_order_number(datetime(2025, 1, 2)).split("-")[-1])
    assert 1000 <= suffix <= 9999


async def test_generate_uses_highest_existing(db):
    db.add_all([Order(order_number="SF-1001"), Order(order_number="SF-1002")])
    await db.commit()

    assert await generate_order_number(db) == "SF-1003"


async def test_generate_on_empty_table(db):
    assert await generate_order_number(db) == "SF-1001"
