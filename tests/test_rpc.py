# tests/test_rpc.py

import pytest
from sqlalchemy.future import select

from storefront.models.catalog import Collection, Product
from storefront.models.order import Order
from storefront.models.transaction import TransactionLog
from storefront.services import rpc
from storefront.utils.errors import RpcError

from conftest import SHIPPING_INFO


async def _draft(db, product, wallet="Buyer111"):
    return await rpc.create_order(db, product.id, [{"name": "Size", "value": "M"}], SHIPPING_INFO, wallet)


async def test_create_order_inserts_draft(db, product):
    order_id = await _draft(db, product)

    order = await db.get(Order, order_id)
    assert order.status == "draft"
    assert order.amount == 40.0
    assert order.collection_id == product.collection_id
    assert order.shipping_address["city"] == "Austin"


async def test_create_order_rejects_unknown_product(db):
    with pytest.raises(RpcError):
        await rpc.create_order(db, "missing", [], SHIPPING_INFO, "w")


async def test_create_order_rejects_hidden_collection(db):
    hidden = Collection(name="Hidden", visible=False)
    db.add(hidden)
    await db.commit()
    product = Product(collection_id=hidden.id, name="Secret", price=10)
    db.add(product)
    await db.commit()

    with pytest.raises(RpcError, match="not available"):
        await rpc.create_order(db, product.id, [], SHIPPING_INFO, "w")


async def test_payment_lifecycle(db, product):
    order_id = await _draft(db, product)

    attached = await rpc.update_order_transaction(db, order_id, "sig-1", 0.25)
    assert attached["success"]

    again = await rpc.update_order_transaction(db, order_id, "sig-2", 0.25)
    assert not again["success"]
    assert "pending_payment" in again["message"]

    confirmed = await rpc.confirm_order_transaction(db, order_id)
    assert confirmed["success"]

    order = await db.get(Order, order_id, populate_existing=True)
    assert order.status == "confirmed"
    assert order.transaction_signature == "sig-1"
    assert order.amount_sol == 0.25


async def test_rejected_signature_is_stored_as_null(db, product):
    order_id = await _draft(db, product)
    await rpc.update_order_transaction(db, order_id, "rejected", 0)

    order = await db.get(Order, order_id, populate_existing=True)
    assert order.status == "pending_payment"
    assert order.transaction_signature is None


async def test_confirm_order_payment_settles_all_orders_of_a_signature(db, product):
    first = await _draft(db, product)
    second = await _draft(db, product)
    for order_id in (first, second):
        await rpc.update_order_transaction(db, order_id, "shared-sig", 0.1)

    result = await rpc.confirm_order_payment(db, "shared-sig", "confirmed")
    assert result["success"]
    assert set(result["order_ids"]) == {first, second}

    statuses = (await db.execute(select(Order.status).where(Order.transaction_signature == "shared-sig"))).scalars().all()
    assert statuses == ["confirmed", "confirmed"]

    again = await rpc.confirm_order_payment(db, "shared-sig", "confirmed")
    assert not again["success"]


async def test_confirm_order_payment_failed_cancels(db, product):
    order_id = await _draft(db, product)
    await rpc.update_order_transaction(db, order_id, "bad-sig", 0.1)

    result = await rpc.confirm_order_payment(db, "bad-sig", "failed")
    assert result["new_status"] == "cancelled"


async def test_confirm_order_payment_validates_status(db):
    assert not (await rpc.confirm_order_payment(db, "x", "maybe"))["success"]
    assert not (await rpc.confirm_order_payment(db, "unknown", "confirmed"))["success"]


async def test_update_transaction_status_upserts_and_merges(db):
    await rpc.update_transaction_status(db, "sig-log", "pending", {"orderId": "o-1", "amountSol": 0.5})
    await rpc.update_transaction_status(db, "sig-log", "failed", {"error": "boom", "buyer": "Buyer111"})

    rows = (await db.execute(select(TransactionLog).where(TransactionLog.signature == "sig-log"))).scalars().all()
    assert len(rows) == 1
    entry = rows[0]
    await db.refresh(entry)
    assert entry.status == "failed"
    assert entry.order_id == "o-1"
    assert entry.amount_sol == 0.5
    assert entry.buyer_address == "Buyer111"
    assert entry.error_message == "boom"
    assert entry.details["orderId"] == "o-1"
    assert entry.details["error"] == "boom"


async def test_update_transaction_status_rejects_unknown_status(db):
    assert not (await rpc.update_transaction_status(db, "sig", "weird"))["success"]


async def test_system_and_merchant_transitions(db, product):
    order_id = await _draft(db, product)

    assert not (await rpc.system_update_order_status(db, order_id, "shipped"))["success"]
    assert (await rpc.system_update_order_status(db, order_id, "pending_payment"))["success"]
    assert (await rpc.system_update_order_status(db, order_id, "confirmed"))["success"]

    result = await rpc.merchant_update_order_status(db, order_id, "shipped")
    assert result["success"]
    assert result["old_status"] == "confirmed"

    assert not (await rpc.merchant_update_order_status(db, order_id, "confirmed"))["success"]
    assert (await rpc.merchant_update_order_status(db, order_id, "delivered"))["success"]
    assert not (await rpc.merchant_update_order_status(db, "missing", "delivered"))["success"]
