# tests/test_coupons.py

from datetime import timedelta

import pytest

from storefront.models.catalog import Coupon
from storefront.services.coupons import apply_coupon, verify_whitelist, check_group, redeem_coupon
from storefront.utils.database import utcnow

WALLET = "Holder1111"
MINT = "MintAAA"


def test_percentage_discount_is_capped():
    coupon = Coupon(discount_type="percentage", discount_value=50, max_discount_amount=10)
    assert apply_coupon(40, coupon) == 10.0
    assert apply_coupon(10, coupon) == 5.0


def test_fixed_discount_never_exceeds_price():
    coupon = Coupon(discount_type="fixed", discount_value=25)
    assert apply_coupon(40, coupon) == 25.0
    assert apply_coupon(15, coupon) == 15.0
    assert apply_coupon(0, coupon) == 0.0


def test_whitelist_trims_entries():
    assert verify_whitelist(WALLET, f" other , {WALLET} ")["isValid"]
    assert verify_whitelist("stranger", WALLET)["error"] == "Wallet not whitelisted"
    assert verify_whitelist(WALLET, "")["error"] == "Invalid input parameters"


async def test_and_group_needs_every_rule(fake_solana):
    fake_solana.balances[(WALLET, MINT)] = 5
    group = {"operator": "AND", "rules": [
        {"type": "token", "value": MINT, "quantity": 3},
        {"type": "whitelist", "value": "someone-else"},
    ]}
    result = await check_group(fake_solana, group, WALLET)
    assert not result["isValid"]
    assert result["error"] == "Wallet not whitelisted"


async def test_or_group_needs_one_rule(fake_solana):
    group = {"operator": "OR", "rules": [
        {"type": "token", "value": MINT, "quantity": 1},
        {"type": "whitelist", "value": WALLET},
    ]}
    assert (await check_group(fake_solana, group, WALLET))["isValid"]

    group["rules"][1]["value"] = "someone-else"
    result = await check_group(fake_solana, group, WALLET)
    assert result == {"isValid": False, "error": "None of the requirements were met"}


async def test_insufficient_tokens_message(fake_solana):
    fake_solana.balances[(WALLET, MINT)] = 2
    group = {"operator": "AND", "rules": [{"type": "token", "value": MINT, "quantity": 3}]}
    result = await check_group(fake_solana, group, WALLET)
    assert result["error"] == "Insufficient tokens. You have 2 but need 3.0 tokens."


# ────────────── validate-coupons ──────────────
@pytest.fixture
async def token_coupon(db, collection):
    coupon = Coupon(
        code="HOLDERS20",
        discount_type="percentage",
        discount_value=20,
        collection_ids=[collection.id],
        eligibility_rules={"groups": [{"operator": "AND", "rules": [{"type": "token", "value": MINT, "quantity": 1}]}]},
    )
    db.add(coupon)
    await db.commit()
    return coupon


async def test_valid_coupon(client, collection, token_coupon, fake_solana):
    fake_solana.balances[(WALLET, MINT)] = 1

    resp = await client.post("/validate-coupons", json={
        "code": "holders20",
        "walletAddress": WALLET,
        "productCollectionIds": [collection.id],
    })

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["coupon"]["code"] == "HOLDERS20"
    assert data["coupon"]["discount_value"] == 20


async def test_ineligible_wallet_is_403(client, collection, token_coupon):
    resp = await client.post("/validate-coupons", json={
        "code": "HOLDERS20",
        "walletAddress": WALLET,
        "productCollectionIds": [collection.id],
    })

    assert resp.status_code == 403
    assert resp.json() == {
        "error": "Coupon is not eligible",
        "details": "No tokens found. You need 1.0 tokens to proceed.",
    }


async def test_wrong_collection_is_403(client, token_coupon, fake_solana):
    fake_solana.balances[(WALLET, MINT)] = 1

    resp = await client.post("/validate-coupons", json={
        "code": "HOLDERS20",
        "walletAddress": WALLET,
        "productCollectionIds": ["another-collection"],
    })

    assert resp.status_code == 403
    assert resp.json()["details"] == "This coupon is not valid for these products"


async def test_unknown_inactive_and_expired_coupons_are_404(client, db, collection):
    db.add(Coupon(code="OLD", discount_value=5, status="inactive"))
    db.add(Coupon(code="GONE", discount_value=5, expires_at=utcnow() - timedelta(days=1)))
    await db.commit()

    for code in ("NOPE", "OLD", "GONE"):
        resp = await client.post("/validate-coupons", json={
            "code": code,
            "walletAddress": WALLET,
            "productCollectionIds": [collection.id],
        })
        assert resp.status_code == 404


async def test_coupon_without_rules_is_open(client, db):
    db.add(Coupon(code="WELCOME", discount_type="fixed", discount_value=5))
    await db.commit()

    resp = await client.post("/validate-coupons", json={
        "code": "WELCOME",
        "walletAddress": WALLET,
        "productCollectionIds": [],
    })
    assert resp.status_code == 200


async def test_missing_parameters(client):
    resp = await client.post("/validate-coupons", json={"code": "X", "walletAddress": WALLET})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing required parameters"


async def test_used_up_coupon_is_403(client, db):
    db.add(Coupon(code="LIMITED", discount_value=5, max_uses=2, current_uses=2))
    await db.commit()

    resp = await client.post("/validate-coupons", json={
        "code": "LIMITED",
        "walletAddress": WALLET,
        "productCollectionIds": [],
    })

    assert resp.status_code == 403
    assert resp.json()["error"] == "Coupon usage limit reached"


# ────────────── usage counter ──────────────
async def test_redeem_stops_at_the_limit(db):
    coupon = Coupon(code="TWICE", discount_value=5, max_uses=2)
    db.add(coupon)
    await db.commit()

    assert await redeem_coupon(db, coupon)
    assert await redeem_coupon(db, coupon)
    assert not await redeem_coupon(db, coupon)

    await db.refresh(coupon)
    assert coupon.current_uses == 2


async def test_redeem_without_limit(db):
    coupon = Coupon(code="OPEN", discount_value=5)
    db.add(coupon)
    await db.commit()

    for _ in range(3):
        assert await redeem_coupon(db, coupon)

    await db.refresh(coupon)
    assert coupon.current_uses == 3
