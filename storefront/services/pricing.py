# storefront/services/pricing.py

import httpx
from fastapi import Request

from storefront.config import settings
from storefront.utils.errors import CheckoutError


async def fetch_sol_price(client: httpx.AsyncClient = None) -> float:
    """SOL/USD from CoinGecko simple/price."""
    url = f"{settings.COINGECKO_API.rstrip('/')}/simple/price"
    params = {"ids": "solana", "vs_currencies": "usd"}

    if client is None:
        async with httpx.AsyncClient(timeout=10.0) as own_client:
            resp = await own_client.get(url, params=params)
    else:
        resp = await client.get(url, params=params)
    resp.raise_for_status()

    price = (resp.json().get("solana") or {}).get("usd")
    if price is None:
        raise ValueError("CoinGecko response without solana.usd")
    return float(price)


# ────────────── sol-price ──────────────
async def sol_price_service(request: Request) -> dict:
    log = request.app.state.log

    try:
        price = await fetch_sol_price(getattr(request.app.state, "http", None))
    except (httpx.HTTPError, ValueError) as e:
        await log.log_error("pricing", f"SOL price lookup failed: {e}")
        raise CheckoutError(502, "Failed to fetch SOL price", str(e))

    return {"success": True, "price": price, "currency": "usd"}
