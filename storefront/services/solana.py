# storefront/services/solana.py

"""
Solana JSON-RPC access and on-chain payment verification.

Only the handful of RPC methods the checkout needs are wrapped; the node is
chosen by settings.solana_rpc_url (explicit URL, Helius, Alchemy, public).
"""

from datetime import datetime, timezone
from itertools import count
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.config import settings
from storefront.models.transaction import TransactionLog, PENDING, PROCESSING, CONFIRMED, FAILED
from storefront.schemas.checkout import VerifyTransactionRequest
from storefront.services import rpc
from storefront.utils.errors import CheckoutError, PaymentProviderError

LAMPORTS_PER_SOL = 1_000_000_000
AMOUNT_TOLERANCE_SOL = 0.00001
PENDING_SCAN_LIMIT = 50

# signatures that are not blockchain transactions
OFF_CHAIN_PREFIXES = ("pi_", "free_")


class SolanaRPC:
    def __init__(self, url: str = None, timeout_seconds: float = None, transport: httpx.AsyncBaseTransport = None) -> None:
        self.url = url or settings.solana_rpc_url
        self._client = httpx.AsyncClient(timeout=timeout_seconds or settings.SOLANA_RPC_TIMEOUT, transport=transport)
        self._ids = count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: list):
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self.url, json=payload)
            resp.raise_for_status()
        except httpx.TimeoutException:
            raise PaymentProviderError(f"Solana RPC timed out on {method}")
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Solana RPC error on {method}: {e}")

        data = resp.json()
        if data.get("error"):
            raise PaymentProviderError(f"Solana RPC {method} failed: {data['error'].get('message', data['error'])}")
        return data.get("result")

    async def get_transaction(self, signature: str) -> Optional[dict]:
        return await self.call("getTransaction", [
            signature,
            {"encoding": "json", "commitment": "finalized", "maxSupportedTransactionVersion": 0},
        ])

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """Sum of the owner's SPL token accounts for a mint, in UI units."""
        accounts = await self.call("getTokenAccountsByOwner", [
            owner,
            {"mint": mint},
            {"encoding": "jsonParsed"},
        ])
        total = 0.0
        for account in (accounts or {}).get("value") or []:
            balance = await self.call("getTokenAccountBalance", [account["pubkey"]])
            amount = ((balance or {}).get("value") or {}).get("uiAmount")
            total += float(amount or 0)
        return total


# ────────────── verification ──────────────
def account_keys(transaction: dict) -> list:
    """Static keys followed by keys loaded from address lookup tables (v0)."""
    message = transaction["transaction"]["message"]
    keys = list(message.get("accountKeys") or [])
    loaded = (transaction.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


def transfer_details(transaction: dict) -> Optional[dict]:
    """
    Sender and recipient of a SOL transfer from balance deltas.

    The first account whose balance went down is the buyer, the first one
    that went up is the recipient.
    """
    meta = transaction["meta"]
    sender = recipient = None
    for index, address in enumerate(account_keys(transaction)):
        change = (meta["postBalances"][index] - meta["preBalances"][index]) / LAMPORTS_PER_SOL
        if change > 0 and recipient is None:
            recipient = (address, change)
        elif change < 0 and sender is None:
            sender = (address, change)

    if recipient is None or sender is None:
        return None
    return {"amount": recipient[1], "buyer": sender[0], "recipient": recipient[0]}


def check_expected(details: dict, expected: Optional[dict]) -> Optional[str]:
    """Mismatch message, or None when the transfer matches."""
    if not expected:
        return None
    if abs(details["amount"] - float(expected["amount"])) > AMOUNT_TOLERANCE_SOL:
        return f"Amount mismatch: expected {expected['amount']} SOL, got {details['amount']} SOL"
    if details["buyer"].lower() != str(expected["buyer"]).lower():
        return f"Buyer mismatch: expected {expected['buyer']}, got {details['buyer']}"
    if details["recipient"].lower() != str(expected["recipient"]).lower():
        return f"Recipient mismatch: expected {expected['recipient']}, got {details['recipient']}"
    return None


async def verify_transaction_details(client: SolanaRPC, signature: str, expected: Optional[dict] = None) -> dict:
    """{"isValid": bool, "error"?: str, "details"?: {amount, buyer, recipient}}"""
    try:
        transaction = await client.get_transaction(signature)
    except PaymentProviderError as e:
        return {"isValid": False, "error": str(e)}

    if not transaction or not transaction.get("meta"):
        return {"isValid": False, "error": "Transaction not found"}

    err = transaction["meta"].get("err")
    if err:
        return {
            "isValid": False,
            "error": f"Transaction failed: {err}" if isinstance(err, str) else "Transaction failed with an error",
        }

    details = transfer_details(transaction)
    if details is None:
        return {"isValid": False, "error": "Could not identify transfer details"}

    mismatch = check_expected(details, expected)
    if mismatch:
        return {"isValid": False, "error": mismatch, "details": details}
    return {"isValid": True, "details": details}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def settle_verification(db, signature: str, verification: dict) -> dict:
    """Write the verification outcome to the transaction log and the orders."""
    if not verification["isValid"]:
        await rpc.update_transaction_status(db, signature, FAILED, {
            "error": verification.get("error"),
            "verification": verification.get("details"),
        })
        return {"success": False, "error": verification.get("error") or "Transaction verification failed"}

    logged = await rpc.update_transaction_status(db, signature, CONFIRMED, {
        **verification["details"],
        "confirmedAt": _now(),
    })
    if not logged["success"]:
        return {"success": False, "error": "Failed to update transaction status"}

    confirmed = await rpc.confirm_order_payment(db, signature, "confirmed")
    if not confirmed["success"]:
        return {"success": False, "error": confirmed["message"]}
    return {"success": True}


# ────────────── verify-transaction ──────────────
async def verify_transaction_service(body: VerifyTransactionRequest, request: Request) -> dict:
    db = request.state.db
    log = request.app.state.log
    client = request.app.state.solana

    if not body.signature:
        raise CheckoutError(400, "Missing transaction signature")

    if body.signature.startswith(OFF_CHAIN_PREFIXES):
        return {"success": True, "message": "Non-blockchain transaction requires separate verification"}

    expected = body.expected_details.model_dump() if body.expected_details else None
    verification = await verify_transaction_details(client, body.signature, expected)

    await log.log_info("solana", "Transaction verified", {
        "signature": log.short_signature(body.signature),
        "orderId": body.order_id,
        "isValid": verification["isValid"],
        "error": verification.get("error"),
    })

    confirmation = {"success": True}
    if body.order_id:
        try:
            confirmation = await settle_verification(db, body.signature, verification)
        except SQLAlchemyError as e:
            await db.rollback()
            await log.log_error("solana", f"Could not record verification: {e}")
            confirmation = {"success": False, "error": "Failed to confirm order"}

    if not verification["isValid"]:
        raise CheckoutError(
            400,
            verification.get("error") or "Transaction verification failed",
            verification.get("details") or {},
        )

    if not confirmation["success"]:
        raise CheckoutError(500, confirmation.get("error") or "Failed to confirm order", {
            "verification": {"isValid": True, "details": verification["details"]},
        })

    return {
        "success": True,
        "verification": {"isValid": True, "details": verification["details"]},
    }


# ────────────── verify-pending-transactions ──────────────
async def verify_pending_transactions_service(request: Request) -> dict:
    """
    Re-check unsettled transaction log rows on chain.
    Valid ones confirm their orders; invalid ones are failed and their
    pending orders cancelled.
    """
    db = request.state.db
    log = request.app.state.log
    client = request.app.state.solana

    result = await db.execute(
        select(TransactionLog)
        .where(TransactionLog.status.in_((PENDING, PROCESSING)))
        .order_by(TransactionLog.created_at.desc())
        .limit(PENDING_SCAN_LIMIT)
    )
    pending = [(row.signature, row.order_id) for row in result.scalars().all()]

    if not pending:
        return {"success": True, "verified": 0, "failed": 0, "total": 0}

    verified = failed = 0
    for signature, order_id in pending:
        try:
            if signature.startswith(OFF_CHAIN_PREFIXES):
                continue

            verification = await verify_transaction_details(client, signature)
            if verification["isValid"]:
                await rpc.update_transaction_status(db, signature, CONFIRMED, {"verifiedAt": _now(), "automated": True})
                verified += 1
                if order_id:
                    confirmed = await rpc.confirm_order_payment(db, signature, "confirmed")
                    if not confirmed["success"]:
                        await log.log_warning("solana", "Order not confirmed after verification", confirmed)
            else:
                await rpc.update_transaction_status(db, signature, FAILED, {
                    "error": verification.get("error"),
                    "verifiedAt": _now(),
                    "automated": True,
                })
                await rpc.confirm_order_payment(db, signature, "failed")
                failed += 1
        except SQLAlchemyError as e:
            await db.rollback()
            await log.log_error("solana", f"Error processing transaction: {e}", {
                "signature": log.short_signature(signature),
            })
            failed += 1

    await log.log_info("solana", "Pending transactions verified", {
        "verified": verified,
        "failed": failed,
        "total": len(pending),
    })

    return {"success": True, "verified": verified, "failed": failed, "total": len(pending)}
