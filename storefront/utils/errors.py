# storefront/utils/errors.py

from typing import Any


class CheckoutError(Exception):
    """
    Failure of a checkout handler.

    Rendered by the app as {"error": ..., "details": ...} with status_code.
    """

    def __init__(self, status_code: int, error: str, details: Any = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.error, "details": self.details}


class RpcError(Exception):
    """A stored procedure rejected its input (missing product, hidden collection...)."""


class PaymentProviderError(Exception):
    """Upstream payment provider (Stripe, Solana RPC, CoinGecko) failed."""
