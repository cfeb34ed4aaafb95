# storefront/models/transaction.py

from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Text
from storefront.utils.database import Base, utcnow

PENDING = "pending"
PROCESSING = "processing"
CONFIRMED = "confirmed"
FAILED = "failed"

TRANSACTION_STATUSES = (PENDING, PROCESSING, CONFIRMED, FAILED)


class TransactionLog(Base):
    """Payment attempt keyed by signature, written by update_transaction_status."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    signature     = Column(String, nullable=False, unique=True, index=True)
    status        = Column(String, nullable=False, default=PENDING, index=True)
    order_id      = Column(String(36), nullable=True, index=True)
    amount_sol    = Column(Float, nullable=True)
    buyer_address = Column(String, nullable=True)
    details       = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
