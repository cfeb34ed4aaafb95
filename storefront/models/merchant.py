# storefront/models/merchant.py

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from storefront.utils.database import Base

class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True, index=True)  # autoincrement
    name = Column(String, nullable=True)
    login = Column(String, unique=True, nullable=True)  # dashboard login
    password = Column(String, nullable=True)            # passlib hash
    is_admin = Column(Boolean, default=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
