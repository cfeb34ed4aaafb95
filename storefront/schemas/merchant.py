# storefront/schemas/merchant.py

from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class MerchantBase(BaseModel):
    """
    Dashboard account fields shared by input and update.
    """
    name: Optional[str] = None
    login: Optional[str] = None
    password: Optional[str] = None
    is_admin: Optional[bool] = False

class MerchantCreate(MerchantBase):
    """
    New dashboard account; the password is hashed before saving.
    """
    pass

class MerchantUpdate(MerchantBase):
    """
    Only the fields sent are changed.
    """
    is_admin: Optional[bool] = None

class MerchantResponse(BaseModel):
    """
    Account as returned by the API, without the password hash.
    """
    id: int
    name: Optional[str] = None
    login: Optional[str] = None
    is_admin: Optional[bool] = False
    timestamp: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }
