# storefront/utils/security.py

"""
Merchant dashboard credentials: password hashing and JWT access tokens.
passlib with sha256_crypt keeps hashing portable (no bcrypt build on Windows).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jwt import encode, decode
from passlib.context import CryptContext

from storefront.config import settings

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["sha256_crypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    Hash a merchant password.

    :param password: plain password
    :return: hash string stored in merchants.password
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Check a password against its stored hash.

    :param plain_password: password from the login form
    :param hashed_password: hash from the database
    :return: True when they match
    """
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a JWT for the dashboard.
    Input: claims (e.g. {"sub": "login"}); the exp claim is added here.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return encode(to_encode, settings.AUTH_SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry; raises jwt.ExpiredSignatureError / jwt.InvalidTokenError."""
    return decode(token, settings.AUTH_SECRET_KEY, algorithms=[ALGORITHM])
