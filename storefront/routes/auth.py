# storefront/routes/auth.py

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jwt import ExpiredSignatureError, InvalidTokenError
from datetime import timedelta
from typing import List
from sqlalchemy.exc import IntegrityError
from storefront.utils.security import hash_password, verify_password, create_access_token, decode_access_token
from storefront.config import settings
from storefront.models.merchant import Merchant
from storefront.schemas.merchant import MerchantCreate, MerchantUpdate, MerchantResponse
from storefront.services.merchants import (
    create_merchant_service,
    find_merchant_by_login,
    read_merchants_service,
    read_merchant_service,
    update_merchant_service,
    delete_merchant_service
)

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> Merchant:
    """
    Checks the JWT and returns the merchant account it belongs to.

    **Statuses:**
    - 401 Unauthorized: token expired, invalid, without a login, or the account is gone
    """
    log = request.app.state.log
    try:
        payload = decode_access_token(token)
    except ExpiredSignatureError:
        await log.log_warning("auth", "Token expired")
        raise _unauthorized("Token expired")
    except InvalidTokenError:
        await log.log_warning("auth", "Invalid token")
        raise _unauthorized("Token invalid")

    login = payload.get("sub")
    if login is None:
        await log.log_error("auth", "Token has no login")
        raise _unauthorized("Invalid token")

    merchant = await find_merchant_by_login(login, request)
    if merchant is None:
        raise _unauthorized("User not found")

    return merchant


def ensure_self_or_admin(current_user: Merchant, user_id: int, action: str = "access") -> None:
    """Regular accounts may only act on themselves."""
    if not current_user.is_admin and user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Not allowed to {action} other accounts")


def ensure_admin_flag_allowed(current_user: Merchant, wants_admin) -> None:
    if wants_admin and not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins grant admin rights")


# ────────────── TOKEN ──────────────
@router.post(
    "/token",
    summary="Get a JWT for the merchant dashboard",
    responses={
        200: {"description": "access_token, token_type and the account"},
        401: {"description": "Wrong login or password"},
        422: {"description": "Empty username or password"},
        500: {"description": "Internal server error"}
    }
)
async def login_for_access_token(request: Request, form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Form-data `username` and `password`. The token lives AUTH_TOKEN_EXPIRE_MINUTES.
    """
    log = request.app.state.log
    try:
        merchant = await find_merchant_by_login(form_data.username, request)
        if merchant is None or not verify_password(form_data.password, merchant.password or ""):
            await log.log_warning("auth", "Failed login attempt", {"username": form_data.username})
            raise _unauthorized("Wrong login or password")

        token = create_access_token(
            data={"sub": merchant.login},
            expires_delta=timedelta(minutes=settings.AUTH_TOKEN_EXPIRE_MINUTES)
        )
        await log.log_info("auth", "Merchant logged in", {"login": merchant.login})

        return {
            "access_token": token,
            "token_type": "bearer",
            "user": MerchantResponse.model_validate(merchant).model_dump(mode="json"),
        }

    except HTTPException:
        raise
    except Exception as e:
        await log.log_error("auth", f"Token request failed: {e}", {"username": form_data.username})
        raise HTTPException(status_code=500, detail="Internal server error")


# ────────────── ACCOUNTS ──────────────
@router.post(
    "/users",
    response_model=MerchantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a dashboard account",
    responses={
        403: {"description": "Only admins create admins"},
        409: {"description": "Login already taken"},
    }
)
async def create_user(user: MerchantCreate, request: Request, current_user: Merchant = Depends(get_current_user)):
    """Passwords are stored hashed; accounts created by non-admins are never admins."""
    ensure_admin_flag_allowed(current_user, user.is_admin)
    user.is_admin = bool(user.is_admin)
    if user.password:
        user.password = hash_password(user.password)

    try:
        return await create_merchant_service(user, request)
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Login '{user.login}' already exists")


@router.get(
    "/users",
    response_model=List[MerchantResponse],
    summary="List dashboard accounts (admin only)",
    responses={403: {"description": "Not an admin"}}
)
async def get_users(request: Request, current_user: Merchant = Depends(get_current_user)):
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins list accounts")
    return await read_merchants_service(request)


@router.get(
    "/users/{user_id}",
    response_model=MerchantResponse,
    summary="Get a dashboard account",
    responses={403: {"description": "Regular accounts only see themselves"}, 404: {"description": "Account not found"}}
)
async def get_user(user_id: int, request: Request, current_user: Merchant = Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id, "view")
    return await read_merchant_service(user_id, request)


@router.put(
    "/users/{user_id}",
    response_model=MerchantResponse,
    summary="Update a dashboard account",
    responses={
        403: {"description": "Regular accounts edit only themselves and never is_admin"},
        404: {"description": "Account not found"},
        409: {"description": "Login already taken"},
    }
)
async def update_user(
    user_id: int,
    user_update: MerchantUpdate,
    request: Request,
    current_user: Merchant = Depends(get_current_user)
):
    ensure_self_or_admin(current_user, user_id, "edit")
    ensure_admin_flag_allowed(current_user, user_update.is_admin)
    if user_update.password:
        user_update.password = hash_password(user_update.password)

    try:
        return await update_merchant_service(user_id, user_update, request)
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Login '{user_update.login}' already exists")


@router.delete(
    "/users/{user_id}",
    summary="Delete a dashboard account",
    responses={403: {"description": "Regular accounts delete only themselves"}, 404: {"description": "Account not found"}}
)
async def delete_user(user_id: int, request: Request, current_user: Merchant = Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id, "delete")
    await delete_merchant_service(user_id, request)
    return {"detail": "Account deleted"}
