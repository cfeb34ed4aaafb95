# storefront/main.py

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import httpx
import uvicorn
from dotenv import load_dotenv
from contextlib import asynccontextmanager

from storefront.utils.log import Log
from storefront.utils.database import init_db
from storefront.utils.errors import CheckoutError
from storefront.middleware.db_middleware import DBSessionMiddleware
from storefront.services.stripe_gateway import StripeGateway
from storefront.services.solana import SolanaRPC

import os
import multiprocessing

# --- environment ---
load_dotenv()

# --- sync logger for the early start ---
boot_log = Log()
if os.environ.get("RUN_MAIN") == "true" or multiprocessing.current_process().name == "MainProcess":
    boot_log.log_info_sync(target="startup", message="main.py imports done")

# routes whose validation errors keep FastAPI's 422 {"detail"} shape
DASHBOARD_PREFIXES = ("/merchant", "/auth")


# ────────────── Lifespan ──────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    boot_log.log_info_sync(target="startup", message="lifespan: startup")

    await init_db()
    boot_log.log_info_sync(target="startup", message="Database initialised")

    app.state.log = Log()
    app.state.stripe = StripeGateway()
    app.state.solana = SolanaRPC()
    app.state.http = httpx.AsyncClient(timeout=10.0)
    await app.state.log.log_info(target="startup", message="Clients ready", data={
        "solanaRpc": app.state.solana.url.split("?")[0],
    })

    yield

    # shutdown
    await app.state.log.log_info(target="shutdown", message="Stopping application")
    await app.state.solana.close()
    await app.state.http.aclose()
    await app.state.log.shutdown()
    boot_log.log_info_sync(target="shutdown", message="Log closed")


# ────────────── FastAPI app ──────────────
app = FastAPI(title="Storefront Checkout API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# DB middleware for request.state.db
app.add_middleware(DBSessionMiddleware)


# ────────────── Errors ──────────────
@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path.startswith(DASHBOARD_PREFIXES):
        return await request_validation_exception_handler(request, exc)
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log = getattr(request.app.state, "log", None)
    if log:
        await log.log_error("app", f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


@app.get("/")
def read_root():
    return {"message": "Storefront checkout API"}


# ────────────── Routes ──────────────
from storefront.routes import auth, checkout, merchant

app.include_router(checkout.router, tags=["checkout"])
app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(merchant.router, prefix="/merchant", tags=["merchant"])

# ────────────── uvicorn ──────────────
if __name__ == "__main__":
    boot_log.log_info_sync(target="startup", message="Starting uvicorn.run")
    uvicorn.run(
        "storefront.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="info",
        reload=True
    )
