# api/server.py
# ============================================================================
# STOREFRONT CHECKOUT — FASTAPI SERVER
# ============================================================================
# Order, payment verification and webhook endpoints over the checkout core.
# User identity arrives from the upstream auth layer in X-User-Id; admin
# routes additionally require X-Admin: true.
# ============================================================================

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import configure_logging, settings
from database import Database, PostgresStore
from pipeline import Checkout
from schemas.commerce import (
    CreateOrderRequest,
    OrderStatus,
    TrackOrderRequest,
    UpdateOrderStatusRequest,
    VerifyPaymentRequest,
)
from schemas.results import CommerceError, ErrorKind, ServiceResult, TransientError, Unauthenticated, Unauthorized
from services.gateway import RazorpayGateway
from services.notifications import InMemoryNotifier, SendGridNotifier
from storage import InMemoryCache, InMemoryStore
from storage.redis_cache import RedisCache

logger = structlog.get_logger().bind(component="server")

START_TIME = datetime.utcnow()
VERSION = "1.0.0"


# ============================================================================
# BACKENDS
# ============================================================================

async def open_checkout() -> tuple:
    """Build the service graph from settings. Returns (checkout, closers)."""
    closers = []

    if settings.STORE_BACKEND == "postgres":
        await Database.initialize()
        closers.append(Database.close)
        store = PostgresStore()
    else:
        store = InMemoryStore()

    if settings.CACHE_BACKEND == "redis":
        cache = RedisCache()
        await cache.initialize()
        closers.append(cache.close)
    else:
        cache = InMemoryCache()

    gateway = RazorpayGateway()
    closers.append(gateway.close)

    notifier = SendGridNotifier() if settings.SENDGRID_API_KEY else InMemoryNotifier()

    logger.info("backends_ready",
                store=settings.STORE_BACKEND,
                cache=settings.CACHE_BACKEND,
                notifier=type(notifier).__name__)
    return Checkout(store, cache, gateway, notifier), closers


# ============================================================================
# RESPONSES
# ============================================================================

def respond(result: ServiceResult, status_code: int = 200) -> JSONResponse:
    if result.success:
        body = {"success": True, "message": result.message, "data": result.data}
        return JSONResponse(jsonable_encoder(body), status_code=status_code)
    return JSONResponse(
        {"success": False, "error": result.error.value, "message": result.message},
        status_code=result.http_status,
    )


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    store: str
    cache: str


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_checkout(request: Request) -> Checkout:
    return request.app.state.checkout


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise Unauthenticated("Authentication required")
    return x_user_id


def require_admin(x_admin: Optional[str] = Header(default=None)) -> bool:
    if (x_admin or "").lower() != "true":
        raise Unauthorized("Admin access required")
    return True


# ============================================================================
# ENDPOINTS
# ============================================================================

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=(datetime.utcnow() - START_TIME).total_seconds(),
        store=settings.STORE_BACKEND,
        cache=settings.CACHE_BACKEND,
    )


@router.post("/api/orders")
async def create_order(
    body: CreateOrderRequest,
    user_id: str = Depends(get_user_id),
    checkout: Checkout = Depends(get_checkout),
):
    """Create an order. Stock is not touched until payment settles."""
    result = await checkout.orders.create_order(user_id, body)
    return respond(result, status_code=201)


@router.post("/api/orders/verify-payment")
async def verify_payment(
    body: VerifyPaymentRequest,
    user_id: str = Depends(get_user_id),
    checkout: Checkout = Depends(get_checkout),
):
    result = await checkout.verification.verify(body, user_id)
    return respond(result)


@router.post("/api/orders/track")
async def track_order(body: TrackOrderRequest, checkout: Checkout = Depends(get_checkout)):
    """Public order tracking; no caller identity, the order's email must match."""
    result = await checkout.orders.track_order(body)
    return respond(result)


@router.get("/api/orders")
async def list_orders(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    status: Optional[OrderStatus] = Query(default=None),
    user_id: str = Depends(get_user_id),
    checkout: Checkout = Depends(get_checkout),
):
    result = await checkout.orders.list_orders(user_id, page=page, limit=limit, status=status)
    return respond(result)


@router.get("/api/orders/{order_id}")
async def get_order(
    order_id: str,
    user_id: str = Depends(get_user_id),
    checkout: Checkout = Depends(get_checkout),
):
    result = await checkout.orders.get_order(order_id, user_id)
    return respond(result)


@router.post("/api/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    user_id: str = Depends(get_user_id),
    checkout: Checkout = Depends(get_checkout),
):
    result = await checkout.orders.cancel_order(order_id, user_id)
    return respond(result)


@router.patch("/api/admin/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    _admin: bool = Depends(require_admin),
    checkout: Checkout = Depends(get_checkout),
):
    result = await checkout.orders.update_order_status(order_id, body)
    return respond(result)


@router.post("/api/payments/webhook")
async def payment_webhook(request: Request, checkout: Checkout = Depends(get_checkout)):
    """
    Razorpay webhook. The raw body is passed through untouched because the
    signature covers the exact bytes.
    """
    ack = await checkout.webhooks.ingest(
        await request.body(),
        request.headers.get("X-Razorpay-Signature"),
        event_id=request.headers.get("X-Razorpay-Event-Id"),
    )
    return JSONResponse(ack.body(), status_code=ack.status_code)


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(checkout: Optional[Checkout] = None) -> FastAPI:
    """
    Build the application. A prebuilt Checkout skips backend setup, which is
    how tests run the HTTP surface against in-memory fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        configure_logging()
        logger.info("server_starting", version=VERSION, env=settings.ENV)

        closers = []
        if checkout is None:
            app.state.checkout, closers = await open_checkout()
        else:
            app.state.checkout = checkout

        yield

        logger.info("server_shutting_down")
        for close in closers:
            await close()

    app = FastAPI(
        title="Storefront Checkout",
        description="Order creation, payment verification and webhook settlement",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing header."""
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    @app.exception_handler(CommerceError)
    async def commerce_error_handler(request: Request, exc: CommerceError):
        return respond(ServiceResult.from_error(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
        return JSONResponse(
            {"success": False, "error": ErrorKind.VALIDATION_ERROR.value, "message": message},
            status_code=400,
        )

    @app.exception_handler(TransientError)
    async def transient_error_handler(request: Request, exc: TransientError):
        logger.error("transient_failure", path=request.url.path, error=str(exc))
        return JSONResponse(
            {"success": False, "message": "Service temporarily unavailable, please retry"},
            status_code=503,
        )

    app.include_router(router)
    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
