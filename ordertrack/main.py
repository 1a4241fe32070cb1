"""
FastAPI Application Entry Point

Order Tracker - real-time order lifecycle tracking.

Endpoints:
    - POST /api/orders: Place a cash-on-delivery order
    - POST /api/payments/confirm: Create the order for a confirmed payment
    - GET /api/orders: Caller's order history
    - GET /api/orders/{order_id}: Order snapshot
    - PUT /api/orders/{order_id}/status: Request a status transition
    - GET /api/restaurants/{restaurant_id}/orders: Dashboard snapshot
    - PUT /api/admin/restaurants/{restaurant_id}/status: Approve/open/close a restaurant
    - GET /api/admin/stats: System-wide order counts
    - WS /ws: Live updates (join/leave rooms, receive events)
    - GET /health: System health check

Run:
    uvicorn ordertrack.main:app --host 0.0.0.0 --port 8001

Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ordertrack.core.config import Settings, get_settings, setup_logging
from ordertrack.core.exceptions import (
    OrderNotFound,
    OrderTrackError,
    PaymentVerificationFailed,
    Unauthorized,
)
from ordertrack.realtime.events import RestaurantStatusChanged
from ordertrack.realtime.gateway import serve_connection
from ordertrack.realtime.registry import ConnectionRegistry
from ordertrack.realtime.router import EventPublisher, TopicRouter
from ordertrack.realtime.subscriptions import SubscriptionGate
from ordertrack.schemas import (
    ErrorResponse,
    HealthResponse,
    Identity,
    Order,
    OrderCreate,
    OrderListResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PaymentDetails,
    RestaurantStatusUpdate,
    Role,
    StatusUpdateRequest,
    SystemStatsResponse,
    TransitionResponse,
)
from ordertrack.services.auth import BaseIdentityResolver, get_identity_resolver
from ordertrack.services.lifecycle import LifecycleStateMachine
from ordertrack.services.orders import BaseOrderStore, build_order_store
from ordertrack.services.payment import BasePaymentService, get_payment_service

# Initialize logging
setup_logging()
logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# DEPENDENCIES
# =============================================================================

def _session_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get("token")


def current_identity(request: Request) -> Optional[Identity]:
    resolver: BaseIdentityResolver = request.app.state.identity_resolver
    return resolver.resolve(_session_token(request), request.headers)


def require_identity(identity: Optional[Identity] = Depends(current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity


def get_lifecycle(request: Request) -> LifecycleStateMachine:
    return request.app.state.lifecycle


def get_store(request: Request) -> BaseOrderStore:
    return request.app.state.order_store


def _require_role(identity: Identity, *roles: Role) -> None:
    if identity.role not in roles:
        raise Unauthorized(f"This action requires one of: {[r.value for r in roles]}")


def _can_view(identity: Identity, order: Order) -> bool:
    return (
        identity.is_superadmin
        or identity.operates(order.restaurant_id)
        or (identity.role == Role.CUSTOMER and identity.user_id == order.customer_id)
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@router.get("/", tags=["Root"])
async def root(request: Request) -> dict[str, str]:
    """API root with navigation links."""
    settings: Settings = request.app.state.settings
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "live_updates": "/ws",
        "health": "/health",
    }


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(request: Request) -> HealthResponse:
    """Verify the order store and payment provider, and report live connection counts."""
    state = request.app.state

    store_status = "healthy" if await state.order_store.health_check() else "unhealthy"
    payment_status = "healthy" if await state.payment_service.health_check() else "unhealthy"

    overall = "operational" if store_status == payment_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        order_store=store_status,
        payment=payment_status,
        live_connections=state.registry.connection_count,
        active_topics=state.registry.topic_count,
        timestamp=datetime.now(),
    )


# =============================================================================
# CHECKOUT ENDPOINTS
# =============================================================================

@router.post(
    "/api/orders",
    response_model=Order,
    status_code=201,
    responses={403: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order (Cash on Delivery)",
)
async def place_order(
    draft: OrderCreate,
    identity: Identity = Depends(require_identity),
    lifecycle: LifecycleStateMachine = Depends(get_lifecycle),
) -> Order:
    """Persist a Pending order and notify the restaurant's live dashboard."""
    _require_role(identity, Role.CUSTOMER)
    logger.info(f"Placing order for {identity.user_id} at restaurant {draft.restaurant_id}")
    return await lifecycle.create_order(draft, identity)


@router.post(
    "/api/payments/confirm",
    response_model=PaymentConfirmResponse,
    responses={402: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    tags=["Payments"],
    summary="Confirm Payment and Create Order",
)
async def confirm_payment(
    body: PaymentConfirmRequest,
    response: Response,
    request: Request,
    identity: Identity = Depends(require_identity),
    lifecycle: LifecycleStateMachine = Depends(get_lifecycle),
) -> PaymentConfirmResponse:
    """
    Called by the checkout page once the provider reports success.

    The payment is confirmed with the provider before anything is stored.
    Repeating the call for the same payment returns the same order.
    """
    _require_role(identity, Role.CUSTOMER)
    payment_service: BasePaymentService = request.app.state.payment_service

    result = await payment_service.confirm_payment(
        payment_id=body.payment_id,
        amount=body.total_amount,
        provider_order_id=body.provider_order_id,
        signature=body.signature,
    )
    if not result.success:
        logger.warning(f"Payment {body.payment_id} not confirmed: {result.to_dict()}")
        raise PaymentVerificationFailed(result.error_message or "Payment verification failed")

    payment = PaymentDetails(
        payment_id=body.payment_id,
        provider_order_id=body.provider_order_id,
        status="Paid",
        method=payment_service.provider_name,
    )
    order, created = await lifecycle.on_payment_confirmed(body, identity, payment)

    response.status_code = 201 if created else 200
    return PaymentConfirmResponse(
        message="Payment successful and order created!" if created else "Order already processed for this payment",
        created=created,
        order=order,
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@router.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="Order History",
)
async def list_my_orders(
    identity: Identity = Depends(require_identity),
    store: BaseOrderStore = Depends(get_store),
) -> OrderListResponse:
    orders = await store.list_orders_for_user(identity.user_id)
    return OrderListResponse(total=len(orders), orders=orders)


@router.get(
    "/api/orders/{order_id}",
    response_model=Order,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    identity: Identity = Depends(require_identity),
    store: BaseOrderStore = Depends(get_store),
) -> Order:
    """Authoritative snapshot for a tracking screen."""
    order = await store.get_order(order_id)
    if order is None:
        raise OrderNotFound(f"Order #{order_id} not found", order_id=order_id)
    if not _can_view(identity, order):
        raise Unauthorized("Not authorized to view this order.", order_id=order_id)
    return order


@router.put(
    "/api/orders/{order_id}/status",
    response_model=TransitionResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Request Status Transition",
)
async def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    identity: Identity = Depends(require_identity),
    lifecycle: LifecycleStateMachine = Depends(get_lifecycle),
) -> TransitionResponse:
    """Restaurant operators move orders forward; customers may cancel early."""
    order = await lifecycle.transition(order_id, body.status, identity)
    return TransitionResponse(
        message=f"Order status updated to {order.status.value}",
        order=order,
    )


@router.get(
    "/api/restaurants/{restaurant_id}/orders",
    response_model=OrderListResponse,
    responses={403: {"model": ErrorResponse}},
    tags=["Restaurants"],
    summary="Restaurant Orders",
)
async def list_restaurant_orders(
    restaurant_id: str,
    identity: Identity = Depends(require_identity),
    store: BaseOrderStore = Depends(get_store),
) -> OrderListResponse:
    """Authoritative snapshot for a restaurant's live dashboard."""
    if not (identity.is_superadmin or identity.operates(restaurant_id)):
        raise Unauthorized("Not authorized to view this restaurant's orders.")
    orders = await store.list_orders_for_restaurant(restaurant_id)
    return OrderListResponse(total=len(orders), orders=orders)


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.put(
    "/api/admin/restaurants/{restaurant_id}/status",
    responses={403: {"model": ErrorResponse}},
    tags=["Admin"],
    summary="Update Restaurant Status",
)
async def update_restaurant_status(
    restaurant_id: str,
    body: RestaurantStatusUpdate,
    request: Request,
    identity: Identity = Depends(require_identity),
) -> dict[str, Any]:
    """
    Announce a restaurant approval or open/closed change.

    The restaurant record itself lives in the restaurant service; this
    endpoint only fans the change out to live viewers.
    """
    _require_role(identity, Role.SUPERADMIN)
    publisher: EventPublisher = request.app.state.publisher

    delivered = publisher.publish(RestaurantStatusChanged(
        restaurant_id=restaurant_id,
        status=body.status,
        previous_status=body.previous_status,
    ))
    logger.info(f"Restaurant {restaurant_id} is now {body.status.value} ({delivered} deliveries)")

    return {
        "success": True,
        "message": f"Restaurant has been {body.status.value}.",
        "restaurant_id": restaurant_id,
        "status": body.status.value,
    }


@router.get(
    "/api/admin/stats",
    response_model=SystemStatsResponse,
    tags=["Admin"],
)
async def system_stats(
    request: Request,
    identity: Identity = Depends(require_identity),
    store: BaseOrderStore = Depends(get_store),
) -> SystemStatsResponse:
    """Numbers behind the aggregate dashboard; re-queried on every stats tick."""
    _require_role(identity, Role.SUPERADMIN)
    counts = await store.count_by_status()
    registry: ConnectionRegistry = request.app.state.registry
    return SystemStatsResponse(
        total_orders=sum(counts.values()),
        by_status=counts,
        live_connections=registry.connection_count,
        active_topics=registry.topic_count,
    )


# =============================================================================
# LIVE UPDATES
# =============================================================================

@router.websocket("/ws")
async def live_updates(websocket: WebSocket) -> None:
    """
    Live transport. Identity comes from the handshake (token query param,
    cookie, or development headers); anonymous sockets may connect but
    cannot join any room.
    """
    state = websocket.app.state
    token = websocket.query_params.get("token") or websocket.cookies.get("token")
    identity = state.identity_resolver.resolve(token, websocket.headers)
    await serve_connection(websocket, state.registry, state.gate, identity)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    settings: Settings = app.state.settings

    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await app.state.order_store.init()
    logger.info(f"✅ Order Store: {app.state.order_store.provider_name}")
    logger.info(f"✅ Payment Service: {app.state.payment_service.provider_name}")
    logger.info(f"✅ Identity Resolver: {app.state.identity_resolver.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    logger.info("Shutting down...")
    await app.state.order_store.close()
    logger.info("✅ Cleanup complete")


def create_app(
    order_store: Optional[BaseOrderStore] = None,
    payment_service: Optional[BasePaymentService] = None,
    identity_resolver: Optional[BaseIdentityResolver] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application and its real-time core.

    One registry, router, publisher and lifecycle per application; they
    live on `app.state` and are passed explicitly to whatever needs them.
    """
    settings = settings or get_settings()
    order_store = order_store or build_order_store()

    app = FastAPI(
        title=settings.app_name,
        description="Real-time order lifecycle tracking for a food-ordering marketplace.",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    registry = ConnectionRegistry(outbound_queue_size=settings.outbound_queue_size)
    publisher = EventPublisher(registry, TopicRouter())

    app.state.settings = settings
    app.state.order_store = order_store
    app.state.payment_service = payment_service or get_payment_service()
    app.state.identity_resolver = identity_resolver or get_identity_resolver()
    app.state.registry = registry
    app.state.publisher = publisher
    app.state.lifecycle = LifecycleStateMachine(order_store, publisher)
    app.state.gate = SubscriptionGate(registry, order_store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(OrderTrackError)
    async def order_track_exception_handler(request: Request, exc: OrderTrackError) -> JSONResponse:
        """Rejected transitions and other domain errors, returned to the caller."""
        # WebSocket scopes carry no method
        method = request.scope.get("method", "WS")
        logger.info(f"{method} {request.url.path} rejected: {exc.error} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )

    return app


app = create_app()
