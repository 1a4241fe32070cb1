"""
Pydantic Schemas for Request/Response Validation

Defines the order projection that is stored, returned by the REST API
and embedded in every real-time event, plus caller identities and the
request bodies for checkout, payment confirmation and status changes.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ordertrack.models import OrderStatus


class WireModel(BaseModel):
    """Base for everything that crosses the HTTP/WebSocket boundary."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# IDENTITY
# =============================================================================

class Role(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT_ADMIN = "restaurantAdmin"
    SUPERADMIN = "superadmin"
    SYSTEM = "system"


class Identity(WireModel):
    """Who is calling, established from the caller's session."""
    model_config = ConfigDict(frozen=True)

    role: Role
    user_id: str = Field(..., min_length=1, max_length=64)
    restaurant_id: Optional[str] = Field(None, max_length=64)

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN

    def operates(self, restaurant_id: str) -> bool:
        """True if this identity is the operator of the given restaurant."""
        return (
            self.role == Role.RESTAURANT_ADMIN
            and self.restaurant_id is not None
            and self.restaurant_id == restaurant_id
        )


SYSTEM_ACTOR = Identity(role=Role.SYSTEM, user_id="system")


# =============================================================================
# ORDER PROJECTION
# =============================================================================

class OrderItem(WireModel):
    """Single item in an order."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Paneer Tikka"])
    price: float = Field(..., gt=0, examples=[249.0])
    quantity: int = Field(..., ge=1, le=99, examples=[2])


class DeliveryAddress(WireModel):
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    pincode: str = Field(..., min_length=3, max_length=12)


class PaymentDetails(WireModel):
    payment_id: str
    provider_order_id: Optional[str] = None
    status: str = "Paid"
    method: str = "card"


class Order(WireModel):
    """Full order projection, as stored and as delivered to live viewers."""
    id: str
    customer_id: str
    restaurant_id: str
    status: OrderStatus
    version: int = Field(default=1, ge=1)
    items: List[OrderItem]
    total_amount: float
    delivery_address: DeliveryAddress
    payment: Optional[PaymentDetails] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderCreate(WireModel):
    """Request schema for placing an order (cash on delivery)."""
    restaurant_id: str = Field(..., min_length=1, max_length=64)
    items: List[OrderItem] = Field(..., min_length=1)
    delivery_address: DeliveryAddress

    @property
    def total_amount(self) -> float:
        return round(sum(item.price * item.quantity for item in self.items), 2)


class PaymentConfirmRequest(OrderCreate):
    """Checkout payload sent once the payment provider reports success."""
    payment_id: str = Field(..., min_length=1, max_length=100)
    provider_order_id: Optional[str] = Field(None, max_length=100)
    signature: Optional[str] = Field(None, max_length=255)


class StatusUpdateRequest(WireModel):
    """Requested status; validated by the lifecycle, not by the schema."""
    status: str = Field(..., min_length=1, max_length=32, examples=["Confirmed"])


class RestaurantStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OPEN = "open"
    CLOSED = "closed"


class RestaurantStatusUpdate(WireModel):
    status: RestaurantStatus
    previous_status: Optional[RestaurantStatus] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TransitionResponse(WireModel):
    success: bool = True
    message: str
    order: Order


class PaymentConfirmResponse(WireModel):
    success: bool = True
    message: str
    created: bool
    order: Order


class OrderListResponse(WireModel):
    total: int
    orders: List[Order]


class SystemStatsResponse(WireModel):
    total_orders: int
    by_status: dict[str, int]
    live_connections: int
    active_topics: int


class ErrorResponse(WireModel):
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(WireModel):
    status: str
    order_store: str
    payment: str
    live_connections: int
    active_topics: int
    timestamp: datetime
