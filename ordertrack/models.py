"""
SQLAlchemy Database Models

The order status enumeration and the `orders` table used by the SQL
order store. Order items, delivery address and payment details are kept
as JSON documents; the tracking core treats them as opaque payload.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Float, Integer, JSON, String

from ordertrack.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow, in lifecycle order."""
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


def _new_order_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderRecord(Base):
    """
    Main Order table.

    `status` and `version` are written only through the lifecycle state
    machine; `version` starts at 1 and increases by one per status change.
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=_new_order_id)

    # =========================================================================
    # OWNERSHIP
    # =========================================================================
    customer_id = Column(String(64), nullable=False, index=True)
    restaurant_id = Column(String(64), nullable=False, index=True)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # PAYLOAD
    # =========================================================================
    items = Column(JSON, nullable=False)
    total_amount = Column(Float, nullable=False)
    delivery_address = Column(JSON, nullable=False)

    # =========================================================================
    # PAYMENT
    # =========================================================================
    payment_id = Column(String(100), nullable=True, unique=True)
    payment = Column(JSON, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Order #{self.id} - restaurant {self.restaurant_id} - {self.status.value}>"
