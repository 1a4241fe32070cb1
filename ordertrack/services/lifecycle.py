"""
Order Lifecycle State Machine

The single authority for advancing an order's status.

    Pending → Confirmed → Preparing → Out for Delivery → Delivered*
    any non-terminal state → Cancelled*

Authority:
    - forward progress: the operator of the order's restaurant
    - Cancelled: the restaurant operator from any non-terminal state;
      the owning customer or the system only while Pending or Confirmed

A transition is validated and persisted under a per-order lock, and the
store write is itself a compare-and-set against the status we validated.
The "order updated" event is published only after the write committed.
"""

import asyncio
import logging
import weakref
from typing import Union

from ordertrack.core.exceptions import (
    InvalidTransition,
    OrderNotFound,
    OrderTrackError,
    StorageFailure,
    Unauthorized,
)
from ordertrack.models import OrderStatus
from ordertrack.realtime.events import OrderPlaced, OrderStatusChanged
from ordertrack.realtime.router import EventPublisher
from ordertrack.schemas import Identity, Order, OrderCreate, PaymentDetails, Role
from ordertrack.services.orders.base import BaseOrderStore

logger = logging.getLogger(__name__)


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES: frozenset[OrderStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

# States from which customers (and the system) may still cancel
CUSTOMER_CANCELLABLE: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED}
)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATES


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in TRANSITIONS[current]


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    """
    Accept "Out for Delivery", "out for delivery" or "OUT_FOR_DELIVERY".

    Raises:
        InvalidTransition: If the value names no status
    """
    if isinstance(value, OrderStatus):
        return value

    normalized = value.strip().lower()
    for status in OrderStatus:
        if normalized in (status.value.lower(), status.name.lower()):
            return status

    raise InvalidTransition(
        f"Unknown status {value!r}. Options: {[s.value for s in OrderStatus]}"
    )


class LifecycleStateMachine:
    """
    Validates and applies status transitions; the sole writer of order status.

    Example:
        >>> lifecycle = LifecycleStateMachine(store, publisher)
        >>> order = await lifecycle.transition(order_id, "Confirmed", operator)
        >>> order.status
        <OrderStatus.CONFIRMED: 'Confirmed'>
    """

    def __init__(self, store: BaseOrderStore, publisher: EventPublisher):
        self._store = store
        self._publisher = publisher
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # =========================================================================
    # ORDER CREATION
    # =========================================================================

    async def create_order(self, draft: OrderCreate, customer: Identity) -> Order:
        """Persist a cash-on-delivery order in Pending and announce it."""
        order = await self._store.create_order(draft, customer_id=customer.user_id)
        logger.info(
            f"✅ Order #{order.id} placed by {customer.user_id} at restaurant "
            f"{order.restaurant_id} ({order.total_amount:.2f})"
        )
        self.on_order_created(order)
        return order

    def on_order_created(self, order: Order) -> None:
        """An order entered Pending; tell the restaurant and the stats view."""
        self._publish(OrderPlaced(order=order))

    async def on_payment_confirmed(
        self,
        draft: OrderCreate,
        customer: Identity,
        payment: PaymentDetails,
    ) -> tuple[Order, bool]:
        """
        Create the Pending order for a confirmed payment, exactly once.

        A repeated confirmation for the same payment returns the existing
        order and publishes nothing.

        Raises:
            Unauthorized: The payment already belongs to another customer's order

        Returns:
            (order, created)
        """
        async with self._lock_for(f"payment:{payment.payment_id}"):
            existing = await self._store.find_by_payment_id(payment.payment_id)
            if existing is not None:
                if existing.customer_id != customer.user_id:
                    logger.warning(
                        f"⚠️ Payment {payment.payment_id} replayed by {customer.user_id}; "
                        f"it belongs to order #{existing.id}"
                    )
                    raise Unauthorized(f"Payment {payment.payment_id} belongs to another customer")
                logger.warning(
                    f"⚠️ Order #{existing.id} already exists for payment {payment.payment_id}"
                )
                return existing, False

            order = await self._store.create_order(
                draft,
                customer_id=customer.user_id,
                payment=payment,
            )

        logger.info(f"✅ Order #{order.id} created for payment {payment.payment_id}")
        self.on_order_created(order)
        return order, True

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        order_id: str,
        requested_status: Union[str, OrderStatus],
        actor: Identity,
    ) -> Order:
        """
        Move an order to `requested_status` on behalf of `actor`.

        Raises:
            InvalidTransition: Unknown status, illegal edge, or terminal order
            OrderNotFound: No such order
            Unauthorized: Actor has no authority over this order
            StorageFailure: The store could not persist the change
        """
        async with self._lock_for(f"order:{order_id}"):
            order = await self._store.get_order(order_id)
            if order is None:
                raise OrderNotFound(f"Order #{order_id} not found", order_id=order_id)

            if not self._has_stake(order, actor):
                logger.warning(
                    f"⚠️ {actor.role.value}:{actor.user_id} has no authority over order #{order.id}"
                )
                raise Unauthorized(f"Not authorized to change order #{order.id}", order_id=order.id)

            requested = parse_status(requested_status)

            self.authorize(order, requested, actor)
            self.validate(order, requested)

            previous = order.status
            try:
                updated = await self._store.update_status(order_id, requested, expected_status=previous)
            except OrderTrackError:
                raise
            except Exception as e:
                logger.exception(f"Store failed while updating order #{order_id}")
                raise StorageFailure(f"Could not update order #{order_id}", order_id=order_id) from e

            if updated is None:
                raise InvalidTransition(
                    f"Order #{order_id} changed while {previous.value} → {requested.value} "
                    f"was being applied",
                    order_id=order_id,
                )

        logger.info(
            f"✅ Order #{order_id}: {previous.value} → {updated.status.value} "
            f"by {actor.role.value}:{actor.user_id} (v{updated.version})"
        )
        self._publish(OrderStatusChanged(order=updated, previous_status=previous))
        return updated

    @staticmethod
    def _has_stake(order: Order, actor: Identity) -> bool:
        """Operator of the restaurant, owning customer, or the system."""
        return (
            actor.operates(order.restaurant_id)
            or (actor.role == Role.CUSTOMER and actor.user_id == order.customer_id)
            or actor.role == Role.SYSTEM
        )

    def authorize(self, order: Order, requested: OrderStatus, actor: Identity) -> None:
        """Raise Unauthorized unless `actor` may request `requested` on `order`."""
        if actor.operates(order.restaurant_id):
            return

        if requested == OrderStatus.CANCELLED:
            is_owner = actor.role == Role.CUSTOMER and actor.user_id == order.customer_id
            if is_owner or actor.role == Role.SYSTEM:
                # Terminal orders fall through to validate() as InvalidTransition
                if order.status in CUSTOMER_CANCELLABLE or is_terminal(order.status):
                    return
                raise Unauthorized(
                    f"Order #{order.id} is already {order.status.value} and can only "
                    f"be cancelled by the restaurant",
                    order_id=order.id,
                )

        logger.warning(
            f"⚠️ Unauthorized transition of order #{order.id} to {requested.value} "
            f"by {actor.role.value}:{actor.user_id}"
        )
        raise Unauthorized(
            f"Not authorized to move order #{order.id} to {requested.value}",
            order_id=order.id,
        )

    def validate(self, order: Order, requested: OrderStatus) -> None:
        """Raise InvalidTransition unless `order.status → requested` is an edge."""
        current = order.status
        if is_terminal(current):
            raise InvalidTransition(
                f"Order #{order.id} is already {current.value}",
                order_id=order.id,
            )
        if not is_valid_transition(current, requested):
            raise InvalidTransition(
                f"Cannot move order #{order.id} from {current.value} to {requested.value}",
                order_id=order.id,
            )

    def _publish(self, event) -> None:
        # Publication never fails the caller; the change is already committed
        try:
            self._publisher.publish(event)
        except Exception:
            logger.exception(f"Failed to publish {type(event).__name__}")
