"""
SQL Order Store

Async SQLAlchemy implementation used when ORDER_STORE_BACKEND=sql.
Status writes are a single conditional UPDATE, so two processes (or two
sessions) can never both move the same order away from the same status.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ordertrack.core.exceptions import StorageFailure
from ordertrack.database import build_session_maker, init_db
from ordertrack.models import OrderRecord, OrderStatus
from ordertrack.schemas import Order, OrderCreate, PaymentDetails
from ordertrack.services.orders.base import BaseOrderStore

logger = logging.getLogger(__name__)


class SQLOrderStore(BaseOrderStore):
    """
    Order store backed by the `orders` table.

    Example:
        >>> store = SQLOrderStore(build_engine(settings.database_url))
        >>> await store.init()
        >>> order = await store.get_order("3f2a...")
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_maker: async_sessionmaker[AsyncSession] = build_session_maker(engine)

    @property
    def provider_name(self) -> str:
        return "sql"

    async def init(self) -> None:
        await init_db(self._engine)

    async def close(self) -> None:
        await self._engine.dispose()

    async def create_order(
        self,
        draft: OrderCreate,
        customer_id: str,
        payment: Optional[PaymentDetails] = None,
    ) -> Order:
        record = OrderRecord(
            customer_id=customer_id,
            restaurant_id=draft.restaurant_id,
            status=OrderStatus.PENDING,
            version=1,
            items=[item.model_dump(mode="json") for item in draft.items],
            total_amount=draft.total_amount,
            delivery_address=draft.delivery_address.model_dump(mode="json"),
            payment_id=payment.payment_id if payment else None,
            payment=payment.model_dump(mode="json") if payment else None,
        )

        try:
            async with self._session_maker() as session:
                session.add(record)
                await session.commit()
        except IntegrityError as e:
            raise StorageFailure(f"Order for payment {record.payment_id} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to create order: {e}")
            raise StorageFailure("Could not persist order") from e

        return Order.model_validate(record)

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await self._fetch_one(select(OrderRecord).where(OrderRecord.id == order_id))

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        expected_status: OrderStatus,
    ) -> Optional[Order]:
        stmt = (
            update(OrderRecord)
            .where(OrderRecord.id == order_id, OrderRecord.status == expected_status)
            .values(
                status=new_status,
                version=OrderRecord.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )

        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    await session.rollback()
                    return None
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update order #{order_id}: {e}")
            raise StorageFailure(f"Could not update order #{order_id}", order_id=order_id) from e

        return await self.get_order(order_id)

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        return await self._fetch_one(
            select(OrderRecord).where(OrderRecord.payment_id == payment_id)
        )

    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        return await self._fetch_all(
            select(OrderRecord)
            .where(OrderRecord.customer_id == user_id)
            .order_by(OrderRecord.created_at.desc())
        )

    async def list_orders_for_restaurant(self, restaurant_id: str) -> list[Order]:
        return await self._fetch_all(
            select(OrderRecord)
            .where(OrderRecord.restaurant_id == restaurant_id)
            .order_by(OrderRecord.created_at.desc())
        )

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OrderStatus}
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(OrderRecord.status, func.count(OrderRecord.id))
                    .group_by(OrderRecord.status)
                )
                for status, count in result.all():
                    counts[status.value] = count
        except SQLAlchemyError as e:
            raise StorageFailure("Could not count orders") from e
        return counts

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Order store health check failed: {e}")
            return False

    async def _fetch_one(self, stmt) -> Optional[Order]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageFailure("Could not read order") from e
        return Order.model_validate(record) if record else None

    async def _fetch_all(self, stmt) -> list[Order]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise StorageFailure("Could not list orders") from e
        return [Order.model_validate(record) for record in records]
