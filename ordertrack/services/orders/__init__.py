"""
Order Store Factory

Returns the in-memory or SQL order store based on ORDER_STORE_BACKEND.

Usage:
    from ordertrack.services.orders import build_order_store

    store = build_order_store()
    await store.init()
"""

import logging

from ordertrack.core.config import OrderStoreBackend, get_settings
from ordertrack.database import build_engine
from ordertrack.services.orders.base import BaseOrderStore
from ordertrack.services.orders.memory import InMemoryOrderStore
from ordertrack.services.orders.sql import SQLOrderStore

logger = logging.getLogger(__name__)


def build_order_store() -> BaseOrderStore:
    """
    Build the configured order store.

    Not cached: each application instance owns its store and disposes
    of it on shutdown.
    """
    settings = get_settings()

    if settings.order_store_backend == OrderStoreBackend.SQL:
        logger.info("Order Store: Using SQLOrderStore")
        return SQLOrderStore(build_engine(settings.database_url, echo=settings.database_echo))

    logger.info("Order Store: Using InMemoryOrderStore")
    return InMemoryOrderStore()


__all__ = [
    "build_order_store",
    "BaseOrderStore",
    "InMemoryOrderStore",
    "SQLOrderStore",
]
