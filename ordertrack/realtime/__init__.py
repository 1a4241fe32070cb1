"""
Real-time delivery: connection registry, topic routing and subscriptions.
"""

from ordertrack.realtime.registry import Connection, ConnectionRegistry
from ordertrack.realtime.router import EventPublisher, TopicRouter
from ordertrack.realtime.subscriptions import ClientSubscriptionManager, SubscriptionGate
from ordertrack.realtime.topics import SYSTEM_STATS, order_topic, restaurant_topic

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "EventPublisher",
    "TopicRouter",
    "ClientSubscriptionManager",
    "SubscriptionGate",
    "SYSTEM_STATS",
    "order_topic",
    "restaurant_topic",
]
