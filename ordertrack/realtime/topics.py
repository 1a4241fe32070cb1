"""
Topic names.

    order:<orderId>            one order's tracking screen
    restaurant:<restaurantId>  a restaurant's live dashboard
    system:stats               the super-admin aggregate view
"""

from typing import NamedTuple, Optional

ORDER_PREFIX = "order:"
RESTAURANT_PREFIX = "restaurant:"
SYSTEM_STATS = "system:stats"


class TopicRef(NamedTuple):
    kind: str
    key: Optional[str]


def order_topic(order_id: str) -> str:
    return f"{ORDER_PREFIX}{order_id}"


def restaurant_topic(restaurant_id: str) -> str:
    return f"{RESTAURANT_PREFIX}{restaurant_id}"


def parse_topic(topic: str) -> Optional[TopicRef]:
    """Split a topic name into (kind, key); None for names we do not route."""
    if topic == SYSTEM_STATS:
        return TopicRef("system", None)
    for kind, prefix in (("order", ORDER_PREFIX), ("restaurant", RESTAURANT_PREFIX)):
        if topic.startswith(prefix) and len(topic) > len(prefix):
            return TopicRef(kind, topic[len(prefix):])
    return None
