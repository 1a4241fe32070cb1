"""
Connection Registry

Bookkeeping of live connections and the topics they have joined, plus the
delivery substrate that writes events to them. It knows nothing about
orders or restaurants; topics are plain strings.

Every mutation (register/join/leave/publish/unregister) is synchronous and
never awaits, so on the single event loop they cannot interleave with one
another. Writes to sockets happen in one writer task per connection,
draining a bounded outbox:
    - a slow socket only backs up its own outbox
    - each connection sees a topic's events in publication order
    - a connection whose outbox overflows or whose write fails is dropped;
      the client re-fetches a snapshot when it reconnects
"""

import asyncio
import itertools
import logging
from operator import attrgetter
from typing import Any, Optional, Protocol

from ordertrack.core.exceptions import DeliveryFailure
from ordertrack.schemas import Identity

logger = logging.getLogger(__name__)

# WebSocket close codes used when we drop a connection ourselves
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


class Transport(Protocol):
    """What the registry needs from a socket (Starlette's WebSocket fits)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Connection:
    """One live transport session. Owned exclusively by the registry."""

    def __init__(
        self,
        connection_id: str,
        identity: Optional[Identity],
        transport: Transport,
        seq: int,
        queue_size: int,
    ):
        self.connection_id = connection_id
        self.identity = identity
        self.transport = transport
        self.seq = seq
        self.joined_topics: set[str] = set()
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.writer: Optional[asyncio.Task] = None
        self.closed = False

    def offer(self, event: dict) -> bool:
        """Queue an event without waiting; False if closed or full."""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def discard_pending(self) -> None:
        while True:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self.outbox.task_done()

    def __repr__(self):
        who = f"{self.identity.role.value}:{self.identity.user_id}" if self.identity else "anonymous"
        return f"<Connection {self.connection_id} {who} topics={len(self.joined_topics)}>"


class ConnectionRegistry:
    """
    Live connections and topic membership for this process.

    Example:
        >>> registry = ConnectionRegistry()
        >>> registry.register("c1", identity, websocket)
        >>> registry.join("c1", "order:42")
        >>> registry.publish("order:42", {"event": "order_status_updated", ...})
        1
    """

    def __init__(self, outbound_queue_size: int = 256):
        self._queue_size = outbound_queue_size
        self._connections: dict[str, Connection] = {}
        self._members: dict[str, dict[str, Connection]] = {}
        self._seq = itertools.count()
        self._background: set[asyncio.Task] = set()

    # =========================================================================
    # CONNECTION LIFECYCLE
    # =========================================================================

    def register(
        self,
        connection_id: str,
        identity: Optional[Identity],
        transport: Transport,
    ) -> Connection:
        """
        Track a new transport session with an empty topic set.

        Must be called from the event loop; starts the connection's writer.

        Raises:
            ValueError: If the connection id is already registered
        """
        if connection_id in self._connections:
            raise ValueError(f"Connection {connection_id} is already registered")

        connection = Connection(
            connection_id=connection_id,
            identity=identity,
            transport=transport,
            seq=next(self._seq),
            queue_size=self._queue_size,
        )
        self._connections[connection_id] = connection
        connection.writer = asyncio.get_running_loop().create_task(
            self._write_loop(connection),
            name=f"ws-writer-{connection_id}",
        )

        logger.info(f"Registered {connection!r} ({len(self._connections)} live)")
        return connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        """
        Forget a connection and remove it from every topic.

        Idempotent; safe while a publish is iterating members, because
        publish works on a snapshot and skips closed connections.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        connection.closed = True
        for topic in connection.joined_topics:
            self._remove_member(topic, connection_id)
        connection.joined_topics.clear()
        connection.discard_pending()

        writer = connection.writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()

        logger.info(f"Unregistered connection {connection_id} ({len(self._connections)} live)")
        return connection

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    def join(self, connection_id: str, topic: str) -> bool:
        """
        Add a connection to a topic. No authorization happens here.

        Returns:
            bool: True if the membership is new, False if it already
            existed or the connection is unknown
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug(f"Join {topic} ignored for unknown connection {connection_id}")
            return False
        if topic in connection.joined_topics:
            return False

        connection.joined_topics.add(topic)
        self._members.setdefault(topic, {})[connection_id] = connection
        logger.debug(f"{connection_id} joined {topic}")
        return True

    def leave(self, connection_id: str, topic: str) -> bool:
        """Remove a connection from a topic; False if it was not joined."""
        connection = self._connections.get(connection_id)
        if connection is None or topic not in connection.joined_topics:
            return False

        connection.joined_topics.discard(topic)
        self._remove_member(topic, connection_id)
        logger.debug(f"{connection_id} left {topic}")
        return True

    def _remove_member(self, topic: str, connection_id: str) -> None:
        members = self._members.get(topic)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            del self._members[topic]

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def publish(self, topic: str, event: dict) -> int:
        """
        Queue `event` for every connection currently joined to `topic`.

        Members are visited in registration order. A connection that cannot
        take the event is dropped; the others are unaffected and nothing
        is raised to the caller.

        Returns:
            int: Number of connections the event was queued for
        """
        members = self._members.get(topic)
        if not members:
            return 0

        delivered = 0
        for connection in sorted(members.values(), key=attrgetter("seq")):
            if connection.closed:
                continue
            if connection.offer(event):
                delivered += 1
            else:
                self._fail(
                    connection,
                    DeliveryFailure(
                        f"outbox full ({self._queue_size} events pending)",
                        connection.connection_id,
                    ),
                    close_code=CLOSE_TRY_AGAIN_LATER,
                )
        return delivered

    def send_to(self, connection_id: str, event: dict) -> bool:
        """Queue an event for a single connection (acks, errors)."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        if connection.offer(event):
            return True
        self._fail(
            connection,
            DeliveryFailure("outbox full", connection_id),
            close_code=CLOSE_TRY_AGAIN_LATER,
        )
        return False

    async def drain(self) -> None:
        """Wait until every queued event has been written or discarded."""
        await asyncio.gather(
            *(connection.outbox.join() for connection in list(self._connections.values()))
        )

    async def _write_loop(self, connection: Connection) -> None:
        while True:
            event = await connection.outbox.get()
            try:
                await connection.transport.send_json(event)
            except Exception as e:
                self._fail(
                    connection,
                    DeliveryFailure(f"write failed: {e!r}", connection.connection_id),
                    close_code=CLOSE_INTERNAL_ERROR,
                )
                return
            finally:
                connection.outbox.task_done()

    def _fail(self, connection: Connection, failure: DeliveryFailure, close_code: int) -> None:
        logger.warning(
            f"⚠️ Delivery to {failure.connection_id} failed ({failure.message}); dropping connection"
        )
        if self.unregister(connection.connection_id) is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._close_transport(connection, close_code)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _close_transport(connection: Connection, code: int) -> None:
        try:
            await connection.transport.close(code=code)
        except Exception as e:
            # Socket already gone
            logger.debug(f"Close of {connection.connection_id} failed: {e!r}")

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def members(self, topic: str) -> list[str]:
        """Connection ids joined to a topic, in registration order."""
        members = self._members.get(topic, {})
        return [c.connection_id for c in sorted(members.values(), key=attrgetter("seq"))]

    def topics_of(self, connection_id: str) -> frozenset[str]:
        connection = self._connections.get(connection_id)
        return frozenset(connection.joined_topics) if connection else frozenset()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def topic_count(self) -> int:
        return len(self._members)
