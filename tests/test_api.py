"""End-to-end: HTTP and WebSocket traffic against one application instance."""

import pytest
from fastapi.testclient import TestClient

from ordertrack.core.exceptions import StorageFailure
from ordertrack.main import create_app
from ordertrack.services.auth.headers import HeaderIdentityResolver
from ordertrack.services.orders.memory import InMemoryOrderStore
from ordertrack.services.payment.mock import MockPaymentService

from tests.conftest import RESTAURANT_ID

CUSTOMER = {"X-User-Id": "c_1", "X-User-Role": "customer"}
OTHER_CUSTOMER = {"X-User-Id": "c_2", "X-User-Role": "customer"}
OPERATOR = {"X-User-Id": "op_1", "X-User-Role": "restaurantAdmin", "X-Restaurant-Id": RESTAURANT_ID}
SUPERADMIN = {"X-User-Id": "admin", "X-User-Role": "superadmin"}

ORDER_PAYLOAD = {
    "restaurantId": RESTAURANT_ID,
    "items": [{"name": "Paneer Tikka", "price": 249.0, "quantity": 2}],
    "deliveryAddress": {"street": "12 MG Road", "city": "Pune", "pincode": "411001"},
}


@pytest.fixture
def app():
    return create_app(
        order_store=InMemoryOrderStore(),
        payment_service=MockPaymentService(min_latency=0, max_latency=0),
        identity_resolver=HeaderIdentityResolver(),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def place_order(client, headers=CUSTOMER) -> dict:
    response = client.post("/api/orders", json=ORDER_PAYLOAD, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def set_status(client, order_id, status, headers=OPERATOR):
    return client.put(f"/api/orders/{order_id}/status", json={"status": status}, headers=headers)


def open_socket(client, headers):
    ws = client.websocket_connect("/ws", headers=headers)
    socket = ws.__enter__()
    assert socket.receive_json()["event"] == "connected"
    return ws, socket


def assert_quiet(socket):
    """Nothing is queued for this socket beyond what was already read."""
    socket.send_json({"action": "ping"})
    assert socket.receive_json() == {"event": "pong"}


# =============================================================================
# HTTP
# =============================================================================

class TestHttp:

    def test_root_and_health(self, client):
        assert client.get("/").json()["live_updates"] == "/ws"

        health = client.get("/health").json()
        assert health["status"] == "operational"
        assert health["orderStore"] == "healthy"
        assert health["liveConnections"] == 0

    def test_startup_banner(self, app, caplog):
        with caplog.at_level("INFO", logger="ordertrack.main"):
            with TestClient(app):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("🚀 Starting") for m in messages)
        assert "✅ Application ready!" in messages
        assert "✅ Cleanup complete" in messages

    def test_place_order(self, client):
        order = place_order(client)

        assert order["status"] == "Pending"
        assert order["version"] == 1
        assert order["customerId"] == "c_1"
        assert order["totalAmount"] == 498.0

    def test_identity_required(self, client):
        assert client.post("/api/orders", json=ORDER_PAYLOAD).status_code == 401

    def test_operator_cannot_place_orders(self, client):
        assert client.post("/api/orders", json=ORDER_PAYLOAD, headers=OPERATOR).status_code == 403

    def test_order_visibility(self, client):
        order = place_order(client)

        assert client.get(f"/api/orders/{order['id']}", headers=CUSTOMER).status_code == 200
        assert client.get(f"/api/orders/{order['id']}", headers=OPERATOR).status_code == 200
        assert client.get(f"/api/orders/{order['id']}", headers=OTHER_CUSTOMER).status_code == 403
        assert client.get("/api/orders/missing", headers=CUSTOMER).status_code == 404

    def test_transition_errors(self, client):
        order = place_order(client)

        response = set_status(client, order["id"], "Delivered")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

        assert set_status(client, order["id"], "Confirmed", headers=CUSTOMER).status_code == 403
        assert set_status(client, "missing", "Confirmed").status_code == 404

    def test_transition_success(self, client):
        order = place_order(client)

        response = set_status(client, order["id"], "Confirmed")

        assert response.status_code == 200
        body = response.json()
        assert body["order"]["status"] == "Confirmed"
        assert body["order"]["version"] == 2

    def test_payment_confirmation_is_idempotent(self, client):
        payload = {**ORDER_PAYLOAD, "paymentId": "pi_1", "providerOrderId": "po_1"}

        first = client.post("/api/payments/confirm", json=payload, headers=CUSTOMER)
        second = client.post("/api/payments/confirm", json=payload, headers=CUSTOMER)

        assert first.status_code == 201
        assert second.status_code == 200
        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert first.json()["order"]["id"] == second.json()["order"]["id"]
        assert first.json()["order"]["payment"]["paymentId"] == "pi_1"

    def test_payment_of_another_customer_is_refused(self, client):
        payload = {**ORDER_PAYLOAD, "paymentId": "pi_owned"}
        assert client.post("/api/payments/confirm", json=payload, headers=CUSTOMER).status_code == 201

        replay = client.post("/api/payments/confirm", json=payload, headers=OTHER_CUSTOMER)

        assert replay.status_code == 403
        assert replay.json()["error"] == "unauthorized"
        assert "order" not in replay.json()
        assert client.get("/api/orders", headers=OTHER_CUSTOMER).json()["total"] == 0

    def test_declined_payment_creates_nothing(self, client):
        payload = {**ORDER_PAYLOAD, "paymentId": "fail_1"}

        response = client.post("/api/payments/confirm", json=payload, headers=CUSTOMER)

        assert response.status_code == 402
        assert response.json()["error"] == "payment_verification_failed"
        assert client.get("/api/orders", headers=CUSTOMER).json()["total"] == 0

    def test_restaurant_orders_and_stats(self, client):
        order = place_order(client)
        set_status(client, order["id"], "Cancelled", headers=CUSTOMER)
        place_order(client)

        board = client.get(f"/api/restaurants/{RESTAURANT_ID}/orders", headers=OPERATOR)
        assert board.json()["total"] == 2
        assert client.get("/api/restaurants/r_other/orders", headers=OPERATOR).status_code == 403

        stats = client.get("/api/admin/stats", headers=SUPERADMIN).json()
        assert stats["totalOrders"] == 2
        assert stats["byStatus"]["Cancelled"] == 1
        assert client.get("/api/admin/stats", headers=OPERATOR).status_code == 403


# =============================================================================
# LIVE UPDATES
# =============================================================================

class TestLiveUpdates:

    def test_customer_tracks_order(self, client):
        order = place_order(client)
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_json({"action": "join_order_room", "orderId": order["id"]})
            assert socket.receive_json() == {"event": "room_joined", "topic": f"order:{order['id']}"}

            set_status(client, order["id"], "Confirmed")
            set_status(client, order["id"], "Preparing")

            first, second = socket.receive_json(), socket.receive_json()
            assert first["event"] == "order_status_updated"
            assert first["orderId"] == order["id"]
            assert first["restaurantId"] == RESTAURANT_ID
            assert [first["status"], second["status"]] == ["Confirmed", "Preparing"]
            assert second["order"]["version"] == 3
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_foreign_customer_never_receives(self, client):
        order = place_order(client)
        ws, socket = open_socket(client, OTHER_CUSTOMER)
        try:
            socket.send_json({"action": "join_order_room", "orderId": order["id"]})
            assert_quiet(socket)

            set_status(client, order["id"], "Confirmed")
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_rejected_transition_publishes_nothing(self, client):
        order = place_order(client)
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_json({"action": "join_order_room", "orderId": order["id"]})
            socket.receive_json()

            assert set_status(client, order["id"], "Delivered").status_code == 409
            assert set_status(client, order["id"], "Confirmed", headers=CUSTOMER).status_code == 403
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_restaurant_dashboard(self, client):
        ws, socket = open_socket(client, OPERATOR)
        try:
            socket.send_json({"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID})
            assert socket.receive_json()["event"] == "room_joined"

            order = place_order(client)
            created = socket.receive_json()
            assert created["event"] == "new_order"
            assert created["order"]["id"] == order["id"]

            set_status(client, order["id"], "Confirmed")
            assert socket.receive_json()["status"] == "Confirmed"

            socket.send_json({"action": "leave_restaurant_room", "restaurantId": RESTAURANT_ID})
            assert socket.receive_json()["event"] == "room_left"

            set_status(client, order["id"], "Preparing")
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_superadmin_stats_feed(self, client):
        ws, socket = open_socket(client, SUPERADMIN)
        try:
            socket.send_json({"action": "join_stats_room"})
            assert socket.receive_json()["topic"] == "system:stats"

            place_order(client)
            assert socket.receive_json()["type"] == "newOrder"

            response = client.put(
                f"/api/admin/restaurants/{RESTAURANT_ID}/status",
                json={"status": "approved", "previousStatus": "pending"},
                headers=SUPERADMIN,
            )
            assert response.status_code == 200
            update = socket.receive_json()
            assert update["event"] == "restaurant_status_updated"
            assert update["status"] == "approved"
        finally:
            ws.__exit__(None, None, None)

    def test_anonymous_socket_cannot_join(self, client):
        ws, socket = open_socket(client, {})
        try:
            socket.send_json({"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID})
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_malformed_control_messages(self, client):
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_text("not json")
            assert socket.receive_json()["event"] == "error"

            socket.send_json({"action": "join_everything"})
            assert socket.receive_json()["event"] == "error"
        finally:
            ws.__exit__(None, None, None)

    def test_full_tracking_scenario(self, client, app):
        order = place_order(client)
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_json({"action": "join_order_room", "orderId": order["id"]})
            socket.receive_json()

            assert set_status(client, order["id"], "Confirmed").status_code == 200
            assert socket.receive_json()["status"] == "Confirmed"

            assert set_status(client, order["id"], "Delivered").status_code == 409
            assert_quiet(socket)

            for status in ("Preparing", "Out for Delivery", "Delivered"):
                assert set_status(client, order["id"], status).status_code == 200
            assert [socket.receive_json()["status"] for _ in range(3)] == [
                "Preparing", "Out for Delivery", "Delivered",
            ]

            socket.send_json({"action": "leave_order_room", "orderId": order["id"]})
            assert socket.receive_json()["event"] == "room_left"
            assert app.state.registry.members(f"order:{order['id']}") == []
        finally:
            ws.__exit__(None, None, None)

    def test_disconnect_unregisters(self, client, app):
        order = place_order(client)
        with client.websocket_connect("/ws", headers=OPERATOR) as socket:
            socket.receive_json()
            socket.send_json({"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID})
            socket.receive_json()
            assert app.state.registry.connection_count == 1

        assert set_status(client, order["id"], "Confirmed").status_code == 200

        for _ in range(50):
            if client.get("/health").json()["liveConnections"] == 0:
                break
        assert app.state.registry.connection_count == 0
        assert app.state.registry.topic_count == 0


class UnavailableStore(InMemoryOrderStore):
    """Order lookups fail as if the database were down."""

    async def get_order(self, order_id):
        raise StorageFailure("database unavailable", order_id=order_id)


class TestGatewayResilience:

    @pytest.fixture
    def client(self):
        app = create_app(
            order_store=UnavailableStore(),
            payment_service=MockPaymentService(min_latency=0, max_latency=0),
            identity_resolver=HeaderIdentityResolver(),
        )
        with TestClient(app) as client:
            yield client

    def test_store_failure_during_join_keeps_socket_open(self, client):
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_json({"action": "join_order_room", "orderId": "o_1"})
            assert socket.receive_json()["event"] == "error"
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)

    def test_binary_frame_is_rejected(self, client):
        ws, socket = open_socket(client, CUSTOMER)
        try:
            socket.send_bytes(b"\x00\x01")
            assert socket.receive_json()["event"] == "error"
            assert_quiet(socket)
        finally:
            ws.__exit__(None, None, None)
