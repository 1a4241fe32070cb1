"""
Live Tracking Simulation Script

Drives the whole flow against a running development server:
customers place orders and watch them over WebSockets, a restaurant
operator watches the dashboard and pushes every order to Delivered.
At the end each viewer's local copy must match the server's snapshot.

Run from project root (server in ENV_MODE=development):
    uvicorn ordertrack.main:app --port 8001
    python scripts/simulate.py --orders 20

Version: 1.0.0
"""

import argparse
import asyncio
import json
import os
import random
import sys
import time
from datetime import datetime
from typing import Any

import httpx
from websockets.asyncio.client import ClientConnection, connect

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordertrack.realtime.subscriptions import ClientSubscriptionManager  # noqa: E402

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
WS_URL = "ws://localhost:8001/ws"
TOTAL_ORDERS = 20
RESTAURANT_ID = "r_pizza_palace"

STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave"]
MENU_ITEMS = [
    {"name": "Pizza Margherita", "price": 14.99},
    {"name": "Pepperoni Pizza", "price": 16.99},
    {"name": "Caesar Salad", "price": 8.99},
    {"name": "Garlic Bread", "price": 5.99},
    {"name": "Tiramisu", "price": 7.99},
]
FORWARD_PATH = ["Confirmed", "Preparing", "Out for Delivery", "Delivered"]


def identity_headers(user_id: str, role: str, restaurant_id: str | None = None) -> dict[str, str]:
    """Development identity headers understood by the server."""
    headers = {"X-User-Id": user_id, "X-User-Role": role}
    if restaurant_id:
        headers["X-Restaurant-Id"] = restaurant_id
    return headers


OPERATOR = identity_headers("op_1", "restaurantAdmin", RESTAURANT_ID)


def generate_order_payload() -> dict[str, Any]:
    items = []
    for item in random.sample(MENU_ITEMS, k=random.randint(1, 3)):
        items.append({**item, "quantity": random.randint(1, 3)})
    return {
        "restaurantId": RESTAURANT_ID,
        "items": items,
        "deliveryAddress": {
            "street": f"{random.randint(1, 999)} {random.choice(STREETS)}",
            "city": "New York",
            "pincode": "10001",
        },
    }


class Viewer:
    """A browser tab: one socket, one subscription manager, one reader task."""

    def __init__(self, name: str, headers: dict[str, str], client: httpx.AsyncClient):
        self.name = name
        self.headers = headers
        self.client = client
        self.events_applied = 0
        self._socket: ClientConnection | None = None
        self._reader: asyncio.Task | None = None
        self.manager = ClientSubscriptionManager(
            send=self._send,
            fetch_order=self._fetch_order,
            fetch_restaurant_orders=self._fetch_restaurant_orders,
        )

    async def open(self) -> None:
        self._socket = await connect(WS_URL, additional_headers=self.headers)
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        await self.manager.unmount_all()
        if self._socket is not None:
            await self._socket.close()
        if self._reader is not None:
            await self._reader

    async def _send(self, message: dict) -> None:
        await self._socket.send(json.dumps(message))

    async def _fetch_order(self, order_id: str) -> dict:
        response = await self.client.get(f"{API_BASE_URL}/api/orders/{order_id}", headers=self.headers)
        response.raise_for_status()
        return response.json()

    async def _fetch_restaurant_orders(self, restaurant_id: str) -> list[dict]:
        response = await self.client.get(
            f"{API_BASE_URL}/api/restaurants/{restaurant_id}/orders", headers=self.headers
        )
        response.raise_for_status()
        return response.json()["orders"]

    async def _read_loop(self) -> None:
        async for raw in self._socket:
            if await self.manager.handle_event(json.loads(raw)):
                self.events_applied += 1


# =============================================================================
# SIMULATION STEPS
# =============================================================================

async def place_and_track(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    """Place one order as a fresh customer and start watching it."""
    customer_id = f"cust_{order_num}"
    viewer = Viewer(customer_id, identity_headers(customer_id, "customer"), client)
    start_time = time.time()

    response = await client.post(
        f"{API_BASE_URL}/api/orders",
        json=generate_order_payload(),
        headers=viewer.headers,
        timeout=30.0,
    )
    if response.status_code != 201:
        return {"order_num": order_num, "success": False, "error": response.text[:100]}

    order = response.json()
    await viewer.open()
    await viewer.manager.mount_order(order["id"])

    return {
        "order_num": order_num,
        "success": True,
        "order_id": order["id"],
        "total": order["totalAmount"],
        "viewer": viewer,
        "time": round(time.time() - start_time, 3),
    }


async def advance_order(client: httpx.AsyncClient, order_id: str) -> list[str]:
    """Push one order through the forward path as the restaurant operator."""
    errors = []
    for status in FORWARD_PATH:
        await asyncio.sleep(random.uniform(0, 0.05))
        response = await client.put(
            f"{API_BASE_URL}/api/orders/{order_id}/status",
            json={"status": status},
            headers=OPERATOR,
        )
        if response.status_code != 200:
            errors.append(f"{status}: {response.status_code} {response.text[:80]}")
    return errors


async def settle(viewers: list[Viewer], timeout: float = 5.0) -> None:
    """Wait until every tracked order shows Delivered locally (or give up)."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if all(
            all(o["status"] == "Delivered" for o in v.manager.orders.values())
            for v in viewers
        ):
            return
        await asyncio.sleep(0.05)


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("LIVE TRACKING SIMULATION")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health")
        health.raise_for_status()
        print(f"\nServer status: {health.json().get('status')}")

        dashboard = Viewer("dashboard", OPERATOR, client)
        await dashboard.open()
        await dashboard.manager.mount_restaurant_dashboard(RESTAURANT_ID)

        print("\nPlacing orders...")
        results = await asyncio.gather(*(place_and_track(client, i + 1) for i in range(num_orders)))
        placed = [r for r in results if r["success"]]

        print("Advancing orders as the restaurant...")
        errors = await asyncio.gather(*(advance_order(client, r["order_id"]) for r in placed))

        viewers = [r["viewer"] for r in placed]
        await settle(viewers + [dashboard])

        mismatches = []
        for result in placed:
            snapshot = await client.get(
                f"{API_BASE_URL}/api/orders/{result['order_id']}",
                headers=result["viewer"].headers,
            )
            server = snapshot.json()
            local = result["viewer"].manager.orders.get(result["order_id"], {})
            board = dashboard.manager.dashboards.get(RESTAURANT_ID, {}).get(result["order_id"], {})
            if local.get("version") != server["version"] or board.get("version") != server["version"]:
                mismatches.append(
                    f"#{result['order_id'][:8]} server v{server['version']} "
                    f"customer v{local.get('version')} dashboard v{board.get('version')}"
                )

        for viewer in viewers + [dashboard]:
            await viewer.close()

    total_time = round(time.time() - start_time, 2)
    failed = [r for r in results if not r["success"]]
    transition_errors = [e for errs in errors for e in errs]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"\nPlaced Orders: {len(placed)}/{num_orders}")
    print(f"Rejected Transitions: {len(transition_errors)}")
    print(f"Out-of-sync Viewers: {len(mismatches)}")
    print(f"Dashboard events applied: {dashboard.events_applied}")
    print(f"Total Time: {total_time}s")

    if placed:
        total_revenue = sum(r["total"] for r in placed)
        print(f"Total Revenue: ${total_revenue:.2f}")

    for f in failed[:5]:
        print(f"   Order #{f['order_num']}: {f.get('error')}")
    for e in transition_errors[:5]:
        print(f"   Transition: {e}")
    for m in mismatches[:5]:
        print(f"   Viewer: {m}")

    print("=" * 70)

    return {
        "total": num_orders,
        "placed": len(placed),
        "rejected_transitions": len(transition_errors),
        "out_of_sync": len(mismatches),
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Live Tracking Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")
    WS_URL = API_BASE_URL.replace("http", "ws", 1) + "/ws"

    summary = asyncio.run(run_simulation(args.orders))
    sys.exit(0 if summary["out_of_sync"] == 0 and summary["rejected_transitions"] == 0 else 1)
