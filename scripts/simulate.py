"""
Chaos Simulation Script

Fires concurrent orders at a running API and then checks that every order
that was accepted is complete: all of its lines are there and the stored
total matches the cart. A share of the requests is replayed with the same
Idempotency-Key to check that no duplicates appear.

Requires a running server with at least one available menu item.
Run from project root: python scripts/simulate.py --orders 50
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx

# Configuration
API_BASE_URL = "http://localhost:5000"
TOTAL_ORDERS = 50
DELIVERY_FEE = Decimal("5.00")

# Sample data for random customers
FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Wilson", "Taylor"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave", "Lexington Ave", "Amsterdam Ave"]


def generate_random_customer() -> dict[str, str]:
    """Generate random registration data."""
    first = random.choice(FIRST_NAMES)
    last = random.choice(LAST_NAMES)
    return {
        "name": f"{first} {last}",
        "email": f"{first.lower()}.{last.lower()}.{uuid.uuid4().hex[:8]}@example.com",
        "password": "simulate123",
        "phone": f"555-{random.randint(100, 999)}-{random.randint(1000, 9999)}",
        "address": f"{random.randint(1, 999)} {random.choice(STREETS)}",
    }


def generate_random_cart(menu: list[dict], customer: dict[str, str]) -> dict[str, Any]:
    """Build an order payload from the live menu."""
    lines = []
    for item in random.sample(menu, k=min(len(menu), random.randint(1, 4))):
        lines.append({
            "catalog_item_id": item["id"],
            "quantity": random.randint(1, 3),
            "unit_price": item["price"],
        })

    payload: dict[str, Any] = {
        "items": lines,
        "phone": customer["phone"],
        "notes": random.choice([None, "Extra napkins", "Ring doorbell", "Leave at door"]),
    }
    if random.random() < 0.5:
        payload["fulfillment_mode"] = "delivery"
        payload["delivery_address"] = customer["address"]
    else:
        pickup = datetime.now(timezone.utc) + timedelta(hours=1)
        payload["fulfillment_mode"] = "pickup"
        payload["pickup_datetime"] = pickup.isoformat()
    return payload


def expected_total(payload: dict[str, Any]) -> Decimal:
    subtotal = sum(
        (Decimal(str(line["unit_price"])) * line["quantity"] for line in payload["items"]),
        Decimal("0"),
    )
    fee = DELIVERY_FEE if payload["fulfillment_mode"] == "delivery" else Decimal("0")
    return (subtotal + fee).quantize(Decimal("0.01"))


# =============================================================================
# ORDER FLOW
# =============================================================================

async def register_customer(client: httpx.AsyncClient) -> dict[str, Any]:
    customer = generate_random_customer()
    response = await client.post(f"{API_BASE_URL}/api/auth/register", json=customer, timeout=30.0)
    response.raise_for_status()
    customer["token"] = response.json()["token"]
    return customer


async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    menu: list[dict],
    replay: bool,
) -> dict[str, Any]:
    """Register a customer and place one order (twice when ``replay``)."""
    start_time = time.time()

    try:
        customer = await register_customer(client)
        payload = generate_random_cart(menu, customer)
        headers = {
            "Authorization": f"Bearer {customer['token']}",
            "Idempotency-Key": uuid.uuid4().hex,
        }

        attempts = 2 if replay else 1
        order_ids = set()
        for _ in range(attempts):
            response = await client.post(
                f"{API_BASE_URL}/api/orders",
                json=payload,
                headers=headers,
                timeout=30.0,
            )
            if response.status_code not in (200, 201):
                return {
                    "order_num": order_num,
                    "success": False,
                    "error": response.text[:100],
                    "time": round(time.time() - start_time, 3),
                }
            order_ids.add(response.json()["id"])

        return {
            "order_num": order_num,
            "success": True,
            "order_ids": order_ids,
            "token": customer["token"],
            "payload": payload,
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def verify_order(client: httpx.AsyncClient, result: dict[str, Any]) -> list[str]:
    """Read an order back and list everything that is wrong with it."""
    problems = []
    if len(result["order_ids"]) != 1:
        problems.append(f"idempotent replay produced {len(result['order_ids'])} orders")

    headers = {"Authorization": f"Bearer {result['token']}"}
    for order_id in result["order_ids"]:
        response = await client.get(f"{API_BASE_URL}/api/orders/{order_id}", headers=headers, timeout=30.0)
        if response.status_code != 200:
            problems.append(f"order {order_id} unreadable: {response.status_code}")
            continue
        order = response.json()
        if len(order["items"]) != len(result["payload"]["items"]):
            problems.append(
                f"order {order_id} has {len(order['items'])} lines, "
                f"expected {len(result['payload']['items'])}"
            )
        total = Decimal(str(order["total_price"])).quantize(Decimal("0.01"))
        if total != expected_total(result["payload"]):
            problems.append(f"order {order_id} total {total}, expected {expected_total(result['payload'])}")
        if order["status"] != "pending":
            problems.append(f"order {order_id} status {order['status']}")
    return problems


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, replay_share: float = 0.2) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_orders: Number of orders to place concurrently
        replay_share: Fraction of orders sent twice with the same key
    """
    print("=" * 70)
    print("🔥 CHAOS SIMULATION - HIGH CONCURRENCY TEST")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        health = await client.get(f"{API_BASE_URL}/health", timeout=10.0)
        print(f"\n🩺 Health: {health.json().get('status')} ({health.json().get('storage_backend')})")

        menu = (await client.get(f"{API_BASE_URL}/api/menu", timeout=10.0)).json()
        if not menu:
            print("\n❌ No available menu items. Add some before running the simulation.")
            return {"total": num_orders, "successful": 0, "failed": num_orders}

        print(f"\n🚀 Firing {num_orders} orders against {len(menu)} menu items...\n")
        start_time = time.time()
        tasks = [
            send_order(client, i + 1, menu, replay=random.random() < replay_share)
            for i in range(num_orders)
        ]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print("\n" + "=" * 70)
        print("🔍 VERIFYING STORED ORDERS")
        print("=" * 70)
        problems = []
        for result in successful:
            problems.extend(await verify_order(client, result))

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
    print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print("\n📈 Performance Metrics:")
        print(f"   Average Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    if problems:
        print(f"\n❌ {len(problems)} integrity problem(s):")
        for problem in problems[:10]:
            print(f"   {problem}")
    else:
        print("\n✅ Every accepted order is complete and correctly priced")
    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "problems": problems,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--replay-share", type=float, default=0.2, help="Share of orders sent twice")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    summary = asyncio.run(run_simulation(num_orders=args.orders, replay_share=args.replay_share))
    sys.exit(1 if summary.get("problems") or summary["failed"] else 0)
