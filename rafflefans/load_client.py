#!/usr/bin/env python3
"""
RaffleFans load client (async)

Each simulated buyer:
  1) POST /api/checkout with a random basket -> order_id, payment_session_id
  2) POST /mockpay/{payment_session_id}/emit {"t": ..., "copies": N}
     (N > 1 replays the same signed event, like a provider redelivering)
  3) polls GET /api/orders/{order_id} until the order leaves pending

When every buyer is done the client checks that no ticket number went to two
orders of the same competition and exits non-zero if one did.

Usage:
  rafflefans-load --base http://localhost:8000 --total 200 --concurrency 50
  rafflefans-load --total 100 --copies 3 --competitions c1,c2 --max-qty 5

Run the server with MAX_TICKETS_PER_DRAW set low to force collisions.
"""

import argparse
import asyncio
import random
import statistics
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

FINAL = ("paid", "failed")


class StepFailed(Exception):
    pass


@dataclass
class Buyer:
    basket: List[dict]
    outcome: str = "error"  # paid/failed/timeout/error
    order_id: Optional[str] = None
    tickets: Dict[str, List[int]] = field(default_factory=dict)
    resolve_s: float = 0.0
    err: Optional[str] = None


def random_basket(competitions: List[str], max_qty: int) -> List[dict]:
    k = random.randint(1, len(competitions))
    return [
        {"id": cid, "title": cid, "qty": random.randint(1, max_qty),
         "price": 0.99, "pointsPerTicket": 1}
        for cid in random.sample(competitions, k=k)
    ]


async def _post(client: httpx.AsyncClient, url: str, body: dict,
                step: str) -> dict:
    try:
        resp = await client.post(url, json=body, timeout=30.0)
    except httpx.HTTPError as e:
        raise StepFailed(f"{step}: {e}") from e
    if resp.status_code >= 400:
        raise StepFailed(f"{step}: HTTP {resp.status_code}")
    return resp.json()


async def _wait_final(client: httpx.AsyncClient, url: str,
                      interval: float, timeout: float) -> dict:
    deadline = time.perf_counter() + timeout
    last: dict = {}
    while time.perf_counter() < deadline:
        try:
            resp = await client.get(url, timeout=10.0)
        except httpx.HTTPError as e:
            raise StepFailed(f"poll: {e}") from e
        if resp.status_code == 200:
            last = resp.json()
            if last.get("status") in FINAL:
                break
        await asyncio.sleep(interval)
    return last


async def buy(client: httpx.AsyncClient, base: str, buyer: Buyer, *,
              kind: str, copies: int, interval: float,
              timeout: float) -> Buyer:
    try:
        out = await _post(client, f"{base}/api/checkout", {
            "items": buyer.basket,
            "customer": {"email": f"load-{uuid.uuid4().hex[:10]}@example.com"},
        }, "checkout")
        buyer.order_id = out["order_id"]
        await _post(client, f"{base}/mockpay/{out['payment_session_id']}/emit",
                    {"t": kind, "copies": copies}, "emit")
        t0 = time.perf_counter()
        order = await _wait_final(client, f"{base}/api/orders/{buyer.order_id}",
                                  interval, timeout)
        buyer.resolve_s = time.perf_counter() - t0
    except StepFailed as e:
        buyer.err = str(e)
        return buyer

    status = order.get("status")
    buyer.outcome = status if status in FINAL else "timeout"
    for it in order.get("items", []):
        buyer.tickets.setdefault(it["competition_id"], []).extend(
            it.get("tickets", [])
        )
    return buyer


def duplicates(buyers: List[Buyer]) -> Dict[str, List[int]]:
    """Ticket numbers handed to more than one order, per competition."""
    seen: Dict[str, set] = {}
    dups: Dict[str, List[int]] = {}
    for b in buyers:
        for cid, numbers in b.tickets.items():
            taken = seen.setdefault(cid, set())
            dups_here = [n for n in numbers if n in taken]
            if dups_here:
                dups.setdefault(cid, []).extend(dups_here)
            taken.update(numbers)
    return dups


def report(buyers: List[Buyer], elapsed_s: float) -> None:
    counts: Dict[str, int] = {}
    for b in buyers:
        counts[b.outcome] = counts.get(b.outcome, 0) + 1
    lat = sorted(b.resolve_s for b in buyers if b.outcome in FINAL)
    sold = sum(len(v) for b in buyers for v in b.tickets.values())

    print("\n=== Load Summary ===")
    print("  ".join(f"{k.upper()}: {v}" for k, v in sorted(counts.items())))
    print(f"Tickets allocated: {sold}")
    if lat:
        q = statistics.quantiles(lat, n=100) if len(lat) > 1 else lat * 99
        print(f"Resolution: avg {statistics.mean(lat):.3f}s  "
              f"p50 {q[49]:.3f}s  p90 {q[89]:.3f}s  p99 {q[98]:.3f}s")
    print(f"Wall time: {elapsed_s:.3f}s  "
          f"Throughput: {len(buyers) / elapsed_s:.1f} orders/s")
    for b in buyers:
        if b.err:
            print(f"  error: {b.err}")
            break
    dups = duplicates(buyers)
    if dups:
        print(f"!!! DUPLICATE TICKETS: {dups}")
    else:
        print("Uniqueness: OK (no number sold twice)")


async def run_load(base: str, total: int, concurrency: int,
                   competitions: List[str], max_qty: int, copies: int,
                   fail_rate: float, interval: float,
                   timeout: float) -> List[Buyer]:
    sem = asyncio.Semaphore(concurrency)
    limits = httpx.Limits(max_keepalive_connections=concurrency,
                          max_connections=concurrency)

    async with httpx.AsyncClient(limits=limits) as client:
        async def one() -> Buyer:
            async with sem:
                kind = "failed" if random.random() < fail_rate else "completed"
                return await buy(
                    client, base, Buyer(random_basket(competitions, max_qty)),
                    kind=kind, copies=copies,
                    interval=interval, timeout=timeout,
                )

        return list(await asyncio.gather(*(one() for _ in range(total))))


def main():
    ap = argparse.ArgumentParser(description="RaffleFans load client")
    ap.add_argument("--base", default="http://localhost:8000")
    ap.add_argument("--total", type=int, default=100,
                    help="orders to place")
    ap.add_argument("--concurrency", type=int, default=20)
    ap.add_argument("--competitions", default="comp-1,comp-2,comp-3",
                    help="comma-separated competition ids")
    ap.add_argument("--max-qty", type=int, default=5,
                    help="max tickets per basket line")
    ap.add_argument("--copies", type=int, default=2,
                    help="deliveries per payment event")
    ap.add_argument("--fail-rate", type=float, default=0.0,
                    help="fraction of payments that fail")
    ap.add_argument("--poll-interval", type=float, default=0.05)
    ap.add_argument("--poll-timeout", type=float, default=10.0)
    args = ap.parse_args()

    competitions = [c.strip() for c in args.competitions.split(",")
                    if c.strip()]
    if not competitions:
        ap.error("need at least one competition id")

    t0 = time.perf_counter()
    buyers = asyncio.run(run_load(
        args.base.rstrip("/"), args.total, max(1, args.concurrency),
        competitions, max(1, args.max_qty), max(1, min(10, args.copies)),
        args.fail_rate, args.poll_interval, args.poll_timeout,
    ))
    report(buyers, time.perf_counter() - t0)
    if duplicates(buyers):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
