#!/usr/bin/env python3
"""
Smoke-check a running DeFi Rates server (start it with run_server.py first).
"""

import sys

import httpx

BASE_URL = "http://localhost:8080"


def check_health(client: httpx.Client) -> bool:
    print("🔍 Checking /health...")
    try:
        response = client.get("/health", timeout=5)
    except httpx.ConnectError:
        print("❌ Health: FAILED - Cannot connect to server")
        return False
    if response.status_code != 200:
        print(f"❌ Health: FAILED (Status: {response.status_code})")
        return False
    print(f"✅ Health: PASSED {response.json()}")
    return True


def check_yields(client: httpx.Client) -> list:
    print("\n🔍 Checking /api/yields...")
    response = client.get("/api/yields", params={"sort_by": "apy", "sort_order": "desc"}, timeout=10)
    if response.status_code != 200:
        print(f"❌ Yields: FAILED (Status: {response.status_code})")
        return []
    rates = response.json()
    print(f"✅ Yields: PASSED, {len(rates)} rates")
    if rates:
        top = rates[0]
        print(f"   Top: {top['protocol_name']} {top['asset']} on {top['chain']} - {top['apy']:.2f}% APY")
    return rates


def check_resync(client: httpx.Client, rates: list) -> bool:
    print("\n🔍 Checking /api/rates re-sync...")
    ids = [str(r["id"]) for r in rates[:5]] + ["999999999"]
    response = client.get("/api/rates", params={"ids": ",".join(ids)}, timeout=10)
    if response.status_code != 200:
        print(f"❌ Re-sync: FAILED (Status: {response.status_code})")
        return False
    print(f"✅ Re-sync: PASSED, asked for {len(ids)} ids, got {len(response.json())} rows")
    return True


def check_events(client: httpx.Client) -> bool:
    print("\n🔍 Checking /events...")
    with client.stream("GET", "/events", timeout=10) as response:
        for line in response.iter_lines():
            if line.startswith("event:"):
                ok = line.strip() == "event: connected"
                print(("✅" if ok else "❌") + f" Events: first event '{line.strip()}'")
                return ok
    print("❌ Events: stream closed without an event")
    return False


def main() -> int:
    with httpx.Client(base_url=BASE_URL) as client:
        if not check_health(client):
            return 1
        rates = check_yields(client)
        passed = check_resync(client, rates) and check_events(client)
    print("\n🎉 All checks passed" if passed else "\n⚠️  Some checks failed")
    return 0 if passed else 1


if __name__ == "__main__":
    sys.exit(main())
