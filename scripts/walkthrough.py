#!/usr/bin/env python3
"""Walk one member through the wallet, ride board and scooty rentals.

Uses the durable store when ``CAMPUSPAY_FIRESTORE_*`` is configured and
reachable, the seeded in-memory store otherwise, and prints what the
member would see after each step.

Usage
-----
::

    export CAMPUSPAY_FIRESTORE_PROJECT_ID="campus-pay"
    export CAMPUSPAY_FIRESTORE_API_KEY="AIza..."
    python scripts/walkthrough.py --uid u1 --email ana@campus.edu

Options::

    --uid UID            Member id (default: demo-member)
    --email EMAIL        Member email
    --top-up AMOUNT      Top up the wallet first
    --rent-hours HOURS   Rent the cheapest available scooty for HOURS
    --json               Output as machine-readable JSON
    --verbose / -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from campuspay import CampusConfig, CampusPayError, CampusSession, Identity, LocalIdentityProvider  # noqa: E402


async def run(args: argparse.Namespace) -> dict[str, Any]:
    identity = Identity(uid=args.uid, email=args.email)
    report: dict[str, Any] = {"member": identity.model_dump(mode="json")}

    async with CampusSession(CampusConfig.from_env(), LocalIdentityProvider(identity)) as session:
        report["backend"] = str(session.backend)
        if args.top_up:
            await session.top_up(args.top_up)

        scooties = await session.available_scooties()
        report["available_scooties"] = [s.model_dump(mode="json") for s in scooties]
        if args.rent_hours and scooties:
            report["rented"] = await session.rent_scooty(scooties[0].id, args.rent_hours)

        report["open_ride_requests"] = [r.model_dump(mode="json") for r in await session.open_ride_requests()]
        report["my_rides"] = [r.model_dump(mode="json") for r in await session.my_rides()]
        report["transactions"] = [t.model_dump(mode="json") for t in await session.transactions()]
        report["balance"] = str(await session.balance())
    return report


def _print_human(report: dict[str, Any]) -> None:
    print(f"Backend: {report['backend']}")
    print(f"Balance: {report['balance']}")
    print("Transactions:")
    for tx in report["transactions"]:
        print(f"  {tx['timestamp']}  {tx['kind']:<8} {tx['amount']:>10}  {tx['description']}")
    print("Available scooties:")
    for s in report["available_scooties"]:
        print(f"  {s['model']:<16} {s['price_per_hour']}/h  ({s['owner_name']})")
    if "rented" in report:
        print(f"Rented cheapest scooty: {report['rented']}")
    print("Open ride requests:")
    for r in report["open_ride_requests"]:
        print(f"  {r['pickup']} -> {r['dropoff']}  ({r['rider_name']})")


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk a member through campuspay.")
    parser.add_argument("--uid", default="demo-member", help="Member id")
    parser.add_argument("--email", default="demo@campus.edu", help="Member email")
    parser.add_argument("--top-up", help="Top up the wallet by AMOUNT first")
    parser.add_argument("--rent-hours", help="Rent the cheapest available scooty for HOURS")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        report = asyncio.run(run(args))
    except CampusPayError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.json_mode:
        print(json.dumps(report, indent=2))
    else:
        _print_human(report)


if __name__ == "__main__":
    main()
