#!/usr/bin/env python3
"""Replay an order through the solver.

Operator recovery tool for critical alerts: reads the order's current status
from the order engine and processes it exactly like an indexer event. A
settlement replay lands on the same withdrawal (external id
``<order_id>-solver``), so it never pays twice.

Usage:
    python scripts/replay_order.py <order_id> [<order_id> ...]
    python scripts/replay_order.py --wait 600 <order_id>
"""
import argparse
import asyncio
import logging
import sys

from solver.config import SolverConfig
from solver.exceptions import ConfigurationException
from solver.main import SolverApp, setup_logging


async def replay(app: SolverApp, order_ids, wait_seconds: float) -> int:
    failures = 0
    alerts_before = app.alerts.count()
    for order_id in order_ids:
        try:
            order = await app.ledger.get_order(order_id)
        except Exception as e:
            print(f"❌ Could not read order {order_id}: {e}")
            failures += 1
            continue
        print(f"▶ Order {order_id}: status {order.status}, solver {order.solver}")
        result = await app.processor.handle(order_id, order.status)
        print(f"   Result: {result}")

    if app.poller.active:
        print(f"⏳ Waiting up to {wait_seconds:.0f}s for {app.poller.active} withdrawal(s)...")
        await app.poller.wait(timeout=wait_seconds)
    await app.processor.stop(timeout=wait_seconds)
    await app.payment_client.close()

    raised = app.alerts.count() - alerts_before
    if raised:
        print(f"⚠️  {raised} critical alert(s) raised, see {app.alerts.path}")
        failures += 1
    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay orders through the solver")
    parser.add_argument("order_ids", nargs="+", help="Order ids to replay")
    parser.add_argument("--wait", type=float, default=300.0, help="Seconds to wait for withdrawals")
    args, rest = parser.parse_known_args()

    try:
        config = SolverConfig.load(rest)
        config.validate()
    except ConfigurationException as e:
        print(f"❌ {e}")
        return 2

    setup_logging(config.log_level)
    app = SolverApp(config, logger=logging.getLogger("replay"))
    return asyncio.run(replay(app, args.order_ids, args.wait))


if __name__ == "__main__":
    sys.exit(main())
