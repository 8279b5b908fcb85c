"""Protean Engine runner for the Marketplace domain.

Starts the Engine (event handlers when event processing is async) alongside
the housekeeping loop:
- Payment timeout sweep: expires attempts whose callback never arrived
- Receipt retention: purges webhook receipts past the retention window

Usage:
    python src/server.py                 # Engine + housekeeping loop
    python src/server.py --sweep-only    # Only the housekeeping loop
    python src/server.py --once          # One sweep and purge, then exit
"""

import argparse
import asyncio

import structlog
from protean.server.engine import Engine

from marketplace.config import get_settings
from marketplace.domain import marketplace

logger = structlog.get_logger(__name__)


def housekeeping() -> None:
    """Run one timeout sweep and one receipt purge."""
    from marketplace.payment.retention import PurgeWebhookReceipts
    from marketplace.payment.sweep import sweep_stale_payments
    from marketplace.shared import dispatch

    with marketplace.domain_context():
        report = sweep_stale_payments()
        purged = dispatch.process(PurgeWebhookReceipts())
    logger.info(
        "Housekeeping finished",
        expired=len(report.expired),
        resolved=len(report.resolved),
        skipped=len(report.skipped),
        receipts_purged=purged,
    )


async def housekeeping_loop(interval: float) -> None:
    while True:
        try:
            await asyncio.to_thread(housekeeping)
        except Exception:
            # Keep the loop alive; the next tick retries whatever failed
            logger.exception("Housekeeping run failed")
        await asyncio.sleep(interval)


async def run(sweep_only: bool) -> None:
    interval = get_settings().sweep_interval_seconds
    tasks = [housekeeping_loop(interval)]
    if not sweep_only:
        tasks.append(Engine(marketplace).run())
    await asyncio.gather(*tasks)


def main():
    parser = argparse.ArgumentParser(description="Marketplace Engine runner")
    parser.add_argument(
        "--sweep-only",
        action="store_true",
        help="Run only the payment sweep and receipt purge loop",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one sweep and purge, then exit",
    )
    args = parser.parse_args()

    marketplace.init()
    if args.once:
        housekeeping()
        return

    asyncio.run(run(args.sweep_only))


if __name__ == "__main__":
    main()
