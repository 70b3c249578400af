"""Run one deposit reconciliation pass and print the result counts."""

import argparse
import asyncio
import json

from chargeflow.common.db import SessionLocal
from chargeflow.common.logging import configure_logging
from chargeflow.services.booking.client import HttpBookingStore
from chargeflow.services.reconciliation.service import ReconciliationService


def main() -> None:
    """CLI entrypoint for manual reconciliation runs."""

    parser = argparse.ArgumentParser(description="Replay pending deposit bookkeeping writes.")
    parser.add_argument("--booking-store-url", default=None)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--max-attempts", type=int, default=None)
    args = parser.parse_args()

    configure_logging()
    service = ReconciliationService(
        SessionLocal,
        HttpBookingStore(base_url=args.booking_store_url),
        max_attempts=args.max_attempts,
    )
    counts = asyncio.run(service.run_once(limit=args.limit))
    print(json.dumps(counts, indent=2))


if __name__ == "__main__":
    main()
