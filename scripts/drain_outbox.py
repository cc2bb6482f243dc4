#!/usr/bin/env python3
"""
Outbox Relay Script

Delivers pending buyback notifications from the outbox table. Run it once
from cron, or keep it running with --loop.

Usage:
    python drain_outbox.py
    python drain_outbox.py --loop --interval 10
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.config import load_settings
from domain.time import SystemClock
from repositories.client import create_supabase_client
from repositories.outbox_repository import SupabaseOutboxStore
from services.notifications import LoggingNotifier, OutboxRelay


def build_relay(batch_size: int | None = None) -> OutboxRelay:
    settings = load_settings()
    client = create_supabase_client(
        settings.supabase_url,
        settings.supabase_key,
        timeout_seconds=settings.db_timeout_seconds,
    )
    return OutboxRelay(
        SupabaseOutboxStore(client),
        LoggingNotifier(),
        SystemClock(),
        batch_size=batch_size or settings.outbox_batch_size,
        max_attempts=settings.outbox_max_attempts,
    )


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Deliver pending buyback notifications from the outbox",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Deliver one batch and exit
  python drain_outbox.py

  # Keep draining every 10 seconds
  python drain_outbox.py --loop --interval 10
        """
    )

    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep draining until interrupted"
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds to wait between drains in --loop mode (default: 5)"
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Events per drain (default: OUTBOX_BATCH_SIZE)"
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        relay = build_relay(args.batch_size)

        while True:
            report = relay.drain_once()
            print(f"Fetched: {report.fetched}  Delivered: {report.delivered}  Failed: {report.failed}")
            if not args.loop:
                return 0 if report.failed == 0 else 1
            time.sleep(args.interval)

    except KeyboardInterrupt:
        print("\n\nRelay interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
