#!/usr/bin/env python3
"""
Sweep tickets whose payment is still pending.

Asks the payment gateway for the outcome of every ticket that has been pending
longer than the given age and settles the ones it knows about. Settlement goes
through the same path as callbacks, so running this alongside live traffic is
safe and running it twice changes nothing.
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.dependencies import build_services
from config import Settings, configure_logging


async def reconcile(older_than_minutes: float) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if not settings.mpesa_configured:
        print("M-Pesa is not configured; simulated payments settle on their own. Nothing to do.")
        return 0

    services = build_services(settings)
    try:
        settled = await services.orchestrator.reconcile_pending(timedelta(minutes=older_than_minutes))
    finally:
        await services.aclose()

    print("=" * 60)
    print("PENDING PAYMENT SWEEP")
    print("=" * 60)
    print(f"Settled tickets: {len(settled)}")
    for ticket in settled:
        print(f"  {ticket.ticket_id}: {ticket.payment_status.value}")
    print("=" * 60)
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Reconcile tickets still waiting for an M-Pesa result",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Settle everything pending for more than 10 minutes
  python reconcile_pending.py --older-than 10
        """
    )

    parser.add_argument(
        "--older-than",
        "-m",
        type=float,
        default=5.0,
        help="Only tickets pending for longer than this many minutes (default: 5)"
    )

    args = parser.parse_args()

    try:
        return asyncio.run(reconcile(args.older_than))

    except KeyboardInterrupt:
        print("\n\nSweep interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
