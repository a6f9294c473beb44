"""
Reconcile prizes whose gift was sent but whose ledger row was not finalized,
and optionally prune old settled prize history.

Usage:
    python scripts/reconcile_prizes.py
    python scripts/reconcile_prizes.py --cleanup-days 7
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path so we can import from services
sys.path.insert(0, str(Path(__file__).parent.parent))

from repositories.client import configure_logging, load_settings
from services.context import build_context
from services.reconciliation_service import ReconciliationService


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Finalize sent prizes in the prize ledger and prune local history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Finalize prizes stuck after a successful gift dispatch
  python scripts/reconcile_prizes.py

  # Also drop sent/failed history older than 7 days
  python scripts/reconcile_prizes.py --cleanup-days 7
        """
    )
    parser.add_argument(
        "--cleanup-days",
        type=int,
        default=None,
        help="Delete settled local prize records older than this many days"
    )
    args = parser.parse_args()

    try:
        settings = load_settings()
    except RuntimeError as e:
        print(f"[ERROR] {e}")
        return 1

    configure_logging(settings.log_level)
    context = build_context(settings)

    try:
        print("=" * 60)
        print("PRIZE RECONCILIATION")
        print("=" * 60)

        report = ReconciliationService(context).sweep()
        print(f"Examined:   {report.examined}")
        print(f"Finalized:  {len(report.finalized)}")
        for prize_id in report.finalized:
            print(f"  [OK] {prize_id}")
        print(f"Unresolved: {len(report.unresolved)}")
        for prize_id in report.unresolved:
            print(f"  [PENDING] {prize_id}")

        if args.cleanup_days is not None:
            cleaned = context.catalog.cleanup(older_than_days=args.cleanup_days)
            print(f"\nCleaned up {cleaned} prize records older than {args.cleanup_days} days")

        print("=" * 60)
        return 0 if not report.unresolved else 2
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
