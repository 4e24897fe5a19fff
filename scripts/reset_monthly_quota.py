#!/usr/bin/env python3
"""
Monthly quota reset job.

Accounts roll over lazily on their next request, so this job is optional. Run
it from cron on the first of the month to zero stale counters up front, so
admin listings and stats show the new cycle before users come back.

Each account is reset in its own transaction; running this while the service
is serving traffic is safe.

Usage:
    python scripts/reset_monthly_quota.py [--dry-run] [--data-dir DATA_DIR]
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from manage_quota import build_manager
from lectgen.quota import QuotaError


def reset_monthly_quota(manager, dry_run: bool = False) -> dict:
    """
    Reset every account whose counter belongs to an earlier month.

    Args:
        manager: QuotaManager to operate on
        dry_run: If True, only report which accounts would be reset

    Returns:
        Result dict with the stale ids and the number of accounts reset
    """
    stale = manager.find_stale_accounts()
    result = {
        "stale_accounts": stale,
        "reset_accounts": 0,
        "dry_run": dry_run,
    }

    if not stale:
        print("ℹ️  No stale accounts found. Nothing to reset.")
        return result

    print(f"📂 Found {len(stale)} account(s) from a previous cycle")

    if dry_run:
        print("\n🔍 DRY RUN - No changes made")
        for uid in stale:
            print(f"   Would reset {uid}")
        return result

    result["reset_accounts"] = manager.rollover_all(actor="reset_monthly_quota")
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Zero the usage counters of accounts left over from a previous month"
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Show what would be done without making changes"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Path to data directory (default: paths.data_dir from config)"
    )

    args = parser.parse_args()

    print("🚀 Monthly Quota Reset")
    print("=" * 50)
    print(f"Data directory: {args.data_dir or '(from config)'}")
    print(f"Dry run: {args.dry_run}")
    print()

    try:
        result = reset_monthly_quota(build_manager(args.data_dir), args.dry_run)
    except QuotaError as e:
        print(f"\n❌ Reset failed: {e}")
        sys.exit(1)

    print()
    print("📊 Reset Summary:")
    print(f"   - Stale accounts: {len(result['stale_accounts'])}")
    print(f"   - Reset accounts: {result['reset_accounts']}")
    print("\n✅ Done!")


if __name__ == "__main__":
    main()
