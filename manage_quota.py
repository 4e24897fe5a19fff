#!/usr/bin/env python3
"""
Quota administration script.

Operates directly on the account store, for operators without access to the
admin API:
- show / list accounts and their quota state
- register accounts
- override caps, reset counters, change tiers
- change the FREE default cap for new and existing FREE accounts
- aggregate stats and the monthly rollover

Every change goes through the same QuotaManager the service uses and takes
the same per-account lock files, so it is safe to run while the service is up.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from config_manager import ConfigManager
from lectgen.event_tracking import EventTracker
from lectgen.main import QUOTA_SETTINGS_FILE, resolve_data_dirs
from lectgen.quota import AccountStore, QuotaError, QuotaManager, Tier, TierPolicyTable
from lectgen.quota.settings import QuotaSettings
from lectgen.quota.models import as_utc

# Set up logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

CLI_ACTOR = "cli"


def build_manager(data_dir: Optional[Path] = None, config: Optional[ConfigManager] = None) -> QuotaManager:
    """Create a QuotaManager over the configured data directory."""
    config = config or ConfigManager()
    quota_config = config.get_quota_config()
    dirs = resolve_data_dirs(config.get_paths_config(), data_dir)

    return QuotaManager(
        store=AccountStore(dirs["accounts"], lock_timeout=quota_config.lock_timeout_seconds),
        policies=TierPolicyTable(free_monthly_cap=quota_config.free_monthly_cap),
        event_tracker=EventTracker(dirs["events"], lock_timeout=quota_config.lock_timeout_seconds),
        settings=QuotaSettings(dirs["data"] / QUOTA_SETTINGS_FILE, lock_timeout=quota_config.lock_timeout_seconds),
        max_conflict_retries=quota_config.max_conflict_retries,
    )


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO-8601 timestamp: {value}")


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Quota administration script")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data directory (default: paths.data_dir from config)")

    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Show an account and its quota")
    show.add_argument("uid")

    listing = sub.add_parser("list", help="List accounts")
    listing.add_argument("--limit", type=int, default=50)
    listing.add_argument("--offset", type=int, default=0)

    register = sub.add_parser("register", help="Register a new account")
    register.add_argument("uid")
    register.add_argument("--tier", default="FREE", help="FREE, VIP or ADMIN")
    register.add_argument("--cap", type=int, default=None, help="Monthly cap (default: FREE policy cap)")
    register.add_argument("--expires", type=_parse_expiry, default=None,
                          help="VIP subscription end (ISO-8601)")

    set_cap = sub.add_parser("set-cap", help="Override an account's monthly cap")
    set_cap.add_argument("uid")
    set_cap.add_argument("cap", type=int)

    reset = sub.add_parser("reset", help="Reset an account's usage counter")
    reset.add_argument("uid")

    set_tier = sub.add_parser("set-tier", help="Change an account's tier")
    set_tier.add_argument("uid")
    set_tier.add_argument("tier", help="FREE, VIP or ADMIN")
    set_tier.add_argument("--expires", type=_parse_expiry, default=None,
                          help="VIP subscription end (ISO-8601)")

    free_cap = sub.add_parser("set-free-cap", help="Change the FREE default cap and re-cap FREE accounts")
    free_cap.add_argument("cap", type=int)

    sub.add_parser("stats", help="Aggregate quota statistics")

    rollover = sub.add_parser("rollover", help="Apply pending monthly resets")
    rollover.add_argument("--dry-run", action="store_true",
                          help="List stale accounts without resetting them")

    return parser


def run(args: argparse.Namespace, manager: QuotaManager) -> int:
    """Execute one command; returns the process exit code."""
    try:
        if args.command == "show":
            _print_json({
                "account": manager.get_account(args.uid).to_dict(),
                "quota": manager.get_quota_info(args.uid),
            })
        elif args.command == "list":
            _print_json(manager.list_accounts(limit=args.limit, offset=args.offset).to_dict())
        elif args.command == "register":
            account = manager.register_account(
                args.uid,
                tier=Tier.parse(args.tier),
                cap=args.cap,
                subscription_expires_at=args.expires,
                actor=CLI_ACTOR,
            )
            _print_json(account.to_dict())
        elif args.command == "set-cap":
            _print_json(manager.set_cap(args.uid, args.cap, actor=CLI_ACTOR).to_dict())
        elif args.command == "reset":
            _print_json(manager.reset_counter(args.uid, actor=CLI_ACTOR).to_dict())
        elif args.command == "set-tier":
            account = manager.change_tier(
                args.uid,
                Tier.parse(args.tier),
                subscription_expires_at=args.expires,
                actor=CLI_ACTOR,
            )
            _print_json(account.to_dict())
        elif args.command == "set-free-cap":
            _print_json(manager.set_default_free_cap(args.cap, actor=CLI_ACTOR))
        elif args.command == "stats":
            _print_json(manager.get_all_usage_stats())
        elif args.command == "rollover":
            if args.dry_run:
                _print_json({"dry_run": True, "stale_accounts": manager.find_stale_accounts()})
            else:
                _print_json({"dry_run": False, "reset_accounts": manager.rollover_all(actor=CLI_ACTOR)})
    except (QuotaError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    manager = build_manager(args.data_dir)
    return run(args, manager)


if __name__ == "__main__":
    sys.exit(main())
