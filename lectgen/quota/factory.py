"""
Factory for creating quota management components.
"""

from pathlib import Path
from typing import Callable, Optional
from datetime import datetime

from .manager import QuotaManager
from .policy import TierPolicyTable, DEFAULT_FREE_MONTHLY_CAP
from .routes import create_quota_routes, create_quota_admin_routes
from .settings import QuotaSettings
from .store import AccountStore


def create_quota_module(
    accounts_dir: Path,
    user_service,
    free_monthly_cap: int = DEFAULT_FREE_MONTHLY_CAP,
    max_conflict_retries: int = 3,
    lock_timeout_seconds: float = 5.0,
    event_tracker=None,
    settings_file: Optional[Path] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> dict:
    """
    Create quota management module.

    Args:
        accounts_dir: Directory for account files
        user_service: UserService used by the routes to identify callers
        free_monthly_cap: Default monthly cap for FREE accounts
        max_conflict_retries: Retries on concurrent write conflicts
        lock_timeout_seconds: Wait limit for an account lock
        event_tracker: Optional audit sink
        settings_file: Optional JSON file for settings changed at runtime
        clock: Optional time source (tests)

    Returns:
        Dictionary with:
        - manager: QuotaManager instance
        - policies: TierPolicyTable instance
        - store: AccountStore instance
        - settings: QuotaSettings instance or None
        - blueprint: caller-facing routes
        - admin_blueprint: admin override routes
    """
    policies = TierPolicyTable(free_monthly_cap=free_monthly_cap)
    store = AccountStore(accounts_dir, lock_timeout=lock_timeout_seconds)
    settings = QuotaSettings(settings_file, lock_timeout=lock_timeout_seconds) if settings_file else None

    manager = QuotaManager(
        store=store,
        policies=policies,
        event_tracker=event_tracker,
        settings=settings,
        max_conflict_retries=max_conflict_retries,
        clock=clock,
    )

    return {
        "manager": manager,
        "policies": policies,
        "store": store,
        "settings": settings,
        "blueprint": create_quota_routes(manager, user_service),
        "admin_blueprint": create_quota_admin_routes(manager, user_service),
    }
