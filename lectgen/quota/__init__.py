"""
Quota management module for subscription-tier access control.
Supports FREE (monthly cap), VIP and ADMIN (unlimited) tiers.
"""

from .errors import (
    QuotaError,
    InvalidTier,
    AccountNotFound,
    AccountExists,
    ConcurrencyConflict,
    StorageUnavailable,
    InvalidAccountId,
)
from .models import Tier, QuotaState, QuotaResult, UserAccount, TierPolicy
from .policy import TierPolicyTable
from .store import AccountStore
from .manager import QuotaManager
from .decorators import quota_required

__all__ = [
    "QuotaError",
    "InvalidTier",
    "AccountNotFound",
    "AccountExists",
    "ConcurrencyConflict",
    "StorageUnavailable",
    "InvalidAccountId",
    "Tier",
    "QuotaState",
    "QuotaResult",
    "UserAccount",
    "TierPolicy",
    "TierPolicyTable",
    "AccountStore",
    "QuotaManager",
    "quota_required",
]
