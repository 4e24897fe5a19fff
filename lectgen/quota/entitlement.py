"""
Entitlement check shared by the read-only check and the atomic consume path.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .cycle import effective_count, is_stale
from .models import QuotaState, Tier, UserAccount, as_utc
from .policy import TierPolicyTable


@dataclass(frozen=True)
class Entitlement:
    """Outcome of evaluating one account at one instant."""
    allowed: bool
    effective_tier: Tier
    effective_count: int
    cap: Optional[int]  # None when unlimited
    unlimited: bool
    stale: bool
    state: QuotaState


def effective_tier(account: UserAccount, now: datetime) -> Tier:
    """
    Tier that applies to this check.

    A VIP whose subscription has expired is evaluated as FREE. The stored tier
    is left alone; reconciling it is the billing layer's job.
    """
    if account.tier == Tier.VIP and account.subscription_expires_at is not None:
        if as_utc(account.subscription_expires_at) <= as_utc(now):
            return Tier.FREE
    return account.tier


def evaluate_entitlement(
    account: UserAccount,
    now: datetime,
    policies: TierPolicyTable,
) -> Entitlement:
    """
    Decide whether account may perform one more billable action at now.

    Pure: does not modify account.
    """
    tier = effective_tier(account, now)
    policy = policies.policy_for(tier)
    stale = is_stale(account.cycle_anchor, now)
    count = effective_count(account, now)

    if policy.unlimited:
        return Entitlement(
            allowed=True,
            effective_tier=tier,
            effective_count=count,
            cap=None,
            unlimited=True,
            stale=stale,
            state=QuotaState.UNLIMITED,
        )

    cap = account.usage_cap
    allowed = count < cap
    return Entitlement(
        allowed=allowed,
        effective_tier=tier,
        effective_count=count,
        cap=cap,
        unlimited=False,
        stale=stale,
        state=QuotaState.UNDER_CAP if allowed else QuotaState.AT_CAP,
    )
