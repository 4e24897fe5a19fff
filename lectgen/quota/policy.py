"""
Tier policy table: static entitlement rules per subscription tier.
"""

from typing import Dict, Union

from .errors import InvalidTier
from .models import Tier, TierPolicy

DEFAULT_FREE_MONTHLY_CAP = 5


class TierPolicyTable:
    """
    Maps each tier to its entitlement rules.

    FREE accounts are capped per calendar month; VIP and ADMIN are unlimited.
    Lookups for an unknown tier raise InvalidTier instead of falling back to
    either a permissive or a restrictive policy.
    """

    def __init__(self, free_monthly_cap: int = DEFAULT_FREE_MONTHLY_CAP):
        self._policies: Dict[Tier, TierPolicy] = {
            Tier.VIP: TierPolicy(tier=Tier.VIP, unlimited=True, priority=1),
            Tier.ADMIN: TierPolicy(tier=Tier.ADMIN, unlimited=True, priority=2),
        }
        self.set_free_monthly_cap(free_monthly_cap)

    def set_free_monthly_cap(self, free_monthly_cap: int) -> None:
        """Change the cap given to newly registered FREE accounts."""
        if isinstance(free_monthly_cap, bool) or not isinstance(free_monthly_cap, int) or free_monthly_cap < 0:
            raise ValueError(f"free_monthly_cap must be a non-negative integer, got {free_monthly_cap!r}")
        self.free_monthly_cap = free_monthly_cap
        self._policies[Tier.FREE] = TierPolicy(tier=Tier.FREE, unlimited=False, cap=free_monthly_cap, priority=0)

    def policy_for(self, tier: Union[Tier, str]) -> TierPolicy:
        """
        Get the policy for a tier.

        Args:
            tier: Tier member or tier tag string

        Raises:
            InvalidTier: if the tier is not known
        """
        policy = self._policies.get(Tier.parse(tier))
        if policy is None:
            raise InvalidTier(tier)
        return policy

    def default_cap(self) -> int:
        """Cap assigned to newly registered accounts."""
        return self.free_monthly_cap

    def to_dict(self) -> dict:
        return {tier.value: policy.to_dict() for tier, policy in self._policies.items()}
