"""
Data models for the quota management system.
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Optional, Union
from datetime import datetime, timezone

from .errors import InvalidTier

# Account ids: safe as file names and in URLs
UID_REGEX = r"^[A-Za-z0-9][A-Za-z0-9_.@+-]{0,127}$"


class Tier(Enum):
    """Subscription tiers for quota management."""
    FREE = "FREE"    # Capped monthly slide generations
    VIP = "VIP"      # Paid subscription, unlimited while not expired
    ADMIN = "ADMIN"  # Administrator with unlimited access

    @classmethod
    def parse(cls, value: Union["Tier", str]) -> "Tier":
        """
        Convert a tier tag into a Tier.

        Raises:
            InvalidTier: for anything outside FREE / VIP / ADMIN
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise InvalidTier(value)

    @property
    def is_unlimited(self) -> bool:
        return self in (Tier.VIP, Tier.ADMIN)


class QuotaState(Enum):
    """Computed quota state of an account; never persisted."""
    UNDER_CAP = "UNDER_CAP"
    AT_CAP = "AT_CAP"
    UNLIMITED = "UNLIMITED"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(str(value).replace('Z', '+00:00')))


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


@dataclass
class UserAccount:
    """Per-user quota record: tier, monthly counter, cap and cycle anchor."""
    uid: str
    tier: Tier
    usage_count: int
    usage_cap: int
    cycle_anchor: datetime
    subscription_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def copy(self) -> "UserAccount":
        return replace(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "uid": self.uid,
            "tier": self.tier.value,
            "usage_count": self.usage_count,
            "usage_cap": self.usage_cap,
            "cycle_anchor": _format_ts(self.cycle_anchor),
            "subscription_expires_at": _format_ts(self.subscription_expires_at),
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
            "version": self.version
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserAccount":
        return cls(
            uid=data["uid"],
            tier=Tier.parse(data["tier"]),
            usage_count=int(data.get("usage_count", 0)),
            usage_cap=int(data.get("usage_cap", 0)),
            cycle_anchor=_parse_ts(data["cycle_anchor"]),
            subscription_expires_at=_parse_ts(data.get("subscription_expires_at")),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            version=int(data.get("version", 0))
        )


@dataclass
class QuotaResult:
    """Result of a quota check or consume operation."""
    allowed: bool
    uid: str
    tier: Tier
    effective_tier: Tier
    state: QuotaState
    used: int  # Count within the current cycle after the operation
    cap: Optional[int] = None  # None when the effective tier is unlimited
    reason: Optional[str] = None  # "quota_exceeded" on denial
    message: Optional[str] = None  # User-facing message
    rolled_over: bool = False

    @property
    def remaining(self) -> Optional[int]:
        if self.cap is None:
            return None
        return max(0, self.cap - self.used)

    # Alias matching the try_increment contract {allowed, newCount}
    @property
    def new_count(self) -> int:
        return self.used

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "allowed": self.allowed,
            "uid": self.uid,
            "tier": self.tier.value,
            "effective_tier": self.effective_tier.value,
            "state": self.state.value,
            "used": self.used,
            "cap": self.cap,
            "remaining": self.remaining,
            "is_unlimited": self.cap is None,
            "reason": self.reason,
            "message": self.message
        }


@dataclass(frozen=True)
class TierPolicy:
    """Entitlement rules for a single tier."""
    tier: Tier
    unlimited: bool
    cap: Optional[int] = None  # Default cap for new accounts; None when unlimited
    priority: int = 0  # Higher is served first by callers that queue work

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "unlimited": self.unlimited,
            "cap": self.cap,
            "priority": self.priority
        }


@dataclass
class AccountListing:
    """Admin dashboard page of accounts."""
    accounts: list = field(default_factory=list)
    total: int = 0

    def to_dict(self) -> dict:
        return {"accounts": self.accounts, "total": self.total}
