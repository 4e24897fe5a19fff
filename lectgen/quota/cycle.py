"""
Billing cycle resolution.

Cycles are calendar months in UTC. A stored counter whose anchor lies in an
earlier month is stale and counts as zero; the reset is applied lazily by the
next write to the account rather than by a background sweep.
"""

from datetime import datetime

from .models import UserAccount, as_utc


def cycle_start(moment: datetime) -> datetime:
    """First instant of the calendar month containing moment (UTC)."""
    return as_utc(moment).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_cycle_start(moment: datetime) -> datetime:
    """First instant of the calendar month after the one containing moment."""
    start = cycle_start(moment)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def is_stale(anchor: datetime, now: datetime) -> bool:
    """
    Whether now has moved into a later calendar month than anchor.

    An anchor in the future (clock skew) is treated as current.
    """
    anchor = as_utc(anchor)
    now = as_utc(now)
    return (now.year, now.month) > (anchor.year, anchor.month)


def effective_count(account: UserAccount, now: datetime) -> int:
    """Counter value that applies at now: zero once the cycle has rolled over."""
    if is_stale(account.cycle_anchor, now):
        return 0
    return account.usage_count


def roll_over(account: UserAccount, now: datetime) -> bool:
    """
    Apply a pending cycle reset to account in place.

    Must only be called on a snapshot held inside an account transaction.

    Returns:
        True if the counter was reset
    """
    if not is_stale(account.cycle_anchor, now):
        return False
    account.usage_count = 0
    account.cycle_anchor = cycle_start(now)
    return True
