"""
Quota manager: entitlement checks, atomic consumption and admin overrides.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, TypeVar, Union

from .cycle import cycle_start, effective_count, is_stale, next_cycle_start, roll_over
from .entitlement import Entitlement, evaluate_entitlement
from .errors import ConcurrencyConflict
from .models import (
    AccountListing,
    QuotaResult,
    QuotaState,
    Tier,
    UserAccount,
    as_utc,
    utcnow,
)
from .policy import TierPolicyTable
from .store import AccountStore
from ..event_tracking.event_types import EventType

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUOTA_EXCEEDED = "quota_exceeded"


class QuotaManager:
    """
    Enforces monthly slide-generation quotas per subscription tier.

    Tier behavior:
    - FREE: capped per calendar month, counter resets lazily on the first
      write of a new month
    - VIP: unlimited while the subscription has not expired, FREE otherwise
    - ADMIN: unlimited

    All writes go through AccountStore.transaction so that the check and the
    increment for one account are indivisible.
    """

    def __init__(
        self,
        store: AccountStore,
        policies: TierPolicyTable,
        event_tracker=None,
        settings=None,
        max_conflict_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize QuotaManager.

        Args:
            store: Account persistence with transactional writes
            policies: Tier policy table
            event_tracker: Optional audit sink with track_event(uid, type, meta, ts)
            settings: Optional QuotaSettings holding the runtime FREE default cap
            max_conflict_retries: Retries after a ConcurrencyConflict before giving up
            retry_backoff_seconds: Base delay between retries (grows linearly)
            clock: Returns the current time; defaults to UTC wall clock
        """
        self.store = store
        self.policies = policies
        self.event_tracker = event_tracker
        self.settings = settings
        self.max_conflict_retries = max(0, max_conflict_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return as_utc(self._clock())

    # =====================
    # Account lifecycle
    # =====================

    def register_account(
        self,
        uid: str,
        tier: Union[Tier, str] = Tier.FREE,
        cap: Optional[int] = None,
        subscription_expires_at: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> UserAccount:
        """
        Create a new account with an empty counter for the current month.

        Raises:
            InvalidTier: if tier is not known
            InvalidAccountId: if uid cannot be stored
            AccountExists: if uid is already registered
        """
        tier = Tier.parse(tier)
        self.policies.policy_for(tier)
        if cap is None:
            cap = self.default_free_cap()
        _validate_cap(cap)

        now = self.now()
        account = UserAccount(
            uid=uid,
            tier=tier,
            usage_count=0,
            usage_cap=cap,
            cycle_anchor=now,
            subscription_expires_at=as_utc(subscription_expires_at) if subscription_expires_at else None,
            created_at=now,
            updated_at=now,
        )
        stored = self.store.create(account)

        logger.info(f"Registered account {uid}: tier={tier.value}, cap={cap}")
        self._audit(uid, EventType.ACCOUNT_CREATED, now, {
            "actor": actor,
            "tier": tier.value,
            "cap": cap,
        })
        return stored

    def get_account(self, uid: str) -> UserAccount:
        return self.store.get(uid)

    # =====================
    # Entitlement
    # =====================

    def check_only(self, uid: str) -> QuotaResult:
        """
        Evaluate the entitlement without consuming anything.

        Read-only: a pending cycle reset is reported but not persisted.
        """
        now = self.now()
        account = self.store.get(uid)
        entitlement = evaluate_entitlement(account, now, self.policies)
        logger.debug(f"Quota check: uid={uid}, allowed={entitlement.allowed}, "
                     f"used={entitlement.effective_count}, cap={entitlement.cap}")
        return self._build_result(account, entitlement, entitlement.allowed, entitlement.effective_count)

    def can_perform_action(self, uid: str) -> bool:
        """Whether uid may perform one more billable action right now."""
        return self.check_only(uid).allowed

    def try_increment(self, uid: str) -> QuotaResult:
        """
        Check the entitlement and consume one unit in a single transaction.

        On denial nothing is written. Raises ConcurrencyConflict only after
        the configured retries are exhausted.
        """
        def _consume() -> QuotaResult:
            now = self.now()
            with self.store.transaction(uid) as txn:
                account = txn.account
                entitlement = evaluate_entitlement(account, now, self.policies)
                if not entitlement.allowed:
                    return self._build_result(account, entitlement, False, entitlement.effective_count)

                rolled_over = roll_over(account, now)
                account.usage_count += 1
                account.updated_at = now
                result = self._build_result(account, entitlement, True, account.usage_count)
                result.rolled_over = rolled_over
            return result

        result = self._with_retries("try_increment", uid, _consume)

        now = self.now()
        if result.rolled_over:
            self._audit(uid, EventType.CYCLE_ROLLOVER, now, {"trigger": "consume"})
        if result.allowed:
            logger.info(f"Quota consumed: uid={uid}, tier={result.effective_tier.value}, "
                        f"used={result.used}, cap={result.cap}")
        else:
            logger.info(f"Quota denied: uid={uid}, used={result.used}, cap={result.cap}")
        self._audit(
            uid,
            EventType.QUOTA_ALLOWED if result.allowed else EventType.QUOTA_DENIED,
            now,
            {
                "decision": "allowed" if result.allowed else "denied",
                "count": result.used,
                "cap": result.cap,
                "tier": result.effective_tier.value,
            },
        )
        return result

    # =====================
    # Admin methods
    # =====================

    def set_cap(self, uid: str, new_cap: int, actor: Optional[str] = None) -> UserAccount:
        """
        Set the monthly cap of an account.

        The cap is stored for every tier but only enforced while the account
        is evaluated as FREE.
        """
        _validate_cap(new_cap)

        def _apply() -> tuple:
            now = self.now()
            with self.store.transaction(uid) as txn:
                previous = txn.account.usage_cap
                txn.account.usage_cap = new_cap
                txn.account.updated_at = now
                account = txn.account
            return account, previous, now

        account, previous, now = self._with_retries("set_cap", uid, _apply)
        logger.info(f"Admin override set_cap: uid={uid}, cap {previous} -> {new_cap}, actor={actor}")
        self._audit(uid, EventType.CAP_SET, now, {
            "actor": actor,
            "previous_cap": previous,
            "cap": new_cap,
            "count": account.usage_count,
            "tier": account.tier.value,
        })
        return account

    def reset_counter(self, uid: str, actor: Optional[str] = None) -> UserAccount:
        """Zero the counter and restart the cycle at now, for any tier."""
        def _apply() -> tuple:
            now = self.now()
            with self.store.transaction(uid) as txn:
                previous = txn.account.usage_count
                txn.account.usage_count = 0
                txn.account.cycle_anchor = now
                txn.account.updated_at = now
                account = txn.account
            return account, previous, now

        account, previous, now = self._with_retries("reset_counter", uid, _apply)
        logger.info(f"Admin override reset_counter: uid={uid}, count {previous} -> 0, actor={actor}")
        self._audit(uid, EventType.COUNTER_RESET, now, {
            "actor": actor,
            "previous_count": previous,
            "count": 0,
            "tier": account.tier.value,
        })
        return account

    def change_tier(
        self,
        uid: str,
        tier: Union[Tier, str],
        subscription_expires_at: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> UserAccount:
        """
        Move an account to another tier.

        The counter is kept, so a VIP moved back to FREE lands under or at
        cap depending on what it has already used this month.
        """
        tier = Tier.parse(tier)
        self.policies.policy_for(tier)
        expires_at = as_utc(subscription_expires_at) if subscription_expires_at else None

        def _apply() -> tuple:
            now = self.now()
            with self.store.transaction(uid) as txn:
                previous = txn.account.tier
                txn.account.tier = tier
                txn.account.subscription_expires_at = expires_at
                txn.account.updated_at = now
                account = txn.account
            return account, previous, now

        account, previous, now = self._with_retries("change_tier", uid, _apply)
        logger.info(f"Tier change: uid={uid}, {previous.value} -> {tier.value}, actor={actor}")
        self._audit(uid, EventType.TIER_CHANGED, now, {
            "actor": actor,
            "previous_tier": previous.value,
            "tier": tier.value,
            "subscription_expires_at": account.to_dict()["subscription_expires_at"],
            "count": account.usage_count,
        })
        return account

    def default_free_cap(self) -> int:
        """Cap given to new FREE accounts, picking up changes made by other processes."""
        if self.settings is not None:
            stored = self.settings.get_free_monthly_cap()
            if stored is not None and stored != self.policies.free_monthly_cap:
                self.policies.set_free_monthly_cap(stored)
        return self.policies.default_cap()

    def set_default_free_cap(self, new_cap: int, actor: Optional[str] = None) -> dict:
        """
        Change the FREE default cap and re-cap every stored FREE account.

        Accounts whose stored tier is VIP or ADMIN keep their cap. Each
        account is updated in its own transaction.

        Returns:
            Dict with previous_cap, cap and the ids of the updated accounts
        """
        _validate_cap(new_cap)
        previous_default = self.default_free_cap()
        if self.settings is not None:
            self.settings.set_free_monthly_cap(new_cap)
        self.policies.set_free_monthly_cap(new_cap)

        updated = []
        for uid in self.store.list_ids():
            def _apply(uid=uid) -> Optional[tuple]:
                now = self.now()
                with self.store.transaction(uid) as txn:
                    if txn.account.tier != Tier.FREE or txn.account.usage_cap == new_cap:
                        return None
                    previous = txn.account.usage_cap
                    txn.account.usage_cap = new_cap
                    txn.account.updated_at = now
                    count = txn.account.usage_count
                return previous, count, now

            change = self._with_retries("set_default_free_cap", uid, _apply)
            if change is None:
                continue
            previous, count, now = change
            updated.append(uid)
            self._audit(uid, EventType.CAP_SET, now, {
                "actor": actor,
                "trigger": "default_free_cap",
                "previous_cap": previous,
                "cap": new_cap,
                "count": count,
                "tier": Tier.FREE.value,
            })

        logger.info(f"FREE default cap {previous_default} -> {new_cap}, "
                    f"re-capped {len(updated)} account(s), actor={actor}")
        return {
            "previous_cap": previous_default,
            "cap": new_cap,
            "updated_accounts": updated,
        }

    def rollover_all(self, actor: Optional[str] = None) -> int:
        """
        Apply pending monthly resets to every stale account.

        Each account is handled in its own transaction, so concurrent
        consumption stays atomic while the batch runs.

        Returns:
            Number of accounts that were reset
        """
        reset = 0
        for uid in self.store.list_ids():
            def _apply(uid=uid) -> bool:
                now = self.now()
                with self.store.transaction(uid) as txn:
                    rolled = roll_over(txn.account, now)
                    if rolled:
                        txn.account.updated_at = now
                return rolled

            if self._with_retries("rollover", uid, _apply):
                reset += 1
                self._audit(uid, EventType.CYCLE_ROLLOVER, self.now(), {
                    "trigger": "batch",
                    "actor": actor,
                })

        logger.info(f"Monthly rollover reset {reset} account(s)")
        return reset

    def find_stale_accounts(self) -> List[str]:
        """Ids of accounts whose stored counter belongs to an earlier month."""
        now = self.now()
        stale = []
        for uid in self.store.list_ids():
            if is_stale(self.store.get(uid).cycle_anchor, now):
                stale.append(uid)
        return stale

    # =====================
    # Display helpers
    # =====================

    def get_quota_info(self, uid: str) -> dict:
        """
        Get detailed quota information for display.

        Returns dict with tier, effective_tier, is_unlimited, used, cap,
        remaining, state, cycle_start, next_reset and a message.
        """
        now = self.now()
        account = self.store.get(uid)
        entitlement = evaluate_entitlement(account, now, self.policies)
        result = self._build_result(account, entitlement, entitlement.allowed, entitlement.effective_count)

        info = result.to_dict()
        info.pop("allowed")
        info.pop("reason")
        info.update({
            "can_generate": entitlement.allowed,
            "stored_cap": account.usage_cap,
            "cycle_start": cycle_start(now).isoformat(),
            "next_reset": None if entitlement.unlimited else next_cycle_start(now).isoformat(),
            "subscription_expires_at": account.to_dict()["subscription_expires_at"],
        })
        return info

    def list_accounts(self, limit: int = 50, offset: int = 0) -> AccountListing:
        """Page through accounts with their current quota summary."""
        now = self.now()
        ids = self.store.list_ids()
        rows = []
        for uid in ids[offset:offset + limit]:
            account = self.store.get(uid)
            entitlement = evaluate_entitlement(account, now, self.policies)
            row = account.to_dict()
            row.update({
                "effective_tier": entitlement.effective_tier.value,
                "used": entitlement.effective_count,
                "state": entitlement.state.value,
            })
            rows.append(row)
        return AccountListing(accounts=rows, total=len(ids))

    def get_all_usage_stats(self) -> dict:
        """Get aggregate quota statistics for the admin dashboard."""
        self.default_free_cap()
        now = self.now()
        by_tier = {tier.value: 0 for tier in Tier}
        by_state = {state.value: 0 for state in QuotaState}
        used_this_cycle = 0
        expired_vip = 0

        for uid in self.store.list_ids():
            account = self.store.get(uid)
            entitlement = evaluate_entitlement(account, now, self.policies)
            by_tier[account.tier.value] += 1
            by_state[entitlement.state.value] += 1
            used_this_cycle += effective_count(account, now)
            if account.tier == Tier.VIP and entitlement.effective_tier == Tier.FREE:
                expired_vip += 1

        return {
            "cycle_start": cycle_start(now).isoformat(),
            "total_accounts": sum(by_tier.values()),
            "accounts_by_tier": by_tier,
            "accounts_by_state": by_state,
            "expired_vip_accounts": expired_vip,
            "used_this_cycle": used_this_cycle,
            "policies": self.policies.to_dict(),
        }

    # =====================
    # Private helper methods
    # =====================

    def _with_retries(self, operation: str, uid: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except ConcurrencyConflict as e:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    logger.error(f"{operation} for {uid} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"{operation} for {uid} hit a conflict, retrying "
                               f"({attempt}/{self.max_conflict_retries}): {e}")
                if self.retry_backoff_seconds:
                    time.sleep(self.retry_backoff_seconds * attempt)

    def _build_result(
        self,
        account: UserAccount,
        entitlement: Entitlement,
        allowed: bool,
        used: int,
    ) -> QuotaResult:
        if entitlement.unlimited:
            state = QuotaState.UNLIMITED
        elif used < entitlement.cap:
            state = QuotaState.UNDER_CAP
        else:
            state = QuotaState.AT_CAP

        result = QuotaResult(
            allowed=allowed,
            uid=account.uid,
            tier=account.tier,
            effective_tier=entitlement.effective_tier,
            state=state,
            used=used,
            cap=entitlement.cap,
        )
        if not allowed:
            result.reason = QUOTA_EXCEEDED
            result.message = "Monthly slide quota reached. Upgrade to VIP for unlimited slides."
        elif entitlement.unlimited:
            result.message = "Unlimited slide generation"
        else:
            result.message = f"{result.remaining} of {entitlement.cap} slide generations left this month"
        return result

    def _audit(self, uid: str, event_type: EventType, now: datetime, meta: dict) -> None:
        if self.event_tracker is None:
            return
        try:
            self.event_tracker.track_event(uid, event_type.value, meta, now.isoformat(timespec="seconds"))
        except (OSError, ValueError) as e:
            # The account write has already committed; report the lost audit record
            logger.error(f"Failed to record {event_type.value} event for {uid}: {e}")


def _validate_cap(cap) -> None:
    if isinstance(cap, bool) or not isinstance(cap, int) or cap < 0:
        raise ValueError(f"Cap must be a non-negative integer, got {cap!r}")
