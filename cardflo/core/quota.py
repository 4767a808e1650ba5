"""Scan allowance checks and usage bookkeeping per billing cycle."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .errors import QuotaCheckError, QuotaWriteError, RecordStoreError
from .models import Account, UsageCounter, as_local_time

logger = logging.getLogger(__name__)

LIMIT_REACHED = "limit_reached"


@dataclass
class ScanDecision:
    """Outcome of a quota check."""

    allowed: bool
    reason: Optional[str] = None
    warning: bool = False

    def to_dict(self) -> dict:
        result = {"allowed": self.allowed}
        if self.reason:
            result["reason"] = self.reason
        if self.warning:
            result["warning"] = True
        return result


class QuotaGate:
    """Enforces the per-cycle scan allowance of an owner's subscription tier.

    ``can_scan`` never writes and fails open: only a positively confirmed
    over-limit state denies. ``increment_usage`` is the only place a new
    cycle is started.
    """

    def __init__(
        self,
        store,
        warning_ratio: float = 0.8,
        cycle_days: int = 30,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the gate.

        Args:
            store: RecordStore holding accounts and usage counters
            warning_ratio: Fraction of the limit at which callers are warned
            cycle_days: Length of a cycle when the account has no billing date
            clock: Source of the current time
        """
        self.store = store
        self.warning_ratio = warning_ratio
        self.cycle_days = cycle_days
        self.clock = clock

    def _now(self) -> datetime:
        return as_local_time(self.clock())

    def _account(self, owner_id: str) -> Account:
        return self.store.get_account(owner_id) or Account(owner_id=owner_id)

    def total_limit(self, account: Account, counter: Optional[UsageCounter]) -> int:
        """Tier (or custom) scan limit plus any bonus scans on the counter."""
        base = account.custom_scan_limit
        if base is None:
            base = account.limits.scan_limit
        bonus = counter.bonus_scans if counter else 0
        return base + bonus

    def can_scan(self, owner_id: str) -> ScanDecision:
        """Decide whether the owner may scan another card.

        Returns:
            ScanDecision; denied only with reason ``limit_reached``
        """
        try:
            return self._decide(owner_id)
        except Exception as e:
            logger.error(f"Quota check failed for {owner_id}, allowing scan: {e}", exc_info=True)
            return ScanDecision(allowed=True)

    def _decide(self, owner_id: str) -> ScanDecision:
        account = self._account(owner_id)
        if account.is_admin:
            return ScanDecision(allowed=True)

        counter = self.store.latest_usage(owner_id)
        if counter is None:
            return ScanDecision(allowed=True)

        if counter.has_ended(self._now()):
            # rollover happens on the next increment
            return ScanDecision(allowed=True)

        limit = self.total_limit(account, counter)
        if limit < 0:
            raise QuotaCheckError(f"Negative scan limit {limit} for {owner_id}")

        if counter.scans_count >= limit:
            logger.info(f"Scan limit reached for {owner_id}: {counter.scans_count}/{limit}")
            return ScanDecision(allowed=False, reason=LIMIT_REACHED)
        if counter.scans_count >= limit * self.warning_ratio:
            return ScanDecision(allowed=True, warning=True)
        return ScanDecision(allowed=True)

    def _next_cycle_end(self, owner_id: str, now: datetime) -> datetime:
        account = self.store.get_account(owner_id)
        if account and account.billing_cycle_end and account.billing_cycle_end > now:
            return account.billing_cycle_end
        return now + timedelta(days=self.cycle_days)

    def _current_counter(self, owner_id: str) -> UsageCounter:
        """Active counter for the owner, starting a new cycle if needed."""
        now = self._now()
        counter = self.store.latest_usage(owner_id)
        if counter is not None and not counter.has_ended(now):
            return counter

        counter = UsageCounter(
            owner_id=owner_id,
            scans_count=0,
            cycle_start=now,
            cycle_end=self._next_cycle_end(owner_id, now),
            created_at=now,
        )
        logger.info(f"Starting new usage cycle for {owner_id} until {counter.cycle_end:%Y-%m-%d}")
        return self.store.add_usage(counter)

    def increment_usage(self, owner_id: str) -> UsageCounter:
        """Record one scan against the owner's current cycle.

        Raises:
            QuotaWriteError: If the counter could not be read or written
        """
        try:
            counter = self._current_counter(owner_id)
            updated = self.store.increment_usage_count(counter.id)
        except RecordStoreError as e:
            raise QuotaWriteError(f"Failed to record scan for {owner_id}: {e}") from e
        except (TypeError, ValueError) as e:
            raise QuotaWriteError(f"Invalid usage data for {owner_id}: {e}") from e
        if not updated:
            raise QuotaWriteError(f"Usage counter {counter.id} disappeared before increment")
        counter.scans_count += 1
        return counter

    def grant_bonus_scans(self, owner_id: str, amount: int) -> UsageCounter:
        """Add bonus scans to the owner's current cycle."""
        if amount <= 0:
            raise ValueError("Bonus scans must be positive")
        try:
            counter = self._current_counter(owner_id)
            self.store.add_bonus_scans(counter.id, amount)
        except RecordStoreError as e:
            raise QuotaWriteError(f"Failed to grant bonus scans to {owner_id}: {e}") from e
        counter.bonus_scans += amount
        return counter
