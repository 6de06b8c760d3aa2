"""
registry.py - Off-ledger Lock Registry

=== LOCK MODEL ===

A Lock commits part of a vault balance for a fixed number of hours:
    - Principal stays in the vault; the ledger never sees the lock
    - The reward is fixed at creation and never recomputed
    - Status moves active -> claimed exactly once, at settlement

=== AVAILABLE BALANCE ===

The key invariant for every debit of the vault:

    Available_Balance = Vault_Balance - Sum(active lock amounts) >= 0

The vault balance is read from the ledger on every call, never cached, so a
withdrawal that already landed on the ledger cannot be bypassed by a stale
number.

=== KNOWN RACE ===

Two concurrent create_lock calls for the same owner may both pass validation
against the same read and together overcommit. Closing that window requires
a single writer per owner in front of the registry.
"""

from __future__ import annotations
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional
import logging
import uuid

from solders.pubkey import Pubkey

from .core import (
    Lock, LockStatus,
    ANNUAL_PERCENTAGE_RATE, MAX_LOCK_DURATION_HOURS, PROGRAM_ID,
    AccountNotFound, InsufficientAvailableBalance, InvalidDuration,
    LockNotFound, Uninitialized,
    compute_lock_reward, locked_amount, to_decimal, utc_now, validate_amount,
)
from .deriver import Identity, as_pubkey, derive_vault_address
from .network import LedgerNetwork
from .store import RegistryStore

logger = logging.getLogger(__name__)


def validate_duration(duration_hours, max_hours: Decimal = MAX_LOCK_DURATION_HOURS) -> Decimal:
    """
    Normalize and check a lock duration.

    Raises:
        InvalidDuration: Non-numeric, non-finite, <= 0, or above max_hours.
    """
    try:
        hours = to_decimal(duration_hours)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidDuration(f"Duration must be a number of hours, got {duration_hours!r}") from exc
    if not hours.is_finite():
        raise InvalidDuration(f"Duration must be finite, got {duration_hours!r}")
    if hours <= 0:
        raise InvalidDuration(f"Duration must be positive, got {hours}")
    if hours > max_hours:
        raise InvalidDuration(f"Duration {hours}h exceeds the maximum of {max_hours}h")
    return hours


class LockRegistry:
    """
    Durable record of time-boxed commitments, validated against the ledger.

    The registry is the sole owner of lock status; the ledger is the sole
    owner of balances.
    """

    def __init__(
        self,
        ledger: LedgerNetwork,
        store: RegistryStore,
        clock: Optional[Callable] = None,
        program_id: Pubkey = PROGRAM_ID,
        rate: Decimal = ANNUAL_PERCENTAGE_RATE,
        max_duration_hours: Decimal = MAX_LOCK_DURATION_HOURS,
    ):
        """
        Args:
            ledger: Ledger reads (normally wrapped in ResilientLedger)
            store: Lock row persistence
            clock: Returns the current aware datetime (default: wall clock)
            program_id: Program used to derive vault addresses
            rate: Annual rate applied to new locks
            max_duration_hours: Longest accepted lock
        """
        self.ledger = ledger
        self.store = store
        self.clock = clock or utc_now
        self.program_id = program_id
        self.rate = rate
        self.max_duration_hours = max_duration_hours

    # ========================================================================
    # QUERIES
    # ========================================================================

    def vault_balance(self, owner: Identity) -> int:
        """
        Fresh vault balance from the ledger.

        Raises:
            Uninitialized: If the owner has no vault
        """
        address = derive_vault_address(owner, self.program_id)
        try:
            return self.ledger.fetch_vault(address).balance
        except AccountNotFound as exc:
            raise Uninitialized(f"Vault of {as_pubkey(owner)} is not initialized") from exc

    def list_active_locks(self, owner: Identity) -> List[Lock]:
        """Active locks of an owner, soonest-maturing first."""
        return self.store.select(as_pubkey(owner), LockStatus.ACTIVE)

    def locked_total(self, owner: Identity) -> int:
        return locked_amount(self.list_active_locks(owner))

    def available_balance(self, owner: Identity) -> int:
        """
        Vault balance not committed to an active lock.

        Recomputed from a fresh ledger read on every call.
        """
        owner = as_pubkey(owner)
        return self.vault_balance(owner) - self.locked_total(owner)

    def get_lock(self, lock_id: str) -> Lock:
        lock = self.store.get(lock_id)
        if lock is None:
            raise LockNotFound(f"Lock {lock_id} not found")
        return lock

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def create_lock(self, owner: Identity, amount: int, duration_hours) -> Lock:
        """
        Commit part of the vault balance for duration_hours.

        Args:
            owner: Vault owner
            amount: Principal in base units
            duration_hours: Lock length (int, Decimal or numeric string)

        Returns:
            The persisted active Lock

        Raises:
            InvalidAmount: amount is not a positive integer
            InvalidDuration: duration is not in (0, max_duration_hours]
            Uninitialized: owner has no vault
            InsufficientAvailableBalance: amount > available balance

        Example:
            vault balance 2000, active locks 1500 -> available 500
            create_lock(owner, 500, 1)  accepted
            create_lock(owner, 501, 1)  InsufficientAvailableBalance
        """
        owner = as_pubkey(owner)
        validate_amount(amount)
        hours = validate_duration(duration_hours, self.max_duration_hours)

        available = self.available_balance(owner)
        if amount > available:
            raise InsufficientAvailableBalance(
                f"Lock of {amount} exceeds available balance {available} of {owner}"
            )

        created_at = self.clock()
        lock = Lock(
            id=str(uuid.uuid4()),
            owner=owner,
            amount=amount,
            duration_hours=hours,
            reward_amount=compute_lock_reward(amount, hours, self.rate),
            created_at=created_at,
            ends_at=created_at + timedelta(hours=float(hours)),
            status=LockStatus.ACTIVE,
        )
        self.store.insert(lock)
        logger.info(
            "Created lock %s: %d for %sh, reward %s, matures %s",
            lock.id, amount, hours, lock.reward_amount, lock.ends_at.isoformat(),
        )
        return lock

    def mark_claimed(self, lock_id: str) -> bool:
        """Flip an active lock to claimed. False if it was not active."""
        return self.store.update_status(lock_id, LockStatus.ACTIVE, LockStatus.CLAIMED)

    def clear_owner(self, owner: Identity) -> int:
        """Remove every lock of an owner (account-closure cascade)."""
        owner = as_pubkey(owner)
        removed = self.store.delete_owner(owner)
        logger.info("Cleared %d locks of %s", removed, owner)
        return removed
