"""
settlement.py - Reward Settlement Service

Settles a lock in seven steps:

    1. Load the lock; it must exist, belong to the caller and be active
    2. is_mature = now >= ends_at
    3. Immature without force exit -> StillLocked, nothing changes
    4. payable = reward_amount if mature else 0 (force exit forfeits reward,
       never principal)
    5. payable > 0: treasury must hold all of it (no partial payout), then one
       treasury -> owner transfer
    6. Lock status -> claimed, which is what returns the principal to the
       available balance
    7. Return payable

Steps 5 and 6 touch two different stores and are not atomic. If the transfer
confirmed but the status flip did not land, SettlementIncomplete carries the
transfer signature so finalize() can complete the claim without paying again.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional
import logging

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .core import (
    AccountNotFound, AlreadySettled, LockNotFound, SettlementIncomplete,
    StillLocked, TreasuryInsufficient,
    system_transfer_instruction, transferable_units, utc_now,
)
from .deriver import Identity, as_pubkey
from .network import LedgerNetwork
from .registry import LockRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Settlement:
    """
    Result of settling a lock.

    Attributes:
        lock_id: Settled lock
        owner: Lock owner (reward recipient)
        reward_paid: Payable reward (lock.reward_amount if matured, else 0)
        transferred: Whole base units moved from the treasury
        matured: Whether settlement happened at or after maturity
        signature: Treasury transfer signature, if a transfer was made
    """
    lock_id: str
    owner: Pubkey
    reward_paid: Decimal
    transferred: int
    matured: bool
    signature: Optional[str] = None


class RewardSettlementService:
    """Pays lock rewards from the treasury and finalizes lock status."""

    def __init__(
        self,
        registry: LockRegistry,
        ledger: LedgerNetwork,
        treasury: Keypair,
        clock: Optional[Callable] = None,
    ):
        """
        Args:
            registry: Lock registry (owner of lock status)
            ledger: Ledger used for the treasury read and transfer
            treasury: Keypair of the reward-funding account
            clock: Returns the current aware datetime (default: registry clock)
        """
        self.registry = registry
        self.ledger = ledger
        self.treasury = treasury
        self.clock = clock or registry.clock or utc_now

    def treasury_balance(self) -> int:
        try:
            return self.ledger.get_balance(self.treasury.pubkey())
        except AccountNotFound:
            # An unfunded treasury account does not exist on the ledger
            return 0

    def settle(self, lock_id: str, owner: Identity, force_exit: bool = False) -> Settlement:
        """
        Settle a lock.

        Args:
            lock_id: Lock to settle
            owner: Caller identity; must own the lock
            force_exit: Settle before maturity, forfeiting the reward

        Returns:
            Settlement with the payable reward

        Raises:
            LockNotFound: Absent, or owned by someone else
            AlreadySettled: Lock is not active
            StillLocked: Immature and force_exit is False
            TreasuryInsufficient: Treasury balance < payable reward
            ConfirmationUnknown: Transfer outcome unobserved; lock stays active
            SettlementIncomplete: Transfer confirmed, status flip failed
        """
        owner = as_pubkey(owner)

        # Step 1: load and check ownership/status
        lock = self.registry.get_lock(lock_id)
        if lock.owner != owner:
            raise LockNotFound(f"Lock {lock_id} not found for {owner}")
        if not lock.is_active:
            raise AlreadySettled(f"Lock {lock_id} is already {lock.status.value}")

        # Steps 2-4: maturity and payable reward
        matured = lock.is_mature(self.clock())
        if not matured and not force_exit:
            raise StillLocked(f"Lock {lock_id} matures at {lock.ends_at.isoformat()}")
        payable = lock.reward_amount if matured else Decimal("0")

        # Step 5: all-or-nothing treasury payout
        transferred = 0
        signature = None
        if payable > 0:
            available = self.treasury_balance()
            if available < payable:
                raise TreasuryInsufficient(
                    f"Treasury holds {available}, lock {lock_id} pays {payable}"
                )
            transferred = transferable_units(payable)
            if transferred > 0:
                confirmation = self.ledger.submit(
                    system_transfer_instruction(self.treasury.pubkey(), owner, transferred),
                    self.treasury,
                )
                signature = confirmation.signature

        # Step 6: release the principal
        try:
            claimed = self.registry.mark_claimed(lock_id)
        except Exception as exc:
            if signature is None:
                raise
            logger.error(
                "Reward for lock %s paid (%s) but status update failed: %s",
                lock_id, signature, exc,
            )
            raise SettlementIncomplete(
                f"Reward for lock {lock_id} paid but the lock is still active",
                lock_id=lock_id,
                signature=signature,
            ) from exc
        if not claimed:
            if signature is not None:
                logger.error(
                    "Lock %s was claimed concurrently after payout %s", lock_id, signature
                )
            raise AlreadySettled(f"Lock {lock_id} was settled concurrently")

        logger.info(
            "Settled lock %s for %s: reward %s (%d transferred, matured=%s)",
            lock_id, owner, payable, transferred, matured,
        )
        # Step 7
        return Settlement(
            lock_id=lock_id,
            owner=owner,
            reward_paid=payable,
            transferred=transferred,
            matured=matured,
            signature=signature,
        )

    def finalize(self, lock_id: str) -> bool:
        """
        Complete a settlement whose payout confirmed but whose status flip
        failed. Never transfers. Returns False if the lock was not active.
        """
        self.registry.get_lock(lock_id)
        return self.registry.mark_claimed(lock_id)
