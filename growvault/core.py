"""
Core types and pure functions for the grow vault accounting engine.

This module provides the foundational data structures shared by every component:
1. Constants: program identity, rates, rent and stage thresholds
2. Enums: ExecuteResult, LockStatus
3. Exceptions: VaultError and its machine-readable taxonomy
4. Immutable account records: VaultAccount, RewardAccrualAccount, Lock
5. Instructions: the signed state-transition requests accepted by the ledger
6. Pure formulas: lock reward, reward accrual, rent, availability

All functions in this module are pure. Nothing here performs I/O or holds state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext, InvalidOperation
from enum import Enum
import hashlib
import uuid
from typing import Iterable, Optional

from solders.pubkey import Pubkey


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Reward amounts are fractional base units and must be computed
# deterministically. The global context is configured once at import.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_VAULT_DECIMAL_CONTEXT = getcontext()
_VAULT_DECIMAL_CONTEXT.prec = 50
_VAULT_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Deployed save-to-grow program.
PROGRAM_ID = Pubkey.from_string("5Y7L91KtvUumZo5fXLXtbCfpHRNYsLmV6kwsSBRUsvxT")

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

# PDA seed labels.
VAULT_SEED = b"vault"
REWARD_SEED = b"reward"

# Prefix hashed together with the owner's base58 key to seed the collectible mint.
TOKEN_SEED_LABEL = "box-nft-seed"

LAMPORTS_PER_SOL = 1_000_000_000

# Fixed simple (non-compounding) rate paid on locks held to maturity.
ANNUAL_PERCENTAGE_RATE = Decimal("0.10")
HOURS_PER_YEAR = Decimal("8760")

# Locks longer than this are rejected as InvalidDuration.
MAX_LOCK_DURATION_HOURS = HOURS_PER_YEAR

# Precision kept on a lock's promised reward (base units).
REWARD_DECIMAL_PLACES = 9

# Accrual points per elapsed second are balance / ACCRUAL_DIVISOR (0.01% per second).
ACCRUAL_DIVISOR = 10_000

# Account sizes, including the 8-byte account discriminator.
VAULT_ACCOUNT_SPACE = 8 + 32 + 8 + 1 + 8
REWARD_ACCOUNT_SPACE = 8 + 8 + 1

# Rent exemption parameters of the ledger network.
ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3480
EXEMPTION_THRESHOLD_YEARS = 2

# Balance at or above which the collectible reaches its final stage (5 SOL).
LEGENDARY_THRESHOLD = 5 * LAMPORTS_PER_SOL

# Instruction kinds (strings, not enum, matching the on-ledger method names).
INSTRUCTION_INITIALIZE = "initialize"
INSTRUCTION_DEPOSIT = "deposit"
INSTRUCTION_WITHDRAW = "withdraw"
INSTRUCTION_TRANSFER = "transfer"
INSTRUCTION_SYSTEM_TRANSFER = "system_transfer"

_AMOUNT_INSTRUCTIONS = frozenset({
    INSTRUCTION_DEPOSIT, INSTRUCTION_WITHDRAW,
    INSTRUCTION_TRANSFER, INSTRUCTION_SYSTEM_TRANSFER,
})
_RECIPIENT_INSTRUCTIONS = frozenset({INSTRUCTION_TRANSFER, INSTRUCTION_SYSTEM_TRANSFER})
INSTRUCTION_KINDS = frozenset({INSTRUCTION_INITIALIZE}) | _AMOUNT_INSTRUCTIONS


def utc_now() -> datetime:
    """Wall-clock time, timezone-aware."""
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of submitting an instruction.

    APPLIED: The instruction was validated and applied.
    ALREADY_APPLIED: The request id was processed before (no second effect).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class LockStatus(str, Enum):
    """Status of a time-boxed lock."""
    ACTIVE = "active"       # Principal committed, reward promised
    CLAIMED = "claimed"     # Settled (matured or force-exited), terminal


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VaultError(Exception):
    """Base exception. ``kind`` is the machine-readable error identifier."""
    kind = "error"


class ValidationError(VaultError, ValueError):
    """Rejected before any read or write."""
    kind = "validation"


class InvalidAmount(ValidationError):
    """Amount is not a positive integer number of base units."""
    kind = "invalid_amount"


class InvalidDuration(ValidationError):
    """Lock duration is not positive or exceeds the allowed maximum."""
    kind = "invalid_duration"


class InvalidIdentity(ValidationError):
    """Owner identity is not a valid public key."""
    kind = "invalid_identity"


class StateError(VaultError):
    """Rejected after a read; nothing was written."""
    kind = "state"


class AlreadyInitialized(StateError):
    kind = "already_initialized"


class Uninitialized(StateError):
    kind = "uninitialized"


class InsufficientFunds(StateError):
    """Raised when a debit exceeds the balance of the debited account."""
    kind = "insufficient_funds"


class InsufficientAvailableBalance(StateError):
    """Raised when an amount exceeds vault balance minus active locks."""
    kind = "insufficient_available_balance"


class StillLocked(StateError):
    kind = "still_locked"


class AlreadySettled(StateError):
    kind = "already_settled"


class LockNotFound(StateError):
    """Lock is absent or belongs to a different owner."""
    kind = "not_found"


class AccountNotFound(StateError):
    """Ledger account does not exist at the given address."""
    kind = "account_not_found"


class SignerMismatch(StateError):
    """Instruction signed by a key other than its authority."""
    kind = "signer_mismatch"


class ResourceError(VaultError):
    kind = "resource"


class TreasuryInsufficient(ResourceError):
    """Treasury cannot cover the full reward. No transfer is attempted."""
    kind = "treasury_insufficient"


class TransientNetworkError(VaultError):
    kind = "transient"


class RateLimited(TransientNetworkError):
    kind = "rate_limited"


class OutcomeUnknown(VaultError):
    """A write may or may not have been applied; re-read state to find out."""
    kind = "unknown"


class ConfirmationUnknown(OutcomeUnknown):
    """A submitted instruction was not observed as confirmed or failed."""

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature


class SettlementIncomplete(OutcomeUnknown):
    """Reward transfer confirmed but the lock could not be marked claimed."""

    def __init__(self, message: str, lock_id: str, signature: Optional[str] = None):
        super().__init__(message)
        self.lock_id = lock_id
        self.signature = signature


# ============================================================================
# ACCOUNT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class VaultAccount:
    """
    On-ledger vault of a single owner.

    Attributes:
        address: Program-derived address of the vault.
        owner: Public key of the owner (unique per vault).
        balance: Deposited base units.
        bump: PDA bump seed.
        last_update_time: When reward accrual last ran.
    """
    address: Pubkey
    owner: Pubkey
    balance: int
    bump: int
    last_update_time: datetime


@dataclass(frozen=True, slots=True)
class RewardAccrualAccount:
    """Non-liquid accrual points. The on-ledger record does not store its owner."""
    address: Pubkey
    balance: int
    bump: int
    owner: Optional[Pubkey] = None


@dataclass(frozen=True, slots=True)
class Lock:
    """
    A time-boxed commitment of vault principal.

    Attributes:
        id: Registry identifier.
        owner: Owner public key.
        amount: Locked principal in base units.
        duration_hours: Lock length in hours.
        reward_amount: Reward promised at creation (fractional base units).
        created_at: Creation time.
        ends_at: Maturity, created_at + duration_hours.
        status: ACTIVE until settled, then CLAIMED.
    """
    id: str
    owner: Pubkey
    amount: int
    duration_hours: Decimal
    reward_amount: Decimal
    created_at: datetime
    ends_at: datetime
    status: LockStatus = LockStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == LockStatus.ACTIVE

    def is_mature(self, now: datetime) -> bool:
        return now >= self.ends_at


@dataclass(frozen=True, slots=True)
class Confirmation:
    """Confirmed outcome of a submitted instruction."""
    signature: str
    slot: int
    result: ExecuteResult = ExecuteResult.APPLIED


# ============================================================================
# INSTRUCTIONS
# ============================================================================

def _compute_request_id(kind: str, authority: Pubkey, amount: int,
                        recipient: Optional[Pubkey], nonce: str) -> str:
    """
    Deterministic content hash of an instruction.

    Two submissions of the same Instruction object share a request id, so a
    client retry is recognised. Distinct requests differ by nonce even when
    every other field is equal.
    """
    parts = [
        f"kind:{kind}",
        f"authority:{authority}",
        f"amount:{amount}",
        f"recipient:{recipient if recipient is not None else '-'}",
        f"nonce:{nonce}",
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class Instruction:
    """
    A signed state-transition request.

    Attributes:
        kind: One of the INSTRUCTION_* constants.
        authority: Key that must sign (vault owner, or the debited account).
        amount: Base units moved (0 for initialize).
        recipient: Credited account for transfer kinds.
        nonce: Per-request uniqueness token.
        request_id: Content hash (auto-computed).
    """
    kind: str
    authority: Pubkey
    amount: int = 0
    recipient: Optional[Pubkey] = None
    nonce: str = field(default_factory=lambda: uuid.uuid4().hex)
    request_id: str = field(default="")

    def __post_init__(self):
        if self.kind not in INSTRUCTION_KINDS:
            raise ValueError(f"Unknown instruction kind: {self.kind}")
        if not isinstance(self.authority, Pubkey):
            raise InvalidIdentity(f"Instruction authority must be a Pubkey, got {type(self.authority)}")
        if self.kind in _AMOUNT_INSTRUCTIONS:
            validate_amount(self.amount)
        elif self.amount != 0:
            raise InvalidAmount(f"{self.kind} takes no amount, got {self.amount}")
        if self.kind in _RECIPIENT_INSTRUCTIONS:
            if not isinstance(self.recipient, Pubkey):
                raise InvalidIdentity(f"{self.kind} requires a recipient Pubkey")
            if self.recipient == self.authority:
                raise ValueError("Recipient and authority must be different")
        if not self.request_id:
            object.__setattr__(self, 'request_id', _compute_request_id(
                self.kind, self.authority, self.amount, self.recipient, self.nonce
            ))

    def __repr__(self) -> str:
        target = f" -> {self.recipient}" if self.recipient is not None else ""
        return f"Instruction({self.kind} {self.amount} by {self.authority}{target}, id={self.request_id})"


def initialize_instruction(owner: Pubkey) -> Instruction:
    return Instruction(INSTRUCTION_INITIALIZE, owner)


def deposit_instruction(owner: Pubkey, amount: int) -> Instruction:
    return Instruction(INSTRUCTION_DEPOSIT, owner, amount)


def withdraw_instruction(owner: Pubkey, amount: int) -> Instruction:
    return Instruction(INSTRUCTION_WITHDRAW, owner, amount)


def vault_transfer_instruction(owner: Pubkey, recipient: Pubkey, amount: int) -> Instruction:
    """Pay directly out of the owner's vault to another account."""
    return Instruction(INSTRUCTION_TRANSFER, owner, amount, recipient)


def system_transfer_instruction(source: Pubkey, dest: Pubkey, amount: int) -> Instruction:
    """Plain lamport transfer between spendable accounts (used for treasury payouts)."""
    return Instruction(INSTRUCTION_SYSTEM_TRANSFER, source, amount, dest)


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def validate_amount(amount: int) -> int:
    """
    Check that amount is a positive integer number of base units.

    Raises:
        InvalidAmount: For non-integers, booleans, zero or negatives.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer number of base units, got {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    return amount


def to_decimal(value) -> Decimal:
    """Convert int/str/Decimal to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"Cannot convert bool {value!r} to Decimal")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def compute_lock_reward(
    amount: int,
    duration_hours: Decimal,
    rate: Decimal = ANNUAL_PERCENTAGE_RATE,
) -> Decimal:
    """
    Simple pro-rated reward of a lock.

        reward = amount * rate * duration_hours / HOURS_PER_YEAR

    Quantized to REWARD_DECIMAL_PLACES, rounding down so the promise never
    exceeds the exact rate.

    Example:
        1000 units at 10% for 24h -> 1000 * 0.10 * 24/8760 = 0.273972602
    """
    # Multiply first so the division is the only inexact step
    exact = Decimal(amount) * rate * to_decimal(duration_hours) / HOURS_PER_YEAR
    quantizer = Decimal(10) ** -REWARD_DECIMAL_PLACES
    return exact.quantize(quantizer, rounding=ROUND_DOWN)


def transferable_units(reward: Decimal) -> int:
    """Whole base units of a fractional reward. Sub-unit remainders cannot move on the ledger."""
    return int(reward.to_integral_value(rounding=ROUND_DOWN))


def compute_accrual(balance: int, elapsed_seconds: int) -> int:
    """
    Accrual points earned by a balance over elapsed whole seconds.

    Integer arithmetic, multiply before divide: balance * elapsed // ACCRUAL_DIVISOR.
    Returns 0 for less than one elapsed second; never negative.
    """
    if elapsed_seconds < 1 or balance <= 0:
        return 0
    return balance * elapsed_seconds // ACCRUAL_DIVISOR


def rent_exempt_minimum(space: int) -> int:
    """Lamports an account of ``space`` data bytes must hold to be rent exempt."""
    return (ACCOUNT_STORAGE_OVERHEAD + space) * LAMPORTS_PER_BYTE_YEAR * EXEMPTION_THRESHOLD_YEARS


def locked_amount(locks: Iterable[Lock]) -> int:
    """Sum of principal over active locks."""
    return sum(lock.amount for lock in locks if lock.is_active)


def compute_available_balance(vault_balance: int, locks: Iterable[Lock]) -> int:
    """
    Vault balance not committed to an active lock.

        Available = Vault_Balance - Sum(active lock amounts)
    """
    return vault_balance - locked_amount(locks)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def sol_to_lamports(sol) -> int:
    """Convert a SOL amount to whole lamports, truncating sub-lamport dust."""
    return int((to_decimal(sol) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))
