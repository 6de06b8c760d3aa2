"""
program.py - Vault Ledger Program

The VaultProgram is the authoritative balance holder. It is the only module
that mutates vault and reward-accrual balances, and it implements the
LedgerNetwork protocol so every off-ledger component can run against it
in-process exactly as it would against a remote node.

Key responsibilities:
    - Per-owner state machine: Uninitialized -> Initialized
    - initialize / deposit / withdraw / transfer, each applied atomically
    - Reward accrual on every balance mutation (elapsed-time weighted)
    - Request-level idempotency: a resubmitted instruction is never re-applied
    - Logical clock for deterministic simulation (advance_time)

The program knows nothing about locks. Lock-aware policy lives in the
registry and the service layer.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .core import (
    # Types
    Confirmation, ExecuteResult, Instruction,
    RewardAccrualAccount, VaultAccount,
    # Constants
    PROGRAM_ID, VAULT_ACCOUNT_SPACE, REWARD_ACCOUNT_SPACE,
    INSTRUCTION_INITIALIZE, INSTRUCTION_DEPOSIT, INSTRUCTION_WITHDRAW,
    INSTRUCTION_TRANSFER, INSTRUCTION_SYSTEM_TRANSFER,
    # Exceptions
    VaultError, AccountNotFound, AlreadyInitialized, Uninitialized,
    InsufficientFunds, SignerMismatch,
    # Helper functions
    compute_accrual, rent_exempt_minimum, validate_amount,
    initialize_instruction, deposit_instruction, withdraw_instruction,
    vault_transfer_instruction,
)
from .deriver import as_pubkey, find_reward_address, find_vault_address


VAULT_RENT = rent_exempt_minimum(VAULT_ACCOUNT_SPACE)
REWARD_RENT = rent_exempt_minimum(REWARD_ACCOUNT_SPACE)


@dataclass(frozen=True, slots=True)
class ExecutedInstruction:
    """Audit record of an applied instruction."""
    instruction: Instruction
    signature: str
    slot: int
    execution_time: datetime


class VaultProgram:
    """
    In-process vault program with full validation and an audit trail.

    Implements the LedgerNetwork protocol.

    Design Principles:
        - Validate, then apply: every check runs before the first write, so a
          rejected instruction leaves no partial effect.
        - Always log: every applied instruction is appended to instruction_log.

    Thread Safety:
        Not thread-safe. Callers serialize access per program instance.

    Example:
        program = VaultProgram(verbose=False, test_mode=True)
        alice = Keypair()
        program.airdrop(alice.pubkey(), 10_000_000)
        program.initialize(alice)
        program.deposit(alice, 2_000)
    """

    def __init__(
        self,
        name: str = "save_to_grow",
        program_id: Pubkey = PROGRAM_ID,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a program instance.

        Args:
            name: Program instance identifier (appears in signatures)
            program_id: Program identity used for address derivation
            initial_time: Starting logical time (default: 1970-01-01 UTC)
            verbose: Print a line per applied or rejected instruction
            test_mode: Allow airdrop() to mint spendable funds
        """
        self.name = name
        self.program_id = program_id
        self.vaults: Dict[Pubkey, VaultAccount] = {}
        self.rewards: Dict[Pubkey, RewardAccrualAccount] = {}
        # Spendable lamports of plain (system-owned) accounts
        self.lamports: Dict[Pubkey, int] = defaultdict(int)
        self.seen_request_ids: Set[str] = set()
        self.instruction_log: List[ExecutedInstruction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1, tzinfo=timezone.utc)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_slot: int = 0
        self._handlers: Dict[str, Callable[[Instruction], None]] = {
            INSTRUCTION_INITIALIZE: self._apply_initialize,
            INSTRUCTION_DEPOSIT: self._apply_deposit,
            INSTRUCTION_WITHDRAW: self._apply_withdraw,
            INSTRUCTION_TRANSFER: self._apply_transfer,
            INSTRUCTION_SYSTEM_TRANSFER: self._apply_system_transfer,
        }

    # ========================================================================
    # LedgerNetwork PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the program."""
        return self._current_time

    def get_balance(self, address: Pubkey) -> int:
        """
        Lamports held at an address.

        Vault and reward accounts report their deposited balance plus rent,
        as the network does.

        Raises:
            AccountNotFound: If nothing has ever been credited to the address
        """
        if address in self.vaults:
            return self.vaults[address].balance + VAULT_RENT
        if address in self.rewards:
            return REWARD_RENT
        if address not in self.lamports:
            raise AccountNotFound(f"Account {address} not found")
        return self.lamports[address]

    def fetch_vault(self, address: Pubkey) -> VaultAccount:
        if address not in self.vaults:
            raise AccountNotFound(f"Vault {address} not found")
        return self.vaults[address]

    def fetch_reward(self, address: Pubkey) -> RewardAccrualAccount:
        if address not in self.rewards:
            raise AccountNotFound(f"Reward account {address} not found")
        return self.rewards[address]

    def is_initialized(self, owner) -> bool:
        vault_address, _ = find_vault_address(owner, self.program_id)
        return vault_address in self.vaults

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # TEST FUNDING
    # ========================================================================

    def airdrop(self, address: Pubkey, lamports: int) -> None:
        """
        Credit spendable lamports out of thin air.

        WARNING: Bypasses conservation and is only available in test mode.

        Raises:
            VaultError: If called when test_mode is False
        """
        if not self._test_mode:
            raise VaultError(
                "airdrop() is disabled in production mode. "
                "Set test_mode=True when creating VaultProgram for testing."
            )
        validate_amount(lamports)
        self.lamports[address] += lamports

    # ========================================================================
    # CONVENIENCE ENTRY POINTS
    # ========================================================================

    def initialize(self, owner: Keypair) -> Confirmation:
        return self.submit(initialize_instruction(owner.pubkey()), owner)

    def deposit(self, owner: Keypair, amount: int) -> Confirmation:
        return self.submit(deposit_instruction(owner.pubkey(), amount), owner)

    def withdraw(self, owner: Keypair, amount: int) -> Confirmation:
        return self.submit(withdraw_instruction(owner.pubkey(), amount), owner)

    def transfer(self, owner: Keypair, recipient, amount: int) -> Confirmation:
        return self.submit(
            vault_transfer_instruction(owner.pubkey(), as_pubkey(recipient), amount), owner
        )

    # ========================================================================
    # INSTRUCTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_signature(self, slot: int) -> str:
        """
        Generate a unique execution signature.

        Format: sig:{name}:{slot:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"sig:{self.name}:{slot:012d}:{micros}"

    def submit(self, instruction: Instruction, signer: Keypair) -> Confirmation:
        """
        Validate and apply one instruction atomically.

        Idempotent per request id: resubmitting an applied instruction returns
        ALREADY_APPLIED with the original signature and changes nothing.

        Raises:
            SignerMismatch: If signer is not the instruction's authority
            VaultError subclasses: Per-instruction validation failures
        """
        if instruction.request_id in self.seen_request_ids:
            previous = next(
                rec for rec in self.instruction_log
                if rec.instruction.request_id == instruction.request_id
            )
            if self.verbose:
                print(f"⚠  ALREADY_APPLIED: request_id={instruction.request_id}")
            return Confirmation(previous.signature, previous.slot, ExecuteResult.ALREADY_APPLIED)

        if signer.pubkey() != instruction.authority:
            self._reject(instruction, "signer is not the instruction authority")
            raise SignerMismatch(
                f"{instruction.kind} must be signed by {instruction.authority}, got {signer.pubkey()}"
            )

        try:
            self._handlers[instruction.kind](instruction)
        except VaultError as exc:
            self._reject(instruction, str(exc))
            raise

        slot = self._next_slot
        self._next_slot += 1
        signature = self._generate_signature(slot)
        self.instruction_log.append(
            ExecutedInstruction(instruction, signature, slot, self._current_time)
        )
        self.seen_request_ids.add(instruction.request_id)

        if self.verbose:
            print(f"✓ APPLIED: {instruction!r} [{signature}]")
        return Confirmation(signature, slot, ExecuteResult.APPLIED)

    def _reject(self, instruction: Instruction, reason: str) -> None:
        if self.verbose:
            print(f"✗ REJECTED: {instruction!r}: {reason}")

    def _require_accounts(self, owner: Pubkey):
        """Return (vault, reward) of an owner or raise Uninitialized."""
        vault_address, _ = find_vault_address(owner, self.program_id)
        reward_address, _ = find_reward_address(owner, self.program_id)
        vault = self.vaults.get(vault_address)
        reward = self.rewards.get(reward_address)
        if vault is None or reward is None:
            raise Uninitialized(f"Vault of {owner} is not initialized")
        return vault, reward

    def _accrue(self, vault: VaultAccount, reward: RewardAccrualAccount):
        """
        Compute post-accrual (vault, reward) without writing them.

        Accrual only runs once at least one whole second has elapsed; the
        timestamp is left untouched otherwise so fractions keep accumulating.
        """
        elapsed = int((self._current_time - vault.last_update_time).total_seconds())
        if elapsed < 1:
            return vault, reward
        earned = compute_accrual(vault.balance, elapsed)
        return (
            replace(vault, last_update_time=self._current_time),
            replace(reward, balance=reward.balance + earned),
        )

    def _apply_initialize(self, ix: Instruction) -> None:
        owner = ix.authority
        vault_address, vault_bump = find_vault_address(owner, self.program_id)
        reward_address, reward_bump = find_reward_address(owner, self.program_id)
        if vault_address in self.vaults or reward_address in self.rewards:
            raise AlreadyInitialized(f"Vault of {owner} already initialized")

        rent = VAULT_RENT + REWARD_RENT
        spendable = self.lamports.get(owner, 0)
        if spendable < rent:
            raise InsufficientFunds(
                f"{owner} holds {spendable} lamports, initialize needs {rent} for rent"
            )

        self.lamports[owner] = spendable - rent
        self.vaults[vault_address] = VaultAccount(
            address=vault_address,
            owner=owner,
            balance=0,
            bump=vault_bump,
            last_update_time=self._current_time,
        )
        self.rewards[reward_address] = RewardAccrualAccount(
            address=reward_address,
            balance=0,
            bump=reward_bump,
            owner=owner,
        )

    def _apply_deposit(self, ix: Instruction) -> None:
        owner = ix.authority
        vault, reward = self._require_accounts(owner)
        spendable = self.lamports.get(owner, 0)
        if spendable < ix.amount:
            raise InsufficientFunds(f"{owner} holds {spendable} lamports, deposit needs {ix.amount}")

        vault, reward = self._accrue(vault, reward)
        self.lamports[owner] = spendable - ix.amount
        self.vaults[vault.address] = replace(vault, balance=vault.balance + ix.amount)
        self.rewards[reward.address] = reward

    def _apply_withdraw(self, ix: Instruction) -> None:
        self._pay_out_of_vault(ix.authority, ix.authority, ix.amount)

    def _apply_transfer(self, ix: Instruction) -> None:
        self._pay_out_of_vault(ix.authority, ix.recipient, ix.amount)

    def _pay_out_of_vault(self, owner: Pubkey, dest: Pubkey, amount: int) -> None:
        vault, reward = self._require_accounts(owner)
        if amount > vault.balance:
            raise InsufficientFunds(f"Vault of {owner} holds {vault.balance}, cannot pay {amount}")

        vault, reward = self._accrue(vault, reward)
        self.vaults[vault.address] = replace(vault, balance=vault.balance - amount)
        self.rewards[reward.address] = reward
        self.lamports[dest] += amount

    def _apply_system_transfer(self, ix: Instruction) -> None:
        spendable = self.lamports.get(ix.authority, 0)
        if spendable < ix.amount:
            raise InsufficientFunds(
                f"{ix.authority} holds {spendable} lamports, transfer needs {ix.amount}"
            )
        self.lamports[ix.authority] = spendable - ix.amount
        self.lamports[ix.recipient] += ix.amount

    # ========================================================================
    # AUDIT
    # ========================================================================

    def total_lamports(self) -> int:
        """
        Sum of all lamports tracked by the program, rent included.

        Only airdrops change this total; every instruction conserves it.
        """
        spendable = sum(self.lamports.values())
        vaults = sum(v.balance + VAULT_RENT for v in self.vaults.values())
        return spendable + vaults + REWARD_RENT * len(self.rewards)
