"""
service.py - Caller-facing vault operations

VaultService wires the ledger, the lock registry and the settlement service
together and adds the lock-aware policy the program itself does not know:

    withdraw / transfer:  amount <= vault balance - active locks
    close_account:        every lock of the owner is removed first

handle() is the request/response surface. It accepts a request dict and
always returns a dict; errors are converted to {success: False, error, kind}
only here.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import requests
from solders.keypair import Keypair

from .collectible import (
    METADATA_URIS, TokenMetadataStore, TokenStage, refresh_token_stage, select_stage,
)
from .core import (
    Confirmation, Lock,
    AccountNotFound, AlreadyInitialized, InsufficientAvailableBalance,
    ValidationError, VaultError,
    deposit_instruction, initialize_instruction, validate_amount,
    vault_transfer_instruction, withdraw_instruction,
)
from .config import VaultSettings
from .deriver import Identity, as_pubkey, derive_reward_address, derive_vault_address
from .network import LedgerNetwork
from .registry import LockRegistry
from .resilience import ResilientLedger
from .rpc import RpcLedgerNetwork
from .settlement import RewardSettlementService, Settlement
from .store import SqliteRegistryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VaultSnapshot:
    """Authoritative state of one owner, re-read after an operation."""
    owner: str
    balance: int
    reward_points: int
    locked: int
    available: int
    active_locks: List[Lock]
    stage: TokenStage


class VaultService:
    """
    Entry point for vault and lock operations of many owners.

    Example:
        service = VaultService(program, registry, settlement)
        service.initialize(alice)
        service.deposit(alice, 2_000)
        lock = service.create_lock(alice.pubkey(), 1_500, 24)
        service.withdraw(alice, 600)    # InsufficientAvailableBalance
    """

    def __init__(
        self,
        network: LedgerNetwork,
        registry: LockRegistry,
        settlement: RewardSettlementService,
        metadata: Optional[TokenMetadataStore] = None,
    ):
        self.network = network
        self.registry = registry
        self.settlement = settlement
        self.metadata = metadata
        self.program_id = registry.program_id

    @classmethod
    def from_settings(
        cls,
        settings: VaultSettings,
        session: Optional[requests.Session] = None,
        metadata: Optional[TokenMetadataStore] = None,
    ) -> "VaultService":
        """Wire a service against a live node from VaultSettings."""
        node = RpcLedgerNetwork(settings.rpc_url, program_id=settings.program_id, session=session)
        ledger = ResilientLedger(
            node,
            max_attempts=settings.read_attempts,
            base_delay=settings.retry_base_delay,
        )
        registry = LockRegistry(
            ledger,
            SqliteRegistryStore(settings.registry_path),
            program_id=settings.program_id,
        )
        settlement = RewardSettlementService(registry, ledger, settings.treasury)
        return cls(ledger, registry, settlement, metadata)

    # ========================================================================
    # VAULT OPERATIONS
    # ========================================================================

    def initialize(self, owner: Keypair) -> Confirmation:
        """
        Create the owner's vault and reward accounts (and collectible, if a
        metadata store is configured).

        Raises:
            AlreadyInitialized: The vault already exists
        """
        address = derive_vault_address(owner.pubkey(), self.program_id)
        try:
            self.network.fetch_vault(address)
        except AccountNotFound:
            pass
        else:
            raise AlreadyInitialized(f"Vault of {owner.pubkey()} already initialized")

        confirmation = self.network.submit(initialize_instruction(owner.pubkey()), owner)
        if self.metadata is not None:
            self._advisory("mint", self.metadata.mint, owner.pubkey(), METADATA_URIS[TokenStage.SPROUT])
        return confirmation

    def deposit(self, owner: Keypair, amount: int) -> Confirmation:
        confirmation = self.network.submit(deposit_instruction(owner.pubkey(), amount), owner)
        self._refresh_stage(owner.pubkey())
        return confirmation

    def withdraw(self, owner: Keypair, amount: int) -> Confirmation:
        """
        Withdraw to the owner's spendable account.

        Raises:
            InsufficientAvailableBalance: amount exceeds balance minus active locks
        """
        self._check_available(owner.pubkey(), amount)
        confirmation = self.network.submit(withdraw_instruction(owner.pubkey(), amount), owner)
        self._refresh_stage(owner.pubkey())
        return confirmation

    def transfer(self, owner: Keypair, recipient: Identity, amount: int) -> Confirmation:
        """Pay out of the vault to another account, subject to the same lock check as withdraw."""
        self._check_available(owner.pubkey(), amount)
        confirmation = self.network.submit(
            vault_transfer_instruction(owner.pubkey(), as_pubkey(recipient), amount), owner
        )
        self._refresh_stage(owner.pubkey())
        return confirmation

    def _check_available(self, owner, amount: int) -> None:
        validate_amount(amount)
        available = self.registry.available_balance(owner)
        if amount > available:
            raise InsufficientAvailableBalance(
                f"{amount} exceeds available balance {available} of {owner} "
                f"({self.registry.locked_total(owner)} locked)"
            )

    # ========================================================================
    # LOCK OPERATIONS
    # ========================================================================

    def create_lock(self, owner: Identity, amount: int, duration_hours) -> Lock:
        return self.registry.create_lock(owner, amount, duration_hours)

    def unlock(self, lock_id: str, owner: Identity, force: bool = False) -> Settlement:
        return self.settlement.settle(lock_id, owner, force_exit=force)

    def close_account(self, owner: Identity) -> int:
        """
        Remove the owner's lock data. All locks, active or claimed, are
        deleted. Returns the number of locks removed.

        The vault and reward accounts stay on the ledger: the program has no
        close instruction, so their balances remain withdrawable.
        """
        return self.registry.clear_owner(owner)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def snapshot(self, owner: Identity) -> VaultSnapshot:
        """Fresh read of balance, accrual points, locks and collectible stage."""
        owner = as_pubkey(owner)
        balance = self.registry.vault_balance(owner)
        try:
            reward_points = self.network.fetch_reward(
                derive_reward_address(owner, self.program_id)
            ).balance
        except AccountNotFound:
            reward_points = 0
        locks = self.registry.list_active_locks(owner)
        locked = sum(lock.amount for lock in locks)
        return VaultSnapshot(
            owner=str(owner),
            balance=balance,
            reward_points=reward_points,
            locked=locked,
            available=balance - locked,
            active_locks=locks,
            stage=select_stage(balance),
        )

    # ========================================================================
    # COLLECTIBLE (advisory)
    # ========================================================================

    def _refresh_stage(self, owner) -> None:
        if self.metadata is None:
            return
        try:
            balance = self.registry.vault_balance(owner)
        except VaultError as exc:
            logger.warning("Skipping collectible refresh for %s: %s", owner, exc)
            return
        self._advisory("refresh", refresh_token_stage, self.metadata, owner, balance)

    @staticmethod
    def _advisory(label: str, func, *args) -> None:
        # Collectible updates never fail the operation that triggered them
        try:
            func(*args)
        except Exception as exc:
            logger.warning("Collectible %s failed: %s", label, exc)

    # ========================================================================
    # REQUEST SURFACE
    # ========================================================================

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process one request dict.

        Requests:
            {"action": "create", "owner", "amount", "durationHours"}
                -> {"success": True, "lockId", "rewardAmount", "endsAt"}
            {"action": "unlock", "owner", "lockId", "force"}
                -> {"success": True, "rewardPaid", "transferred", "signature"}

        Any failure -> {"success": False, "error": message, "kind": error kind}.
        Failures outside the VaultError taxonomy (store or transport faults)
        are logged with their traceback and reported with kind "error".
        """
        try:
            action = request.get("action")
            if action == "create":
                return self._handle_create(request)
            if action == "unlock":
                return self._handle_unlock(request)
            raise ValidationError(f"Invalid action: {action!r}")
        except VaultError as exc:
            logger.info("Request %s failed (%s): %s", request.get("action"), exc.kind, exc)
            return {"success": False, "error": str(exc), "kind": exc.kind}
        except Exception as exc:
            logger.exception("Request %s failed unexpectedly", request.get("action"))
            return {"success": False, "error": str(exc), "kind": VaultError.kind}

    @staticmethod
    def _field(request: Dict[str, Any], name: str):
        if request.get(name) is None:
            raise ValidationError(f"Missing field: {name}")
        return request[name]

    @staticmethod
    def _force_flag(request: Dict[str, Any]) -> bool:
        force = request.get("force")
        if force is None:
            return False
        if not isinstance(force, bool):
            raise ValidationError(f"force must be a boolean, got {force!r}")
        return force

    def _handle_create(self, request: Dict[str, Any]) -> Dict[str, Any]:
        lock = self.create_lock(
            self._field(request, "owner"),
            self._field(request, "amount"),
            self._field(request, "durationHours"),
        )
        return {
            "success": True,
            "lockId": lock.id,
            "rewardAmount": lock.reward_amount,
            "endsAt": lock.ends_at.isoformat(),
        }

    def _handle_unlock(self, request: Dict[str, Any]) -> Dict[str, Any]:
        settlement = self.unlock(
            self._field(request, "lockId"),
            self._field(request, "owner"),
            force=self._force_flag(request),
        )
        return {
            "success": True,
            "rewardPaid": settlement.reward_paid,
            "transferred": settlement.transferred,
            "signature": settlement.signature,
        }
