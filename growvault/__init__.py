"""
growvault - Vault & Time-Locked Reward Accounting Engine

A user custodies a balance in a program-governed vault, earns accrual points
on it, and may commit part of it to a time-boxed lock paying a fixed-rate
reward at maturity (forfeited on early exit).

Usage:
    from growvault import (
        VaultProgram, LockRegistry, InMemoryRegistryStore,
        RewardSettlementService, VaultService,
    )

    program = VaultProgram(test_mode=True)
    registry = LockRegistry(program, InMemoryRegistryStore(),
                            clock=lambda: program.current_time)
    settlement = RewardSettlementService(registry, program, treasury)
    service = VaultService(program, registry, settlement)

    service.initialize(alice)
    service.deposit(alice, 2_000)
    lock = service.create_lock(alice.pubkey(), 1_500, 24)
    service.withdraw(alice, 500)                       # available: 500
    service.unlock(lock.id, alice.pubkey(), force=True)  # reward forfeited
"""

# Core types
from .core import (
    VaultAccount,
    RewardAccrualAccount,
    Lock,
    LockStatus,
    Instruction,
    Confirmation,
    ExecuteResult,
    initialize_instruction,
    deposit_instruction,
    withdraw_instruction,
    vault_transfer_instruction,
    system_transfer_instruction,
    compute_lock_reward,
    compute_accrual,
    compute_available_balance,
    transferable_units,
    lamports_to_sol,
    sol_to_lamports,
    PROGRAM_ID,
    LAMPORTS_PER_SOL,
    ANNUAL_PERCENTAGE_RATE,
    HOURS_PER_YEAR,
    MAX_LOCK_DURATION_HOURS,
    LEGENDARY_THRESHOLD,
)

# Errors
from .core import (
    VaultError,
    ValidationError,
    InvalidAmount,
    InvalidDuration,
    InvalidIdentity,
    StateError,
    AlreadyInitialized,
    Uninitialized,
    InsufficientFunds,
    InsufficientAvailableBalance,
    StillLocked,
    AlreadySettled,
    LockNotFound,
    AccountNotFound,
    SignerMismatch,
    ResourceError,
    TreasuryInsufficient,
    TransientNetworkError,
    RateLimited,
    OutcomeUnknown,
    ConfirmationUnknown,
    SettlementIncomplete,
)

# Addressing
from .deriver import (
    as_pubkey,
    find_vault_address,
    find_reward_address,
    derive_vault_address,
    derive_reward_address,
    derive_token_identity,
)

# Ledger
from .network import LedgerNetwork
from .program import VaultProgram
from .rpc import RpcLedgerNetwork, RpcError, RpcTransportError, TransactionFailed
from .resilience import ResilientLedger, retry_reads

# Locks and settlement
from .store import RegistryStore, InMemoryRegistryStore, SqliteRegistryStore
from .registry import LockRegistry, validate_duration
from .settlement import RewardSettlementService, Settlement

# Collectible
from .collectible import (
    TokenStage,
    TokenMetadataStore,
    InMemoryTokenMetadata,
    METADATA_URIS,
    select_stage,
    refresh_token_stage,
)

# Service
from .config import VaultSettings
from .service import VaultService, VaultSnapshot

__version__ = "0.1.0"

__all__ = [
    # Core types
    'VaultAccount', 'RewardAccrualAccount', 'Lock', 'LockStatus',
    'Instruction', 'Confirmation', 'ExecuteResult',
    'initialize_instruction', 'deposit_instruction', 'withdraw_instruction',
    'vault_transfer_instruction', 'system_transfer_instruction',
    'compute_lock_reward', 'compute_accrual', 'compute_available_balance',
    'transferable_units', 'lamports_to_sol', 'sol_to_lamports',
    'PROGRAM_ID', 'LAMPORTS_PER_SOL', 'ANNUAL_PERCENTAGE_RATE', 'HOURS_PER_YEAR',
    'MAX_LOCK_DURATION_HOURS', 'LEGENDARY_THRESHOLD',
    # Errors
    'VaultError', 'ValidationError', 'InvalidAmount', 'InvalidDuration',
    'InvalidIdentity', 'StateError', 'AlreadyInitialized', 'Uninitialized',
    'InsufficientFunds', 'InsufficientAvailableBalance', 'StillLocked',
    'AlreadySettled', 'LockNotFound', 'AccountNotFound', 'SignerMismatch',
    'ResourceError', 'TreasuryInsufficient', 'TransientNetworkError',
    'RateLimited', 'OutcomeUnknown', 'ConfirmationUnknown', 'SettlementIncomplete',
    # Addressing
    'as_pubkey', 'find_vault_address', 'find_reward_address',
    'derive_vault_address', 'derive_reward_address', 'derive_token_identity',
    # Ledger
    'LedgerNetwork', 'VaultProgram', 'RpcLedgerNetwork', 'RpcError', 'RpcTransportError',
    'TransactionFailed', 'ResilientLedger', 'retry_reads',
    # Locks and settlement
    'RegistryStore', 'InMemoryRegistryStore', 'SqliteRegistryStore',
    'LockRegistry', 'validate_duration', 'RewardSettlementService', 'Settlement',
    # Collectible
    'TokenStage', 'TokenMetadataStore', 'InMemoryTokenMetadata', 'METADATA_URIS',
    'select_stage', 'refresh_token_stage',
    # Service
    'VaultSettings', 'VaultService', 'VaultSnapshot',
]
