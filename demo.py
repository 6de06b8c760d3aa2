#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Grow Vault Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation    - Addresses, initializing a vault, depositing
  4-6:  Accrual       - Time, accrual points, idempotent resubmission
  7-9:  Locks         - Committing principal, the availability rule, withdrawal
  10-12: Settlement   - Early exit, maturity payout, the request surface

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import sys

from solders.keypair import Keypair

from growvault import (
    VaultProgram, LockRegistry, InMemoryRegistryStore, InMemoryTokenMetadata,
    RewardSettlementService, VaultService,
    derive_vault_address, derive_reward_address, derive_token_identity,
    deposit_instruction, lamports_to_sol,
    InsufficientAvailableBalance, StillLocked,
    LAMPORTS_PER_SOL,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    alice_funding: int = 10 * LAMPORTS_PER_SOL
    treasury_funding: int = 50 * LAMPORTS_PER_SOL

    deposit: int = 2 * LAMPORTS_PER_SOL
    lock_amount: int = 1_500_000_000
    lock_hours: int = 24 * 30


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def sol(lamports) -> str:
    return f"{lamports_to_sol(lamports):f} SOL"


def show(service: VaultService, owner: Keypair):
    snap = service.snapshot(owner.pubkey())
    print(f"Vault balance:   {sol(snap.balance)}")
    print(f"Locked:          {sol(snap.locked)}")
    print(f"Available:       {sol(snap.available)}")
    print(f"Accrual points:  {snap.reward_points}")
    print(f"Collectible:     {snap.stage.name}")


# ============================================================================
# SETUP
# ============================================================================

def build_system():
    program = VaultProgram("tutorial", initial_time=CONFIG.start_time, verbose=True, test_mode=True)
    registry = LockRegistry(program, InMemoryRegistryStore(), clock=lambda: program.current_time)
    treasury = Keypair.from_seed(bytes([200]) * 32)
    program.airdrop(treasury.pubkey(), CONFIG.treasury_funding)
    settlement = RewardSettlementService(registry, program, treasury)
    service = VaultService(program, registry, settlement, InMemoryTokenMetadata())
    return program, service, treasury


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_addresses(alice: Keypair):
    step_header(1, "Deterministic Addresses",
        "Every account an owner has is computed from the owner key alone.")

    print(f"Owner:           {alice.pubkey()}")
    print(f"Vault:           {derive_vault_address(alice.pubkey())}")
    print(f"Reward account:  {derive_reward_address(alice.pubkey())}")
    print(f"Collectible:     {derive_token_identity(alice.pubkey()).pubkey()}")

    section_header("Key Insight")
    print("""
    No table maps owners to accounts. Any process with the owner key can
    recompute the same addresses, byte for byte.
    """)


def step_02_initialize(program: VaultProgram, service: VaultService, alice: Keypair):
    step_header(2, "Initializing a Vault",
        "initialize() creates the vault and reward account together and pays rent.")

    program.airdrop(alice.pubkey(), CONFIG.alice_funding)
    print(f"Spendable before: {sol(program.get_balance(alice.pubkey()))}")
    print("\n>>> service.initialize(alice)")
    service.initialize(alice)
    print(f"Spendable after:  {sol(program.get_balance(alice.pubkey()))}")
    show(service, alice)


def step_03_deposit(program: VaultProgram, service: VaultService, alice: Keypair):
    step_header(3, "Depositing",
        "Funds move from the owner's spendable balance into the vault.")

    print(f">>> service.deposit(alice, {CONFIG.deposit})")
    service.deposit(alice, CONFIG.deposit)
    show(service, alice)


# ============================================================================
# PHASE 2: ACCRUAL
# ============================================================================

def step_04_accrual(program: VaultProgram, service: VaultService, alice: Keypair):
    step_header(4, "Accrual Points",
        "Every mutation first accrues balance x elapsed_seconds // 10_000.")

    program.advance_time(program.current_time + timedelta(hours=1))
    print(">>> one hour later, deposit 1 lamport to trigger accrual")
    service.deposit(alice, 1)
    show(service, alice)


def step_05_idempotency(program: VaultProgram, alice: Keypair):
    step_header(5, "Idempotent Resubmission",
        "The same instruction submitted twice is applied once.")

    ix = deposit_instruction(alice.pubkey(), 1_000)
    first = program.submit(ix, alice)
    second = program.submit(ix, alice)
    print(f"First:  {first.result.value}  {first.signature}")
    print(f"Second: {second.result.value}  {second.signature}")


def step_06_audit(program: VaultProgram):
    step_header(6, "The Instruction Log",
        "Every applied instruction is recorded with its slot and signature.")

    for rec in program.instruction_log:
        print(f"  slot {rec.slot:3d}  {rec.instruction.kind:16s} {rec.instruction.amount:>14d}")
    print(f"\nTotal lamports tracked: {program.total_lamports()}")


# ============================================================================
# PHASE 3: LOCKS
# ============================================================================

def step_07_lock(service: VaultService, alice: Keypair):
    step_header(7, "Committing Principal",
        "A lock keeps funds in the vault but removes them from availability.")

    lock = service.create_lock(alice.pubkey(), CONFIG.lock_amount, CONFIG.lock_hours)
    print(f"Lock {lock.id}")
    print(f"  amount:   {sol(lock.amount)}")
    print(f"  matures:  {lock.ends_at.isoformat()}")
    print(f"  reward:   {lock.reward_amount} lamports (fixed now, never recomputed)")
    show(service, alice)
    return lock


def step_08_blocked_withdrawal(service: VaultService, alice: Keypair):
    step_header(8, "The Availability Rule",
        "Withdrawals may only touch balance not committed to an active lock.")

    available = service.snapshot(alice.pubkey()).available
    try:
        service.withdraw(alice, available + 1)
    except InsufficientAvailableBalance as exc:
        print(f"Rejected ({exc.kind}): {exc}")
    print(f"\n>>> service.withdraw(alice, {available})")
    service.withdraw(alice, available)
    show(service, alice)


def step_09_still_locked(service: VaultService, alice: Keypair, lock):
    step_header(9, "Settling Too Early",
        "Before maturity, settlement needs an explicit force exit.")

    try:
        service.unlock(lock.id, alice.pubkey())
    except StillLocked as exc:
        print(f"Rejected ({exc.kind}): {exc}")


# ============================================================================
# PHASE 4: SETTLEMENT
# ============================================================================

def step_10_maturity(program: VaultProgram, service: VaultService, alice: Keypair, treasury: Keypair, lock):
    step_header(10, "Maturity Payout",
        "At maturity the reward moves from the treasury and the principal is released.")

    program.advance_time(lock.ends_at)
    before = program.get_balance(treasury.pubkey())
    result = service.unlock(lock.id, alice.pubkey())
    print(f"Reward paid:     {result.reward_paid}")
    print(f"Transferred:     {result.transferred} lamports")
    print(f"Treasury delta:  {program.get_balance(treasury.pubkey()) - before}")
    show(service, alice)


def step_11_force_exit(service: VaultService, alice: Keypair):
    step_header(11, "Early Exit",
        "Force exit forfeits the reward, never the principal.")

    lock = service.create_lock(alice.pubkey(), 100_000_000, 48)
    result = service.unlock(lock.id, alice.pubkey(), force=True)
    print(f"Reward paid: {result.reward_paid}")
    show(service, alice)


def step_12_requests(service: VaultService, alice: Keypair):
    step_header(12, "The Request Surface",
        "handle() answers every request with a dict, errors included.")

    owner = str(alice.pubkey())
    for request in (
        {"action": "create", "owner": owner, "amount": 1_000, "durationHours": 24},
        {"action": "create", "owner": owner, "amount": 10**12, "durationHours": 24},
        {"action": "unlock", "owner": owner, "lockId": "missing"},
        {"action": "close"},
    ):
        print(f">>> {request}")
        print(f"    {service.handle(request)}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       GROW VAULT - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    program, service, treasury = build_system()
    alice = Keypair.from_seed(bytes([1]) * 32)

    step_01_addresses(alice)
    wait_for_enter()
    step_02_initialize(program, service, alice)
    wait_for_enter()
    step_03_deposit(program, service, alice)
    wait_for_enter()

    step_04_accrual(program, service, alice)
    wait_for_enter()
    step_05_idempotency(program, alice)
    wait_for_enter()
    step_06_audit(program)
    wait_for_enter()

    lock = step_07_lock(service, alice)
    wait_for_enter()
    step_08_blocked_withdrawal(service, alice)
    wait_for_enter()
    step_09_still_locked(service, alice, lock)
    wait_for_enter()

    step_10_maturity(program, service, alice, treasury, lock)
    wait_for_enter()
    step_11_force_exit(service, alice)
    wait_for_enter()
    step_12_requests(service, alice)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - Accounts derive from the owner key
      - The program accrues points before every balance change
      - Locks commit principal without moving it
      - Settlement pays the fixed reward once, or nothing on early exit

    Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
