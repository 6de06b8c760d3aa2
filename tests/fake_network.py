"""
fake_network.py - Test helpers for the LedgerNetwork boundary

Provides:
- ScriptedNetwork: wraps a real LedgerNetwork and injects scripted failures
- Deterministic keypairs and a fully wired in-process system
"""

from __future__ import annotations
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from growvault import (
    VaultProgram, LockRegistry, InMemoryRegistryStore,
    RewardSettlementService, VaultService,
    Confirmation, Instruction, RewardAccrualAccount, VaultAccount,
    LAMPORTS_PER_SOL,
)


START_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)

OWNER_FUNDING = 10 * LAMPORTS_PER_SOL
TREASURY_FUNDING = 100 * LAMPORTS_PER_SOL
TREASURY_SEED = 200


def keypair(n: int) -> Keypair:
    """Deterministic keypair from a one-byte seed pattern."""
    return Keypair.from_seed(bytes([n]) * 32)


def advance_hours(program: VaultProgram, hours: float) -> None:
    program.advance_time(program.current_time + timedelta(hours=hours))


def make_system(verbose: bool = False, treasury_funding: int = TREASURY_FUNDING):
    """
    Build (program, registry, settlement, service, treasury) without fixtures.

    Property tests call this directly because hypothesis does not reset
    function-scoped fixtures between examples.
    """
    program = VaultProgram("test", initial_time=START_TIME, verbose=verbose, test_mode=True)
    treasury = keypair(TREASURY_SEED)
    if treasury_funding:
        program.airdrop(treasury.pubkey(), treasury_funding)
    registry = LockRegistry(program, InMemoryRegistryStore(), clock=lambda: program.current_time)
    settlement = RewardSettlementService(registry, program, treasury)
    service = VaultService(program, registry, settlement)
    return program, registry, settlement, service, treasury


class ScriptedNetwork:
    """
    LedgerNetwork that fails on demand.

    Each method pops the next scripted exception for it, if any, and raises
    it; otherwise the call goes to the wrapped network.

    Example:
        network = ScriptedNetwork(program)
        network.fail("get_balance", RateLimited("429"), RateLimited("429"))
        network.get_balance(addr)   # raises
        network.get_balance(addr)   # raises
        network.get_balance(addr)   # real value
    """

    def __init__(self, inner):
        self.inner = inner
        self.failures: Dict[str, deque] = defaultdict(deque)
        self.calls: List[Tuple[str, tuple]] = []

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures[method].extend(errors)

    def _call(self, method: str, *args):
        self.calls.append((method, args))
        if self.failures[method]:
            raise self.failures[method].popleft()
        return getattr(self.inner, method)(*args)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def get_balance(self, address: Pubkey) -> int:
        return self._call("get_balance", address)

    def fetch_vault(self, address: Pubkey) -> VaultAccount:
        return self._call("fetch_vault", address)

    def fetch_reward(self, address: Pubkey) -> RewardAccrualAccount:
        return self._call("fetch_reward", address)

    def submit(self, instruction: Instruction, signer: Keypair) -> Confirmation:
        return self._call("submit", instruction, signer)


class SleepRecorder:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
