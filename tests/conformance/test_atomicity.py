"""
Atomicity Conformance Tests

INVARIANT: A rejected operation leaves no partial effect.

    op raises ⟹ ledger state and registry state are unchanged

Every rejection (validation, insufficient funds, availability, treasury)
happens before the first write.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from growvault import (
    InsufficientAvailableBalance, InsufficientFunds, InvalidAmount,
    TreasuryInsufficient, VaultError,
)

from tests.fake_network import OWNER_FUNDING, advance_hours, keypair, make_system


def state(program, registry, owner):
    return (
        dict(program.vaults),
        dict(program.rewards),
        dict(program.lamports),
        len(program.instruction_log),
        tuple(registry.list_active_locks(owner)),
    )


class TestAtomicity:

    @given(st.integers(min_value=1, max_value=10**6), st.integers(min_value=1, max_value=10**6))
    @settings(max_examples=50, deadline=None)
    def test_overdrawn_withdrawal_changes_nothing(self, deposit, excess):
        program, registry, settlement, service, treasury = make_system()
        alice = keypair(1)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        service.initialize(alice)
        service.deposit(alice, deposit)
        advance_hours(program, 1)
        before = state(program, registry, alice.pubkey())

        with pytest.raises(VaultError):
            service.withdraw(alice, deposit + excess)
        with pytest.raises(InsufficientFunds):
            program.withdraw(alice, deposit + excess)

        assert state(program, registry, alice.pubkey()) == before

    def test_lock_over_availability_changes_nothing(self):
        program, registry, settlement, service, treasury = make_system()
        alice = keypair(1)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        service.initialize(alice)
        service.deposit(alice, 1000)
        service.create_lock(alice.pubkey(), 800, 24)
        before = state(program, registry, alice.pubkey())

        with pytest.raises(InsufficientAvailableBalance):
            service.create_lock(alice.pubkey(), 201, 24)
        with pytest.raises(InsufficientAvailableBalance):
            service.withdraw(alice, 201)
        with pytest.raises(InvalidAmount):
            service.create_lock(alice.pubkey(), -5, 24)

        assert state(program, registry, alice.pubkey()) == before

    def test_underfunded_treasury_changes_nothing(self):
        program, registry, settlement, service, treasury = make_system(treasury_funding=0)
        alice = keypair(1)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        service.initialize(alice)
        service.deposit(alice, 10**9)
        lock = service.create_lock(alice.pubkey(), 10**9, 8760)
        advance_hours(program, 8760)
        before = state(program, registry, alice.pubkey())

        with pytest.raises(TreasuryInsufficient):
            service.unlock(lock.id, alice.pubkey())

        assert state(program, registry, alice.pubkey()) == before
