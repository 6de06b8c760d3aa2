"""
Unit tests for reward settlement.
"""

import pytest
from decimal import Decimal

from growvault import (
    LockRegistry, InMemoryRegistryStore, RewardSettlementService, LockStatus,
    AlreadySettled, ConfirmationUnknown, LockNotFound, SettlementIncomplete,
    StillLocked, TreasuryInsufficient,
)

from tests.fake_network import ScriptedNetwork, advance_hours, keypair


@pytest.fixture
def lock(program, registry, funded_alice):
    program.deposit(funded_alice, 2000)
    return registry.create_lock(funded_alice.pubkey(), 1000, 24)


class FailingStatusStore(InMemoryRegistryStore):
    """Store whose status updates fail until healed."""

    def __init__(self):
        super().__init__()
        self.broken = True

    def update_status(self, lock_id, expected, new):
        if self.broken:
            raise OSError("registry unavailable")
        return super().update_status(lock_id, expected, new)


class TestSettleAtMaturity:

    def test_pays_full_reward(self, program, registry, settlement, lock, funded_alice):
        advance_hours(program, 24)
        result = settlement.settle(lock.id, funded_alice.pubkey())
        assert result.matured
        assert result.reward_paid == lock.reward_amount
        assert registry.get_lock(lock.id).status == LockStatus.CLAIMED

    def test_sub_unit_reward_moves_nothing(self, program, settlement, treasury, lock, funded_alice):
        # 0.273972602 of a base unit cannot move on the ledger
        before = program.get_balance(treasury.pubkey())
        advance_hours(program, 24)
        result = settlement.settle(lock.id, funded_alice.pubkey())
        assert result.transferred == 0
        assert result.signature is None
        assert program.get_balance(treasury.pubkey()) == before

    def test_whole_units_transferred(self, program, registry, settlement, treasury, funded_alice):
        program.deposit(funded_alice, 10**9)
        big = registry.create_lock(funded_alice.pubkey(), 10**9, 8760)
        owner_before = program.get_balance(funded_alice.pubkey())
        treasury_before = program.get_balance(treasury.pubkey())
        advance_hours(program, 8760)

        result = settlement.settle(big.id, funded_alice.pubkey())

        assert result.reward_paid == Decimal("100000000")
        assert result.transferred == 100_000_000
        assert result.signature is not None
        assert program.get_balance(funded_alice.pubkey()) == owner_before + 100_000_000
        assert program.get_balance(treasury.pubkey()) == treasury_before - 100_000_000

    def test_principal_released(self, program, registry, settlement, lock, funded_alice):
        assert registry.available_balance(funded_alice.pubkey()) == 1000
        advance_hours(program, 24)
        settlement.settle(lock.id, funded_alice.pubkey())
        assert registry.available_balance(funded_alice.pubkey()) == 2000

    def test_at_exact_end_time(self, program, settlement, lock, funded_alice):
        program.advance_time(lock.ends_at)
        assert settlement.settle(lock.id, funded_alice.pubkey()).matured


class TestSettleEarly:

    def test_still_locked(self, program, registry, settlement, lock, funded_alice):
        advance_hours(program, 23)
        with pytest.raises(StillLocked):
            settlement.settle(lock.id, funded_alice.pubkey())
        assert registry.get_lock(lock.id).status == LockStatus.ACTIVE

    def test_force_exit_forfeits_reward(self, program, registry, settlement, treasury, lock, funded_alice):
        before = program.get_balance(treasury.pubkey())
        result = settlement.settle(lock.id, funded_alice.pubkey(), force_exit=True)
        assert result.reward_paid == 0
        assert not result.matured
        assert program.get_balance(treasury.pubkey()) == before
        assert registry.get_lock(lock.id).status == LockStatus.CLAIMED
        # Principal was never moved out of the vault
        assert registry.vault_balance(funded_alice.pubkey()) == 2000

    def test_force_after_maturity_pays(self, program, settlement, lock, funded_alice):
        advance_hours(program, 25)
        result = settlement.settle(lock.id, funded_alice.pubkey(), force_exit=True)
        assert result.reward_paid == lock.reward_amount


class TestSettleRejections:

    def test_missing_lock(self, settlement, funded_alice):
        with pytest.raises(LockNotFound):
            settlement.settle("missing", funded_alice.pubkey())

    def test_other_owner_sees_not_found(self, program, settlement, lock, bob):
        advance_hours(program, 24)
        with pytest.raises(LockNotFound):
            settlement.settle(lock.id, bob.pubkey())

    def test_double_settlement(self, program, settlement, lock, funded_alice):
        advance_hours(program, 24)
        settlement.settle(lock.id, funded_alice.pubkey())
        with pytest.raises(AlreadySettled):
            settlement.settle(lock.id, funded_alice.pubkey())

    def test_treasury_insufficient(self, program, funded_alice):
        registry = LockRegistry(program, InMemoryRegistryStore(), clock=lambda: program.current_time)
        poor = keypair(201)
        program.airdrop(poor.pubkey(), 5)
        settlement = RewardSettlementService(registry, program, poor)
        program.deposit(funded_alice, 10**6)
        lock = registry.create_lock(funded_alice.pubkey(), 10**6, 8760)
        advance_hours(program, 8760)

        with pytest.raises(TreasuryInsufficient):
            settlement.settle(lock.id, funded_alice.pubkey())
        assert registry.get_lock(lock.id).status == LockStatus.ACTIVE
        assert program.get_balance(poor.pubkey()) == 5

    def test_unfunded_treasury_counts_as_empty(self, program, registry, lock, funded_alice):
        settlement = RewardSettlementService(registry, program, keypair(202))
        assert settlement.treasury_balance() == 0
        advance_hours(program, 24)
        with pytest.raises(TreasuryInsufficient):
            settlement.settle(lock.id, funded_alice.pubkey())
        assert registry.get_lock(lock.id).status == LockStatus.ACTIVE


class TestPartialFailure:

    def test_unknown_transfer_keeps_lock_active(self, program, registry, treasury, funded_alice):
        network = ScriptedNetwork(program)
        network.fail("submit", ConfirmationUnknown("timeout", signature="sig-x"))
        settlement = RewardSettlementService(registry, network, treasury)
        program.deposit(funded_alice, 10**9)
        lock = registry.create_lock(funded_alice.pubkey(), 10**9, 8760)
        advance_hours(program, 8760)

        with pytest.raises(ConfirmationUnknown):
            settlement.settle(lock.id, funded_alice.pubkey())
        assert registry.get_lock(lock.id).status == LockStatus.ACTIVE

    def test_status_failure_after_payout(self, program, treasury, funded_alice):
        store = FailingStatusStore()
        registry = LockRegistry(program, store, clock=lambda: program.current_time)
        settlement = RewardSettlementService(registry, program, treasury)
        program.deposit(funded_alice, 10**9)
        lock = registry.create_lock(funded_alice.pubkey(), 10**9, 8760)
        advance_hours(program, 8760)
        treasury_before = program.get_balance(treasury.pubkey())

        with pytest.raises(SettlementIncomplete) as info:
            settlement.settle(lock.id, funded_alice.pubkey())
        assert info.value.lock_id == lock.id
        assert info.value.signature is not None

        store.broken = False
        assert settlement.finalize(lock.id)
        assert registry.get_lock(lock.id).status == LockStatus.CLAIMED
        # finalize never pays a second time
        assert program.get_balance(treasury.pubkey()) == treasury_before - 100_000_000

    def test_status_failure_without_payout_propagates(self, program, treasury, funded_alice):
        registry = LockRegistry(program, FailingStatusStore(), clock=lambda: program.current_time)
        settlement = RewardSettlementService(registry, program, treasury)
        program.deposit(funded_alice, 2000)
        lock = registry.create_lock(funded_alice.pubkey(), 1000, 24)
        with pytest.raises(OSError):
            settlement.settle(lock.id, funded_alice.pubkey(), force_exit=True)

    def test_finalize_settled_lock(self, program, settlement, lock, funded_alice):
        settlement.settle(lock.id, funded_alice.pubkey(), force_exit=True)
        assert settlement.finalize(lock.id) is False
