"""
Lock Coverage Conformance Tests

INVARIANT: For every owner, at all times:

    vault.balance >= Σ amount of the owner's active locks

equivalently available_balance(owner) >= 0. Every debit path (withdraw,
transfer, lock creation) is checked against availability; settlement only
ever releases principal.

These tests drive arbitrary operation sequences through the service and
check the invariant after every step.
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from growvault import VaultError

from tests.fake_network import OWNER_FUNDING, advance_hours, keypair, make_system


# =============================================================================
# STRATEGIES
# =============================================================================

amounts = st.integers(min_value=1, max_value=5_000)

operations = st.lists(
    st.one_of(
        st.tuples(st.just("deposit"), amounts),
        st.tuples(st.just("withdraw"), amounts),
        st.tuples(st.just("transfer"), amounts),
        st.tuples(st.just("lock"), amounts, st.integers(min_value=1, max_value=72)),
        st.tuples(st.just("unlock"), st.integers(min_value=0, max_value=10), st.booleans()),
        st.tuples(st.just("wait"), st.integers(min_value=1, max_value=48)),
    ),
    min_size=1,
    max_size=40,
)


def run(service, program, alice, bob, op, lock_ids):
    kind = op[0]
    if kind == "deposit":
        service.deposit(alice, op[1])
    elif kind == "withdraw":
        service.withdraw(alice, op[1])
    elif kind == "transfer":
        service.transfer(alice, bob.pubkey(), op[1])
    elif kind == "lock":
        lock_ids.append(service.create_lock(alice.pubkey(), op[1], op[2]).id)
    elif kind == "unlock":
        if lock_ids:
            service.unlock(lock_ids[op[1] % len(lock_ids)], alice.pubkey(), force=op[2])
    elif kind == "wait":
        advance_hours(program, op[1])


class TestLockCoverage:

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_available_never_negative(self, ops):
        """
        PROPERTY: No sequence of accepted or rejected operations can leave
        active locks exceeding the vault balance.
        """
        program, registry, settlement, service, treasury = make_system()
        alice, bob = keypair(1), keypair(2)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        service.initialize(alice)

        lock_ids = []
        for op in ops:
            try:
                run(service, program, alice, bob, op, lock_ids)
            except VaultError:
                pass
            snap = service.snapshot(alice.pubkey())
            assert snap.balance >= snap.locked
            assert snap.available == snap.balance - snap.locked

    @given(st.lists(amounts, min_size=1, max_size=20), amounts)
    @settings(max_examples=50, deadline=None)
    def test_locks_accepted_up_to_balance(self, lock_amounts, deposit):
        """
        PROPERTY: The accepted locks sum to at most the deposit, and a lock
        is accepted exactly when it fits the remaining availability.
        """
        program, registry, settlement, service, treasury = make_system()
        alice = keypair(1)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        service.initialize(alice)
        service.deposit(alice, deposit)

        committed = 0
        for amount in lock_amounts:
            fits = committed + amount <= deposit
            try:
                service.create_lock(alice.pubkey(), amount, 24)
                accepted = True
            except VaultError:
                accepted = False
            assert accepted == fits
            if accepted:
                committed += amount
        assert registry.locked_total(alice.pubkey()) == committed <= deposit
