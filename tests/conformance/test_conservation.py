"""
Conservation Conformance Tests

INVARIANT: Instructions redistribute lamports; they never create or
destroy them.

    Σ spendable + Σ (vault balance + rent) + Σ reward-account rent = constant

Only test-mode airdrops change the total. Reward settlement moves lamports
from the treasury to the owner, so it is conserved too.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from growvault import VaultError

from tests.fake_network import OWNER_FUNDING, advance_hours, keypair, make_system


operations = st.lists(
    st.one_of(
        st.tuples(st.just("deposit"), st.integers(min_value=1, max_value=10**9)),
        st.tuples(st.just("withdraw"), st.integers(min_value=1, max_value=10**9)),
        st.tuples(st.just("transfer"), st.integers(min_value=1, max_value=10**9)),
        st.tuples(st.just("lock"), st.integers(min_value=1, max_value=10**9)),
        st.tuples(st.just("settle"), st.booleans()),
    ),
    min_size=1,
    max_size=30,
)


class TestConservationProperties:

    @given(operations)
    @settings(max_examples=60, deadline=None)
    def test_total_lamports_constant(self, ops):
        program, registry, settlement, service, treasury = make_system()
        alice, bob = keypair(1), keypair(2)
        program.airdrop(alice.pubkey(), OWNER_FUNDING)
        total = program.total_lamports()

        service.initialize(alice)
        lock_ids = []
        for kind, arg in ops:
            try:
                if kind == "deposit":
                    service.deposit(alice, arg)
                elif kind == "withdraw":
                    service.withdraw(alice, arg)
                elif kind == "transfer":
                    service.transfer(alice, bob.pubkey(), arg)
                elif kind == "lock":
                    lock_ids.append(service.create_lock(alice.pubkey(), arg, 8760).id)
                elif kind == "settle" and lock_ids:
                    if arg:
                        advance_hours(program, 8760)
                    service.unlock(lock_ids.pop(0), alice.pubkey(), force=True)
            except VaultError:
                pass
            assert program.total_lamports() == total
