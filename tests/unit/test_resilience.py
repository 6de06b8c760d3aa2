"""
Unit tests for the read retry policy.
"""

import logging

import pytest

from growvault import (
    ResilientLedger, retry_reads, RateLimited, AccountNotFound, ConfirmationUnknown,
    derive_vault_address, derive_reward_address, deposit_instruction,
)

from tests.fake_network import ScriptedNetwork, SleepRecorder


@pytest.fixture
def sleep():
    return SleepRecorder()


class TestResilientLedger:

    def test_retries_rate_limited_reads(self, program, funded_alice, sleep):
        network = ScriptedNetwork(program)
        network.fail("get_balance", RateLimited("429"), RateLimited("429"))
        ledger = ResilientLedger(network, sleep=sleep)

        assert ledger.get_balance(funded_alice.pubkey()) == program.get_balance(funded_alice.pubkey())
        assert network.count("get_balance") == 3
        assert sleep.delays == [1, 2]

    def test_backoff_doubles_then_gives_up(self, program, funded_alice, sleep):
        network = ScriptedNetwork(program)
        network.fail("fetch_vault", *[RateLimited("429") for _ in range(10)])
        ledger = ResilientLedger(network, sleep=sleep)

        with pytest.raises(RateLimited):
            ledger.fetch_vault(derive_vault_address(funded_alice.pubkey()))
        assert network.count("fetch_vault") == 4
        assert sleep.delays == [1, 2, 4]

    def test_custom_base_delay(self, program, funded_alice, sleep):
        network = ScriptedNetwork(program)
        network.fail("fetch_reward", RateLimited("429"), RateLimited("429"))
        ledger = ResilientLedger(network, max_attempts=3, base_delay=0.5, sleep=sleep)
        ledger.fetch_reward(derive_reward_address(funded_alice.pubkey()))
        assert sleep.delays == [0.5, 1.0]

    def test_other_errors_not_retried(self, program, alice, sleep):
        network = ScriptedNetwork(program)
        ledger = ResilientLedger(network, sleep=sleep)
        with pytest.raises(AccountNotFound):
            ledger.get_balance(alice.pubkey())
        assert network.count("get_balance") == 1
        assert sleep.delays == []

    def test_submit_never_retried(self, program, funded_alice, sleep):
        network = ScriptedNetwork(program)
        network.fail("submit", RateLimited("429"))
        ledger = ResilientLedger(network, sleep=sleep)
        with pytest.raises(RateLimited):
            ledger.submit(deposit_instruction(funded_alice.pubkey(), 100), funded_alice)
        assert network.count("submit") == 1
        assert sleep.delays == []

    def test_unknown_outcome_passes_through(self, program, funded_alice, sleep):
        network = ScriptedNetwork(program)
        network.fail("submit", ConfirmationUnknown("timeout"))
        ledger = ResilientLedger(network, sleep=sleep)
        with pytest.raises(ConfirmationUnknown):
            ledger.submit(deposit_instruction(funded_alice.pubkey(), 100), funded_alice)

    def test_retries_logged(self, program, funded_alice, sleep, caplog):
        network = ScriptedNetwork(program)
        network.fail("get_balance", RateLimited("429"))
        ledger = ResilientLedger(network, sleep=sleep)
        with caplog.at_level(logging.WARNING, logger="growvault.resilience"):
            ledger.get_balance(funded_alice.pubkey())
        assert any("Retrying" in record.getMessage() for record in caplog.records)

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"base_delay": -1}])
    def test_invalid_policy(self, program, kwargs):
        with pytest.raises(ValueError):
            ResilientLedger(program, **kwargs)


class TestRetryReadsDecorator:

    def test_decorated_function(self, sleep):
        attempts = []

        @retry_reads(max_attempts=3, sleep=sleep)
        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise RateLimited("429")
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3
        assert sleep.delays == [1, 2]

    def test_decorator_reraises_original(self, sleep):
        @retry_reads(max_attempts=2, sleep=sleep)
        def always_limited():
            raise RateLimited("still 429")

        with pytest.raises(RateLimited, match="still 429"):
            always_limited()
