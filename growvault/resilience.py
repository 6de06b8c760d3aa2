"""
resilience.py - Retry policy for ledger reads

Reads that hit a rate limit are retried with exponential backoff (the delay
doubles after every attempt). Any other failure propagates immediately.

Writes are never retried here: resubmitting an instruction whose outcome is
unknown can apply it twice. ResilientLedger passes submit() straight through.
"""

from __future__ import annotations
import logging
import time
from typing import Callable

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from tenacity import (
    Retrying,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .core import Confirmation, Instruction, RateLimited, RewardAccrualAccount, VaultAccount
from .network import LedgerNetwork

logger = logging.getLogger(__name__)

# One initial attempt plus three retries, waiting 1s, 2s, 4s.
DEFAULT_READ_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 1.0


def _policy(max_attempts: int, base_delay: float) -> dict:
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if base_delay < 0:
        raise ValueError(f"base_delay must be >= 0, got {base_delay}")
    return dict(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception_type(RateLimited),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_reads(
    max_attempts: int = DEFAULT_READ_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator retrying a read function on RateLimited.

    Example:
        @retry_reads(max_attempts=3)
        def latest_balance(address):
            return network.get_balance(address)
    """
    return retry(sleep=sleep, **_policy(max_attempts, base_delay))


class ResilientLedger:
    """
    LedgerNetwork wrapper that retries rate-limited reads.

    submit() is forwarded untouched and is never retried.
    """

    def __init__(
        self,
        network: LedgerNetwork,
        max_attempts: int = DEFAULT_READ_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.network = network
        self._retrying = Retrying(sleep=sleep, **_policy(max_attempts, base_delay))

    def get_balance(self, address: Pubkey) -> int:
        return self._retrying(self.network.get_balance, address)

    def fetch_vault(self, address: Pubkey) -> VaultAccount:
        return self._retrying(self.network.fetch_vault, address)

    def fetch_reward(self, address: Pubkey) -> RewardAccrualAccount:
        return self._retrying(self.network.fetch_reward, address)

    def submit(self, instruction: Instruction, signer: Keypair) -> Confirmation:
        return self.network.submit(instruction, signer)

    def __repr__(self):
        return f"ResilientLedger({self.network!r})"
