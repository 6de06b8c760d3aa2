"""
network.py - Ledger network boundary

The LedgerNetwork protocol is everything the off-ledger layer may ask of the
ledger: read balances and account records, and submit signed instructions.

Implementations:
- VaultProgram (program.py): the in-process authoritative program
- RpcLedgerNetwork (rpc.py): a JSON-RPC node
- ResilientLedger (resilience.py): retrying wrapper around either
"""

from __future__ import annotations
from typing import Protocol, runtime_checkable

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .core import Confirmation, Instruction, RewardAccrualAccount, VaultAccount


@runtime_checkable
class LedgerNetwork(Protocol):
    """
    Read/submit interface to the ledger.

    Reads raise AccountNotFound for missing accounts and RateLimited when the
    node throttles. Writes are confirmed-or-raise; a submission whose outcome
    was not observed raises ConfirmationUnknown and must never be blindly
    resubmitted.
    """

    def get_balance(self, address: Pubkey) -> int:
        """Return the lamports held at an address."""
        ...

    def fetch_vault(self, address: Pubkey) -> VaultAccount:
        """Return the decoded vault record at a vault address."""
        ...

    def fetch_reward(self, address: Pubkey) -> RewardAccrualAccount:
        """Return the decoded accrual record at a reward address."""
        ...

    def submit(self, instruction: Instruction, signer: Keypair) -> Confirmation:
        """Sign, submit and await confirmation of one instruction."""
        ...
