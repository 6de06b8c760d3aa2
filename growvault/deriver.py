"""
deriver.py - Deterministic account addressing

Every account an owner has is a pure function of the owner's public key:

    vault   = PDA([b"vault",  owner], PROGRAM_ID)
    reward  = PDA([b"reward", owner], PROGRAM_ID)
    mint    = Keypair.from_seed(sha256("box-nft-seed" + base58(owner)))

No mapping is stored anywhere. Any process holding the owner key can
reconstruct the full set of accounts, and the results are byte-identical to
every other implementation of the ledger network's PDA derivation.
"""

from __future__ import annotations
import hashlib
from typing import Tuple, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .core import (
    PROGRAM_ID, VAULT_SEED, REWARD_SEED, TOKEN_SEED_LABEL,
    InvalidIdentity,
)


Identity = Union[Pubkey, str]


def as_pubkey(owner: Identity) -> Pubkey:
    """
    Normalize an owner identity to a Pubkey.

    Accepts a Pubkey or its base58 string form.

    Raises:
        InvalidIdentity: If the value is not a 32-byte base58 public key.
    """
    if isinstance(owner, Pubkey):
        return owner
    if not isinstance(owner, str) or not owner.strip():
        raise InvalidIdentity(f"Owner identity must be a Pubkey or base58 string, got {owner!r}")
    try:
        return Pubkey.from_string(owner.strip())
    except ValueError as exc:
        raise InvalidIdentity(f"Owner identity is not a valid public key: {owner!r}") from exc


def find_vault_address(owner: Identity, program_id: Pubkey = PROGRAM_ID) -> Tuple[Pubkey, int]:
    """Return (vault address, bump) for an owner."""
    return Pubkey.find_program_address([VAULT_SEED, bytes(as_pubkey(owner))], program_id)


def find_reward_address(owner: Identity, program_id: Pubkey = PROGRAM_ID) -> Tuple[Pubkey, int]:
    """Return (reward accrual address, bump) for an owner."""
    return Pubkey.find_program_address([REWARD_SEED, bytes(as_pubkey(owner))], program_id)


def derive_vault_address(owner: Identity, program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    return find_vault_address(owner, program_id)[0]


def derive_reward_address(owner: Identity, program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    return find_reward_address(owner, program_id)[0]


def derive_token_identity(owner: Identity) -> Keypair:
    """
    Keypair of the owner's collectible mint.

    The seed is the SHA-256 of the label concatenated with the owner's base58
    key, so at most one collectible exists per owner and its existence can be
    checked by address alone.
    """
    seed = hashlib.sha256((TOKEN_SEED_LABEL + str(as_pubkey(owner))).encode()).digest()
    return Keypair.from_seed(seed)
