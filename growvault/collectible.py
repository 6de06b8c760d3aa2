"""
collectible.py - Collectible token stage

Each owner has one collectible whose artwork follows the vault balance:

    balance == 0                -> SPROUT
    0 < balance < threshold     -> GROWING
    balance >= threshold        -> LEGENDARY

Stage selection is pure. Pushing the new metadata URI is advisory: a missing
collectible means there is nothing to update.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable
import logging

from solders.pubkey import Pubkey

from .core import LEGENDARY_THRESHOLD
from .deriver import Identity, derive_token_identity

logger = logging.getLogger(__name__)


class TokenStage(str, Enum):
    SPROUT = "default"
    GROWING = "growing"
    LEGENDARY = "legendary"


_IPFS_GATEWAY = "https://coffee-patient-mackerel-446.mypinata.cloud/ipfs/"

METADATA_URIS: Dict[TokenStage, str] = {
    TokenStage.SPROUT: _IPFS_GATEWAY + "bafkreih33uv4usrp266elvpnkalj5eqte2s34ufdffxtgba3x2ybmfjd5y",
    TokenStage.GROWING: _IPFS_GATEWAY + "bafkreiequjkraokootfvtevagfam35b5eittmhrbdszk75lcwn7rykcgmq",
    TokenStage.LEGENDARY: _IPFS_GATEWAY + "bafkreihk67v2decygyuevd2l2uk2b24yxkxyno54wgzc7wasp72yuikjxy",
}


def select_stage(balance: int, legendary_threshold: int = LEGENDARY_THRESHOLD) -> TokenStage:
    """Pick the collectible stage for a vault balance in base units."""
    if balance < 0:
        raise ValueError(f"Balance cannot be negative, got {balance}")
    if balance == 0:
        return TokenStage.SPROUT
    if balance >= legendary_threshold:
        return TokenStage.LEGENDARY
    return TokenStage.GROWING


@runtime_checkable
class TokenMetadataStore(Protocol):
    """Where collectible metadata URIs live, keyed by mint address."""

    def mint(self, owner: Identity, uri: str) -> Pubkey:
        """Create the owner's collectible if missing. Returns its mint address."""
        ...

    def get_uri(self, mint: Pubkey) -> Optional[str]:
        """Current URI, or None if no collectible exists for the mint."""
        ...

    def set_uri(self, mint: Pubkey, uri: str) -> None:
        ...


class InMemoryTokenMetadata:
    """Dictionary-backed metadata store."""

    def __init__(self):
        self.uris: Dict[Pubkey, str] = {}

    def mint(self, owner: Identity, uri: str = METADATA_URIS[TokenStage.SPROUT]) -> Pubkey:
        """Create the owner's collectible if missing. Returns its mint address."""
        mint = derive_token_identity(owner).pubkey()
        self.uris.setdefault(mint, uri)
        return mint

    def get_uri(self, mint: Pubkey) -> Optional[str]:
        return self.uris.get(mint)

    def set_uri(self, mint: Pubkey, uri: str) -> None:
        if mint not in self.uris:
            raise KeyError(f"No collectible for mint {mint}")
        self.uris[mint] = uri


def refresh_token_stage(
    store: TokenMetadataStore,
    owner: Identity,
    balance: int,
    uris: Mapping[TokenStage, str] = METADATA_URIS,
    legendary_threshold: int = LEGENDARY_THRESHOLD,
) -> bool:
    """
    Point the owner's collectible at the artwork for its balance.

    Returns:
        True if the URI changed, False if it was already current or the owner
        has no collectible.
    """
    mint = derive_token_identity(owner).pubkey()
    current = store.get_uri(mint)
    if current is None:
        logger.debug("No collectible for %s (mint %s), nothing to update", owner, mint)
        return False
    target = uris[select_stage(balance, legendary_threshold)]
    if current == target:
        return False
    store.set_uri(mint, target)
    logger.info("Collectible %s of %s moved to %s", mint, owner, target)
    return True
