"""
rpc.py - LedgerNetwork over a JSON-RPC node

Reads:
    getAccountInfo  -> lamports, and Anchor-encoded Vault / RewardBox records
Writes:
    getLatestBlockhash + sendTransaction, then getSignatureStatuses polling
    until the signature reaches the configured commitment.

Rate limiting (HTTP 429, or an RPC error mentioning 429) raises RateLimited.
A failed HTTP exchange raises RpcTransportError, except on sendTransaction,
where the node may already hold the transaction and ConfirmationUnknown is
raised instead. Status polls that fail keep polling until the deadline.
A submission whose status is still unknown at the deadline raises
ConfirmationUnknown; it may yet land, so callers re-read state instead of
resubmitting.
"""

from __future__ import annotations
import base64
import hashlib
import logging
import struct
import time
from datetime import datetime, timezone
from itertools import count
from typing import Any, Callable, Dict, List, Optional

import requests
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction as SolanaInstruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .core import (
    Confirmation, Instruction, RewardAccrualAccount, VaultAccount,
    PROGRAM_ID, SYSTEM_PROGRAM_ID,
    INSTRUCTION_INITIALIZE, INSTRUCTION_DEPOSIT, INSTRUCTION_WITHDRAW,
    INSTRUCTION_TRANSFER, INSTRUCTION_SYSTEM_TRANSFER,
    VaultError, StateError, AccountNotFound, ConfirmationUnknown,
    RateLimited, SignerMismatch,
)
from .deriver import derive_reward_address, derive_vault_address

logger = logging.getLogger(__name__)

VAULT_LAYOUT = struct.Struct("<32sQBq")   # user, balance, bump, last_update_time
REWARD_LAYOUT = struct.Struct("<QB")      # balance, bump
DISCRIMINATOR_SIZE = 8

FINAL_COMMITMENTS = {
    "processed": ("processed", "confirmed", "finalized"),
    "confirmed": ("confirmed", "finalized"),
    "finalized": ("finalized",),
}


class RpcError(VaultError):
    """Node answered with an error that is not a rate limit."""
    kind = "rpc"

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class RpcTransportError(RpcError):
    """The HTTP exchange with the node failed; no JSON-RPC answer was read."""
    kind = "rpc_transport"


class TransactionFailed(StateError):
    """Transaction landed but the program rejected it; nothing was applied."""
    kind = "transaction_failed"

    def __init__(self, message: str, signature: str, error: Any = None):
        super().__init__(message)
        self.signature = signature
        self.error = error


def sighash(name: str) -> bytes:
    """8-byte Anchor instruction discriminator."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    """8-byte Anchor account discriminator."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


VAULT_DISCRIMINATOR = account_discriminator("Vault")
REWARD_DISCRIMINATOR = account_discriminator("RewardBox")


def decode_vault(address: Pubkey, data: bytes) -> VaultAccount:
    """Decode Anchor-serialized Vault account data."""
    if data[:DISCRIMINATOR_SIZE] != VAULT_DISCRIMINATOR:
        raise ValueError(f"Account {address} is not a Vault")
    user, balance, bump, last_update = VAULT_LAYOUT.unpack_from(data, DISCRIMINATOR_SIZE)
    return VaultAccount(
        address=address,
        owner=Pubkey.from_bytes(user),
        balance=balance,
        bump=bump,
        last_update_time=datetime.fromtimestamp(last_update, tz=timezone.utc),
    )


def decode_reward(address: Pubkey, data: bytes) -> RewardAccrualAccount:
    """Decode Anchor-serialized RewardBox account data."""
    if data[:DISCRIMINATOR_SIZE] != REWARD_DISCRIMINATOR:
        raise ValueError(f"Account {address} is not a RewardBox")
    balance, bump = REWARD_LAYOUT.unpack_from(data, DISCRIMINATOR_SIZE)
    return RewardAccrualAccount(address=address, balance=balance, bump=bump)


def build_solana_instruction(ix: Instruction, program_id: Pubkey = PROGRAM_ID) -> SolanaInstruction:
    """Encode an Instruction for the save-to-grow program or the system program."""
    if ix.kind == INSTRUCTION_SYSTEM_TRANSFER:
        return transfer(TransferParams(
            from_pubkey=ix.authority, to_pubkey=ix.recipient, lamports=ix.amount,
        ))

    accounts = [
        AccountMeta(derive_vault_address(ix.authority, program_id), is_signer=False, is_writable=True),
        AccountMeta(derive_reward_address(ix.authority, program_id), is_signer=False, is_writable=True),
        AccountMeta(ix.authority, is_signer=True, is_writable=True),
    ]
    if ix.kind == INSTRUCTION_TRANSFER:
        accounts.append(AccountMeta(ix.recipient, is_signer=False, is_writable=True))
    accounts.append(AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False))

    data = sighash(ix.kind)
    if ix.kind in (INSTRUCTION_DEPOSIT, INSTRUCTION_WITHDRAW, INSTRUCTION_TRANSFER):
        data += struct.pack("<Q", ix.amount)
    elif ix.kind != INSTRUCTION_INITIALIZE:
        raise ValueError(f"Unsupported instruction kind: {ix.kind}")
    return SolanaInstruction(program_id, data, accounts)


class RpcLedgerNetwork:
    """
    LedgerNetwork backed by a JSON-RPC endpoint.

    Example:
        network = RpcLedgerNetwork("https://api.devnet.solana.com")
        vault = network.fetch_vault(derive_vault_address(owner))
    """

    def __init__(
        self,
        url: str,
        program_id: Pubkey = PROGRAM_ID,
        session: Optional[requests.Session] = None,
        commitment: str = "confirmed",
        request_timeout: float = 30.0,
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if commitment not in FINAL_COMMITMENTS:
            raise ValueError(f"Unknown commitment: {commitment}")
        self.url = url
        self.program_id = program_id
        self.session = session or requests.Session()
        self.commitment = commitment
        self.request_timeout = request_timeout
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._monotonic = monotonic
        self._ids = count(1)

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.request_timeout)
            if response.status_code == 429:
                raise RateLimited(f"{method} rate limited (HTTP 429)")
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise RpcTransportError(f"{method} transport failure: {exc}") from exc
        error = body.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "")
            if code == 429 or "429" in message:
                raise RateLimited(f"{method} rate limited: {message}")
            raise RpcError(f"{method} failed: {message}", code=code)
        return body["result"]

    # ========================================================================
    # READS
    # ========================================================================

    def _account_info(self, address: Pubkey) -> Dict[str, Any]:
        result = self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result.get("value")
        if value is None:
            raise AccountNotFound(f"Account {address} not found")
        return value

    def _account_data(self, address: Pubkey) -> bytes:
        data, encoding = self._account_info(address)["data"]
        if encoding != "base64":
            raise RpcError(f"Unexpected account encoding {encoding} for {address}")
        return base64.b64decode(data)

    def get_balance(self, address: Pubkey) -> int:
        return self._account_info(address)["lamports"]

    def fetch_vault(self, address: Pubkey) -> VaultAccount:
        return decode_vault(address, self._account_data(address))

    def fetch_reward(self, address: Pubkey) -> RewardAccrualAccount:
        return decode_reward(address, self._account_data(address))

    # ========================================================================
    # WRITES
    # ========================================================================

    def submit(self, instruction: Instruction, signer: Keypair) -> Confirmation:
        """
        Sign, send and await one instruction.

        Raises:
            SignerMismatch: signer is not the instruction authority
            RateLimited: the node refused the submission (nothing was sent)
            TransactionFailed: the transaction landed with an error
            ConfirmationUnknown: no final status before confirm_timeout
        """
        if signer.pubkey() != instruction.authority:
            raise SignerMismatch(
                f"{instruction.kind} must be signed by {instruction.authority}, got {signer.pubkey()}"
            )
        blockhash = self._call("getLatestBlockhash", [{"commitment": self.commitment}])["value"]["blockhash"]
        tx = Transaction.new_signed_with_payer(
            [build_solana_instruction(instruction, self.program_id)],
            signer.pubkey(),
            [signer],
            Hash.from_string(blockhash),
        )
        encoded = base64.b64encode(bytes(tx)).decode()
        try:
            signature = self._call(
                "sendTransaction",
                [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
            )
        except RpcTransportError as exc:
            # The node may have accepted the transaction before the connection dropped
            raise ConfirmationUnknown(
                f"{instruction.kind} send failed with unknown outcome: {exc}",
                signature=str(tx.signatures[0]),
            ) from exc
        logger.info("Submitted %s as %s", instruction.kind, signature)
        return self._await_confirmation(signature)

    def _await_confirmation(self, signature: str) -> Confirmation:
        accepted = FINAL_COMMITMENTS[self.commitment]
        deadline = self._monotonic() + self.confirm_timeout
        while True:
            try:
                statuses = self._call("getSignatureStatuses", [[signature]])["value"]
            except (RateLimited, RpcError) as exc:
                # Already sent: keep polling until the deadline
                logger.warning("Status poll for %s failed: %s", signature, exc)
                statuses = [None]
            status = statuses[0] if statuses else None
            if status is not None:
                if status.get("err") is not None:
                    raise TransactionFailed(
                        f"Transaction {signature} failed: {status['err']}",
                        signature=signature,
                        error=status["err"],
                    )
                if status.get("confirmationStatus") in accepted:
                    return Confirmation(signature=signature, slot=status.get("slot", 0))
            if self._monotonic() >= deadline:
                raise ConfirmationUnknown(
                    f"Transaction {signature} not confirmed within {self.confirm_timeout}s",
                    signature=signature,
                )
            self._sleep(self.poll_interval)

    def __repr__(self):
        return f"RpcLedgerNetwork({self.url}, commitment={self.commitment})"
