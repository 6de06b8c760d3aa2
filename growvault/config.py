"""
config.py - Runtime settings

Settings are read from environment variables:
    GROWVAULT_RPC_URL            JSON-RPC endpoint of the ledger node (required)
    GROWVAULT_TREASURY_SECRET    Treasury keypair as a JSON array of 64 bytes (required)
    GROWVAULT_PROGRAM_ID         Vault program id (default: deployed program)
    GROWVAULT_REGISTRY_PATH      SQLite file for the lock registry (default: in-memory)
    GROWVAULT_READ_RETRIES       Retries of a rate-limited read (default: 3)
    GROWVAULT_RETRY_BASE_DELAY   First backoff delay in seconds (default: 1.0)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Optional
import json
import os

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .core import PROGRAM_ID
from .resilience import DEFAULT_BASE_DELAY, DEFAULT_READ_ATTEMPTS


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        raise RuntimeError(f"{name} is not set")
    return value


def _parse_keypair(name: str, raw: str) -> Keypair:
    try:
        secret = bytes(json.loads(raw))
        return Keypair.from_bytes(secret)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{name} must be a JSON array of 64 secret key bytes") from exc


@dataclass(frozen=True)
class VaultSettings:
    """
    Everything needed to wire a VaultService against a live node.

    Attributes:
        rpc_url: Ledger node endpoint
        treasury: Keypair funding lock rewards
        program_id: Vault program
        registry_path: SQLite database for locks (None = in-memory)
        read_attempts: Total attempts of a rate-limited read (retries + 1)
        retry_base_delay: Seconds before the first retry; doubles each time
    """
    rpc_url: str
    treasury: Keypair = field(repr=False)
    program_id: Pubkey = PROGRAM_ID
    registry_path: Optional[str] = None
    read_attempts: int = DEFAULT_READ_ATTEMPTS
    retry_base_delay: float = DEFAULT_BASE_DELAY

    def __post_init__(self):
        if self.read_attempts < 1:
            raise ValueError(f"read_attempts must be >= 1, got {self.read_attempts}")
        if self.retry_base_delay < 0:
            raise ValueError(f"retry_base_delay must be >= 0, got {self.retry_base_delay}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultSettings":
        """
        Build settings from environment variables.

        Raises:
            RuntimeError: A required variable is missing or a value is malformed
        """
        environ = os.environ if environ is None else environ

        rpc_url = _required(environ, "GROWVAULT_RPC_URL")
        treasury = _parse_keypair(
            "GROWVAULT_TREASURY_SECRET", _required(environ, "GROWVAULT_TREASURY_SECRET")
        )

        program_id = PROGRAM_ID
        raw_program = environ.get("GROWVAULT_PROGRAM_ID", "").strip()
        if raw_program:
            try:
                program_id = Pubkey.from_string(raw_program)
            except ValueError as exc:
                raise RuntimeError(f"GROWVAULT_PROGRAM_ID is not a valid public key: {raw_program}") from exc

        try:
            retries = int(environ.get("GROWVAULT_READ_RETRIES", DEFAULT_READ_ATTEMPTS - 1))
            base_delay = float(environ.get("GROWVAULT_RETRY_BASE_DELAY", DEFAULT_BASE_DELAY))
        except ValueError as exc:
            raise RuntimeError(f"Invalid retry setting: {exc}") from exc
        if retries < 0 or base_delay < 0:
            raise RuntimeError("GROWVAULT_READ_RETRIES and GROWVAULT_RETRY_BASE_DELAY must be >= 0")

        return cls(
            rpc_url=rpc_url,
            treasury=treasury,
            program_id=program_id,
            registry_path=environ.get("GROWVAULT_REGISTRY_PATH") or None,
            read_attempts=retries + 1,
            retry_base_delay=base_delay,
        )
