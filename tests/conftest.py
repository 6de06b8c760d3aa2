"""
conftest.py - Shared pytest fixtures for growvault tests

Provides common fixtures used across unit and functional tests:
- Deterministic keypairs (owners, treasury)
- An in-process program in test mode at a fixed logical time
- Registry, settlement and service wired against that program
"""

import pytest

from growvault import (
    VaultProgram, LockRegistry, InMemoryRegistryStore,
    RewardSettlementService, VaultService, InMemoryTokenMetadata,
)

from tests.fake_network import (
    START_TIME, OWNER_FUNDING, TREASURY_FUNDING, TREASURY_SEED, keypair,
)


@pytest.fixture
def program():
    """Test-mode program at START_TIME."""
    return VaultProgram("test", initial_time=START_TIME, verbose=False, test_mode=True)


@pytest.fixture
def alice():
    return keypair(1)


@pytest.fixture
def bob():
    return keypair(2)


@pytest.fixture
def treasury(program):
    kp = keypair(TREASURY_SEED)
    program.airdrop(kp.pubkey(), TREASURY_FUNDING)
    return kp


@pytest.fixture
def funded_alice(program, alice):
    """Alice with spendable funds and an initialized vault."""
    program.airdrop(alice.pubkey(), OWNER_FUNDING)
    program.initialize(alice)
    return alice


@pytest.fixture
def registry(program):
    return LockRegistry(program, InMemoryRegistryStore(), clock=lambda: program.current_time)


@pytest.fixture
def settlement(registry, program, treasury):
    return RewardSettlementService(registry, program, treasury)


@pytest.fixture
def metadata():
    return InMemoryTokenMetadata()


@pytest.fixture
def service(program, registry, settlement, metadata):
    return VaultService(program, registry, settlement, metadata)
