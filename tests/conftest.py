"""Shared fixtures for the vault core tests."""
import pytest

from zk_vault.audit import AuditChain
from zk_vault.collaborators import MemorySessionStore, MemoryVaultStore, StaticIdentity
from zk_vault.config import VaultConfig
from zk_vault.custody import SecretCustodian
from zk_vault.vault import Vault

ACCOUNT_ID = "acct-1"
ACCOUNT_PASSWORD = "account-login-pw"
MASTER_PASSWORD = "m4sterKey$"


class FakeClock:
    """Settable clock returning seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_store():
    return MemorySessionStore()


@pytest.fixture
def custodian(session_store):
    """Custodian that runs cipher work inline."""
    return SecretCustodian(session_store, offload=False)


@pytest.fixture
def audit_chain(custodian, clock):
    return AuditChain(custodian, max_entries=500, session_ttl=3600, clock=clock)


@pytest.fixture
def vault_store():
    return MemoryVaultStore()


@pytest.fixture
def identity():
    return StaticIdentity(ACCOUNT_ID, password=ACCOUNT_PASSWORD)


@pytest.fixture
def config():
    return VaultConfig(offload_kdf=False)


@pytest.fixture
def vault(vault_store, identity, config, custodian, audit_chain, clock):
    return Vault(
        vault_store,
        identity,
        config=config,
        custodian=custodian,
        audit=audit_chain,
        clock=clock,
    )
