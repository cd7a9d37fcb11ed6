"""ZK Vault — zero-knowledge credential vault core.

Security Note (Threat Model):
    The master password and the key derived from it never leave the
    process; only envelopes and a password verifier are persisted.
    Decrypted secrets live in process memory while the vault is unlocked.
    Python cannot reliably erase immutable str/bytes copies, so a memory
    dump of an unlocked process may expose them. This is an accepted
    limitation: custody sanitizes what it can and bounds how long it
    holds it.
"""

from .version import __version__
from .exceptions import (
    VaultError,
    InvalidInput,
    EntropyUnavailable,
    MalformedEnvelope,
    DecryptionFailed,
    CorruptVault,
    CustodyExpired,
    VaultLocked,
    ReauthenticationFailed,
    UnlockThrottled,
)
from .memory import SecretBuffer, sanitize, secure_random
from .kdf import DerivedKey, PasswordVerifier, derive_key, derive_verifier, verify
from .crypto import Envelope, encrypt, decrypt
from .codec import CredentialRecord, CustomField, serialize, deserialize
from .config import VaultConfig, ConfigValidation, validate_config
from .custody import SecretCustodian
from .audit import AuditChain, AuditRecord, AuditVerification
from .collaborators import (
    VaultStore,
    SessionStore,
    IdentityProvider,
    PanicSignal,
    MemoryVaultStore,
    MemorySessionStore,
    StaticIdentity,
)
from .vault import Vault, VaultSession
from .key_rotation import rotate_master_key
from .passwords import generate_password, password_strength, validate_master_password
from .breach import breach_query, match_range, breach_risk

__all__ = [
    "__version__",
    "VaultError",
    "InvalidInput",
    "EntropyUnavailable",
    "MalformedEnvelope",
    "DecryptionFailed",
    "CorruptVault",
    "CustodyExpired",
    "VaultLocked",
    "ReauthenticationFailed",
    "UnlockThrottled",
    "SecretBuffer",
    "sanitize",
    "secure_random",
    "DerivedKey",
    "PasswordVerifier",
    "derive_key",
    "derive_verifier",
    "verify",
    "Envelope",
    "encrypt",
    "decrypt",
    "CredentialRecord",
    "CustomField",
    "serialize",
    "deserialize",
    "VaultConfig",
    "ConfigValidation",
    "validate_config",
    "SecretCustodian",
    "AuditChain",
    "AuditRecord",
    "AuditVerification",
    "VaultStore",
    "SessionStore",
    "IdentityProvider",
    "PanicSignal",
    "MemoryVaultStore",
    "MemorySessionStore",
    "StaticIdentity",
    "Vault",
    "VaultSession",
    "rotate_master_key",
    "generate_password",
    "password_strength",
    "validate_master_password",
    "breach_query",
    "match_range",
    "breach_risk",
]
