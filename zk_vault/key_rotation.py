"""
Master Key Rotation — re-encrypt a vault under a new master password.

The stored envelope is decrypted with the current password (re-derived
from the envelope's own salt), validated through the codec, and written
back under a key derived from the new password with a fresh salt. A fresh
verifier is stored for the new password and the custodied key is replaced.

Rotation requires the account password first: a stolen unlocked session
is not enough to take over the vault.

Security Note:
    Plaintext exists in memory only for the duration of the rotation.
    Never log passwords, plaintext or envelopes.
"""
import logging
from typing import TYPE_CHECKING

from . import codec
from .crypto import decrypt, encrypt
from .exceptions import (
    CorruptVault,
    DecryptionFailed,
    InvalidInput,
    ReauthenticationFailed,
)
from .kdf import PasswordVerifier, derive_key, derive_verifier, generate_salt, verify

if TYPE_CHECKING:
    from .vault import Vault, VaultSession

logger = logging.getLogger("zk_vault")


async def require_reauthentication(vault: "Vault", account_id: str, account_password: str) -> None:
    """Challenge the identity provider; records and raises on failure.

    Raises:
        ReauthenticationFailed: If the account password is rejected.
    """
    if not account_password or not await vault.identity.reauthenticate(account_password):
        await vault.audit.append(
            account_id, "reauthentication_failed", "Re-authentication rejected"
        )
        raise ReauthenticationFailed()


async def rotate_master_key(
    vault: "Vault",
    session: "VaultSession",
    current_password: str,
    new_password: str,
    account_password: str,
) -> "VaultSession":
    """Re-encrypt the vault from ``current_password`` to ``new_password``.

    Args:
        vault: The vault whose store, custodian and audit chain are used.
        session: An unlocked session for the current account.
        current_password: The master password in use.
        new_password: The replacement master password.
        account_password: Account credential for re-authentication.

    Returns:
        The session, now backed by the new key.

    Raises:
        InvalidInput: Empty passwords or an unchanged password.
        ReauthenticationFailed: If the account password is rejected.
        DecryptionFailed: If ``current_password`` is wrong.
        CorruptVault: If the stored vault is missing or unreadable.
    """
    vault.check_session(session)
    if not isinstance(new_password, str) or not new_password:
        raise InvalidInput("new password must be a non-empty string")
    if not isinstance(current_password, str) or not current_password:
        raise InvalidInput("current password must be a non-empty string")
    if new_password == current_password:
        raise InvalidInput("new password must differ from the current one")

    account_id = session.account_id
    await require_reauthentication(vault, account_id, account_password)

    verifier_text = await vault.store.load_verifier(account_id)
    envelope_text = await vault.store.load(account_id)
    if verifier_text is None or envelope_text is None:
        raise CorruptVault("vault has not been initialized")
    verifier = PasswordVerifier.parse(verifier_text)
    if not await vault.run_blocking(verify, current_password, verifier):
        await vault.audit.append(
            account_id, "vault_unlock_failed", "Incorrect master password during key change"
        )
        raise DecryptionFailed()

    logger.info("Starting master key rotation for account=%s", account_id)
    plaintext = await vault.run_blocking(decrypt, envelope_text, current_password)
    records = codec.deserialize(plaintext)
    del plaintext

    new_key = await vault.run_blocking(derive_key, new_password, generate_salt())
    new_envelope = await vault.run_blocking(encrypt, codec.serialize(records), new_key)
    new_verifier = await vault.run_blocking(derive_verifier, new_password)

    await vault.store.save(account_id, new_envelope)
    await vault.store.save_verifier(account_id, new_verifier.serialize())
    vault.custodian.hold(session.custody_key, new_key, ttl=vault.config.auto_lock_timeout)

    await vault.audit.append(account_id, "masterkey_changed", "Master password changed")
    logger.info(
        "Master key rotation complete for account=%s (%d records)", account_id, len(records),
    )
    return session
