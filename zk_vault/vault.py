"""
Vault — unlock, load, save and lock a zero-knowledge vault.

Control flow::

    unlock:  verify(password, verifier) → derive key → custody.hold(key)
             → decrypt(blob) → codec.deserialize
    save:    codec.serialize → encrypt(custodied key) → store.save

Every call takes an explicit :class:`VaultSession` handle (account id and
custody key reference) instead of reading process-wide state. The derived
key has exactly one live custody entry per account; components borrow it
through the custodian and never keep private copies.

Security Note:
    Never log passwords, keys, plaintext or envelopes. Only log account
    ids, event types and record counts.
"""
import time
import asyncio
import logging
from dataclasses import dataclass, field
from collections.abc import Callable, Coroutine
from typing import Any, Optional

from . import codec
from .audit import AuditChain
from .codec import CredentialRecord
from .collaborators import IdentityProvider, PanicSignal, VaultStore
from .config import VaultConfig
from .crypto import Envelope, decrypt, encrypt
from .custody import SecretCustodian
from .key_rotation import require_reauthentication, rotate_master_key
from .exceptions import (
    CorruptVault,
    DecryptionFailed,
    InvalidInput,
    UnlockThrottled,
    VaultError,
    VaultLocked,
)
from .kdf import (
    DerivedKey,
    PasswordVerifier,
    derive_key,
    derive_verifier,
    generate_salt,
    verify,
)

logger = logging.getLogger("zk_vault")

VAULT_KEY_PREFIX = "vault_key:"
MAX_UNLOCK_ATTEMPTS = 5
UNLOCK_LOCKOUT_SECONDS = 15 * 60


@dataclass(frozen=True)
class VaultSession:
    """Handle passed to every vault operation after a successful unlock."""

    account_id: str
    custody_key: str = field(default="")

    def __post_init__(self):
        if not self.account_id:
            raise InvalidInput("account_id is required")
        if not self.custody_key:
            object.__setattr__(self, "custody_key", f"{VAULT_KEY_PREFIX}{self.account_id}")


@dataclass
class _Attempts:
    count: int = 0
    last: float = 0.0


class Vault:
    """Orchestrates key derivation, custody, the cipher, the codec and audit.

    Args:
        store: Persists the envelope and the password verifier per account.
        identity: Supplies the current account and re-authentication.
        config: Validated settings; defaults when omitted.
        custodian: Secret custodian; one is created when omitted.
        audit: Audit chain; one is created on the custodian when omitted.
        panic: Panic signal to subscribe :meth:`panic` to.
        clock: Monotonic clock for unlock throttling.
    """

    def __init__(
        self,
        store: VaultStore,
        identity: IdentityProvider,
        config: Optional[VaultConfig] = None,
        custodian: Optional[SecretCustodian] = None,
        audit: Optional[AuditChain] = None,
        panic: Optional[PanicSignal] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._config = config or VaultConfig()
        self._store = store
        self._identity = identity
        self._custodian = custodian or SecretCustodian(offload=self._config.offload_kdf)
        self._audit = audit or AuditChain(
            self._custodian,
            max_entries=self._config.audit_max_entries,
            session_ttl=self._config.session_ttl,
        )
        self._clock = clock or time.monotonic
        self._attempts: dict[str, _Attempts] = {}
        self._pending: set[asyncio.Task] = set()
        self._custodian.add_listener(self._on_custody_event)
        if panic is not None:
            panic.subscribe(self.panic)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def store(self) -> VaultStore:
        return self._store

    @property
    def identity(self) -> IdentityProvider:
        return self._identity

    @property
    def custodian(self) -> SecretCustodian:
        return self._custodian

    @property
    def audit(self) -> AuditChain:
        return self._audit

    async def run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run CPU-bound crypto off the event loop when configured to."""
        if self._config.offload_kdf:
            return await asyncio.to_thread(func, *args)
        return func(*args)

    async def drain(self) -> None:
        """Wait for audit appends scheduled from synchronous callbacks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _current_account(self) -> str:
        account_id = self._identity.current_account_id
        if not account_id:
            raise InvalidInput("no authenticated account")
        return account_id

    def check_session(self, session: VaultSession) -> None:
        """The session must belong to the currently authenticated account."""
        if not isinstance(session, VaultSession):
            raise InvalidInput("a VaultSession is required")
        if session.account_id != self._current_account():
            raise InvalidInput("session does not belong to the current account")

    def _vault_key(self, session: VaultSession) -> Optional[DerivedKey]:
        key = self._custodian.recall(session.custody_key)
        if key is None or key.wiped:
            return None
        return key

    def _require_key(self, session: VaultSession) -> DerivedKey:
        key = self._vault_key(session)
        if key is None:
            raise VaultLocked()
        return key

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; audit event dropped")
            return None
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scheduled audit append failed: %s", task.exception())

    def _on_custody_event(self, action: str, key: str) -> None:
        if action == "expired" and key.startswith(VAULT_KEY_PREFIX):
            account_id = key[len(VAULT_KEY_PREFIX):]
            logger.info("Vault auto-locked for account=%s", account_id)
            self._schedule(
                self._audit.append(account_id, "vault_auto_locked", "Vault locked after inactivity")
            )

    # ------------------------------------------------------------------
    # Unlock throttling
    # ------------------------------------------------------------------

    def _check_throttle(self, account_id: str) -> Optional[int]:
        attempts = self._attempts.get(account_id)
        if attempts is None:
            return None
        elapsed = self._clock() - attempts.last
        if elapsed > UNLOCK_LOCKOUT_SECONDS:
            del self._attempts[account_id]
            return None
        if attempts.count >= MAX_UNLOCK_ATTEMPTS:
            return max(1, int(UNLOCK_LOCKOUT_SECONDS - elapsed))
        return None

    def _record_failure(self, account_id: str) -> None:
        attempts = self._attempts.setdefault(account_id, _Attempts())
        attempts.count += 1
        attempts.last = self._clock()

    # ------------------------------------------------------------------
    # Lock / unlock
    # ------------------------------------------------------------------

    async def unlock(self, password: str) -> VaultSession:
        """Unlock the current account's vault and take custody of its key.

        On first use an empty vault and a verifier are created.

        Raises:
            InvalidInput: Empty password or no authenticated account.
            UnlockThrottled: Too many recent failures.
            DecryptionFailed: Wrong password or corrupted vault.
            MalformedEnvelope: The stored envelope or verifier is unparsable.
        """
        account_id = self._current_account()
        if not isinstance(password, str) or not password:
            raise InvalidInput("password must be a non-empty string")
        retry_after = self._check_throttle(account_id)
        if retry_after is not None:
            await self._audit.append(
                account_id, "vault_unlock_blocked", "Unlock refused after repeated failures"
            )
            raise UnlockThrottled(retry_after)

        verifier_text = await self._store.load_verifier(account_id)
        if verifier_text is None:
            return await self._initialize(account_id, password)

        verifier = PasswordVerifier.parse(verifier_text)
        if not await self.run_blocking(verify, password, verifier):
            self._record_failure(account_id)
            logger.info("Unlock rejected for account=%s", account_id)
            await self._audit.append(
                account_id, "vault_unlock_failed", "Incorrect master password"
            )
            raise DecryptionFailed()

        envelope_text = await self._store.load(account_id)
        if envelope_text is None:
            raise CorruptVault("verifier present but vault blob missing")
        envelope = Envelope.parse(envelope_text)
        key = await self.run_blocking(derive_key, password, envelope.salt)
        try:
            # the blob must authenticate before the key is trusted
            await self.run_blocking(decrypt, envelope_text, key)
        except VaultError:
            key.wipe()
            raise

        self._attempts.pop(account_id, None)
        session = VaultSession(account_id)
        self._custodian.hold(session.custody_key, key, ttl=self._config.auto_lock_timeout)
        await self._audit.append(account_id, "vault_unlocked", "Vault unlocked")
        logger.info("Vault unlocked for account=%s", account_id)
        return session

    async def _initialize(self, account_id: str, password: str) -> VaultSession:
        verifier = await self.run_blocking(derive_verifier, password)
        key = await self.run_blocking(derive_key, password, generate_salt())
        envelope = await self.run_blocking(encrypt, codec.serialize([]), key)
        await self._store.save(account_id, envelope)
        await self._store.save_verifier(account_id, verifier.serialize())
        session = VaultSession(account_id)
        self._custodian.hold(session.custody_key, key, ttl=self._config.auto_lock_timeout)
        await self._audit.append(account_id, "vault_initialized", "Vault initialized")
        logger.info("Vault initialized for account=%s", account_id)
        return session

    def is_unlocked(self, session: VaultSession) -> bool:
        return self._vault_key(session) is not None

    async def touch(self, session: VaultSession) -> bool:
        """Restart the auto-lock timer after user activity."""
        self.check_session(session)
        if not self._custodian.extend(session.custody_key, self._config.auto_lock_timeout):
            return False
        await self._audit.append(session.account_id, "session_refreshed", "Session refreshed")
        return True

    async def lock(self, session: VaultSession) -> None:
        """Release (and sanitize) the vault key."""
        self.check_session(session)
        self._custodian.release(session.custody_key)
        await self._audit.append(session.account_id, "vault_locked", "Vault locked")
        logger.info("Vault locked for account=%s", session.account_id)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def load_records(self, session: VaultSession) -> Optional[list[CredentialRecord]]:
        """Decrypt and parse the vault; ``None`` when the key is not in custody.

        Raises:
            MalformedEnvelope, DecryptionFailed, CorruptVault
        """
        self.check_session(session)
        key = self._vault_key(session)
        if key is None:
            return None
        envelope = await self._store.load(session.account_id)
        if envelope is None:
            raise CorruptVault("vault blob missing")
        plaintext = await self.run_blocking(decrypt, envelope, key)
        return codec.deserialize(plaintext)

    async def _records(self, session: VaultSession) -> list[CredentialRecord]:
        records = await self.load_records(session)
        if records is None:
            raise VaultLocked()
        return records

    async def _persist(self, session: VaultSession, records: list[CredentialRecord]) -> None:
        key = self._require_key(session)
        envelope = await self.run_blocking(encrypt, codec.serialize(records), key)
        await self._store.save(session.account_id, envelope)

    async def save_records(self, session: VaultSession, records: list[CredentialRecord]) -> None:
        """Encrypt ``records`` into a brand-new envelope and persist it.

        Raises:
            VaultLocked: If the key is no longer in custody.
        """
        self.check_session(session)
        await self._persist(session, records)
        await self._audit.append(
            session.account_id, "vault_update", f"Vault data updated ({len(records)} records)"
        )

    async def add_record(self, session: VaultSession, record: CredentialRecord) -> CredentialRecord:
        self.check_session(session)
        records = await self._records(session)
        if any(r.id == record.id for r in records):
            raise InvalidInput(f"record {record.id} already exists")
        record.created_at = record.updated_at = codec.utcnow()
        records.append(record)
        await self._persist(session, records)
        await self._audit.append(session.account_id, "password_added", f"Added credential {record.id}")
        return record

    async def update_record(self, session: VaultSession, record: CredentialRecord) -> bool:
        """Replace the record with the same id; keeps its creation time."""
        self.check_session(session)
        records = await self._records(session)
        for index, existing in enumerate(records):
            if existing.id == record.id:
                record.created_at = existing.created_at
                record.touch()
                records[index] = record
                await self._persist(session, records)
                await self._audit.append(
                    session.account_id, "password_updated", f"Updated credential {record.id}"
                )
                return True
        return False

    async def delete_record(self, session: VaultSession, record_id: str) -> bool:
        self.check_session(session)
        records = await self._records(session)
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) == len(records):
            return False
        await self._persist(session, remaining)
        await self._audit.append(
            session.account_id, "password_deleted", f"Deleted credential {record_id}"
        )
        return True

    # ------------------------------------------------------------------
    # Sensitive operations
    # ------------------------------------------------------------------

    async def change_master_key(
        self,
        session: VaultSession,
        current_password: str,
        new_password: str,
        account_password: str,
    ) -> VaultSession:
        """Rotate the master password; see :func:`zk_vault.key_rotation.rotate_master_key`."""
        return await rotate_master_key(
            self, session, current_password, new_password, account_password
        )

    async def delete_account(self, session: VaultSession, account_password: str) -> None:
        """Re-authenticate, record the deletion and drop the vault key.

        Removing the remote blob and account belongs to the collaborators.
        """
        self.check_session(session)
        await require_reauthentication(self, session.account_id, account_password)
        await self._audit.append(session.account_id, "account_deleted", "Account deletion requested")
        self._custodian.release(session.custody_key)

    def panic(self) -> Optional[asyncio.Task]:
        """Clear both custody tiers now; record the panic asynchronously.

        Subscribed to the :class:`PanicSignal`. Returns the scheduled audit
        task (``None`` when no account is known or no loop is running).
        """
        account_id = self._identity.current_account_id
        self._custodian.clear()
        self._attempts.clear()
        logger.warning("Panic: all custody cleared")
        if not account_id:
            return None
        return self._schedule(
            self._audit.append(account_id, "panic_triggered", "Panic mode was triggered")
        )
