"""
Audit Chain — tamper-evident, hash-linked log of security events.

Each record stores ``thisHash = SHA256(priorHash:userId:eventType:description:timestamp)``
and the ``thisHash`` of the record before it, so editing a retained record
is detectable by :meth:`AuditChain.verify`.

The window is kept per user in session-tier custody, encrypted under a
random logging key that lives in volatile custody.

Known limitations (kept on purpose):

- The window is truncated from the oldest end at ``max_entries``; the
  oldest retained record then points at a hash that is no longer present,
  so continuity can only be proven inside the window.
- Events in :data:`HIGH_VOLUME_EVENTS` skip reading prior history and
  replace the window with a single record (sequence 1, empty prior hash).
  ``verify`` can never prove continuity across those events.
- Custody of the vault key is audited through the vault operation that
  moves it, not as a separate custody event: acquisition by
  ``vault_initialized``/``vault_unlocked``/``masterkey_changed``, renewal
  by ``session_refreshed``, release by ``vault_locked``/``account_deleted``/
  ``panic_triggered``, and expiry by ``vault_auto_locked``. Other custody
  keys (the logging key itself, caller secrets) are not audited.
- Once the logging key is released, the stored windows can no longer be
  decrypted; reads return no records and the next append starts a new
  window.

Security Note:
    Descriptions are stored as given; callers must not put secrets in them.
"""
import time
import asyncio
import logging
from datetime import datetime, timezone
from collections.abc import Callable
from typing import Literal, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel

from .crypto import digest_hex
from .custody import SecretCustodian
from .config import DEFAULT_AUDIT_MAX_ENTRIES, DEFAULT_SESSION_TTL
from .exceptions import CorruptVault, InvalidInput, VaultError
from .kdf import DerivedKey

logger = logging.getLogger("zk_vault")

LOGGING_KEY = "audit_logging_key"

# written as a single-record window, without reading history
HIGH_VOLUME_EVENTS = frozenset({
    "vault_unlocked",
    "vault_locked",
    "session_refreshed",
    "item_viewed",
    "search_performed",
    "ui_interaction",
})

HIGH_PRIORITY_EVENTS = frozenset({
    "login_failed",
    "login_blocked",
    "password_changed",
    "masterkey_changed",
    "vault_unlock_failed",
    "vault_unlock_blocked",
    "two_factor_disabled",
    "recovery_key_used",
    "security_setting_changed",
    "account_recovery",
    "account_deleted",
    "panic_triggered",
})

SECURITY_EVENTS = frozenset({
    "login_success",
    "login_failure",
    "login_blocked",
    "password_changed",
    "masterkey_changed",
    "security_setting_changed",
    "two_factor_enabled",
    "two_factor_disabled",
    "session_created",
    "session_terminated",
    "session_refreshed",
    "vault_initialized",
    "vault_unlock_failed",
    "vault_unlock_blocked",
    "vault_auto_locked",
    "panic_triggered",
    "account_deleted",
})

_HIGH_RISK_EVENTS = frozenset({
    "password_changed",
    "masterkey_changed",
    "two_factor_disabled",
    "account_deleted",
    "vault_exported",
    "panic_triggered",
})

_MEDIUM_RISK_EVENTS = frozenset({
    "login",
    "logout",
    "vault_unlocked",
    "vault_locked",
    "vault_unlock_failed",
    "trusted_device_added",
    "trusted_device_removed",
})

RiskLevel = Literal["low", "medium", "high"]


def event_risk_level(event_type: str) -> RiskLevel:
    """Classify an event type for display."""
    if event_type in _HIGH_RISK_EVENTS:
        return "high"
    if event_type in _MEDIUM_RISK_EVENTS:
        return "medium"
    return "low"


def chain_hash(
    prior_hash: str, user_id: str, event_type: str, description: str, timestamp: int
) -> str:
    """Hash of one record, linked to the record before it."""
    return digest_hex(f"{prior_hash}:{user_id}:{event_type}:{description}:{timestamp}")


class AuditRecord(BaseModel):
    """One entry of the audit chain. ``timestamp`` is epoch milliseconds."""

    sequence_id: int = Field(ge=1)
    user_id: str
    event_type: str
    description: str
    timestamp: int
    prior_hash: str = ""
    this_hash: str

    model_config = {
        "extra": "forbid",
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def expected_hash(self) -> str:
        return chain_hash(
            self.prior_hash, self.user_id, self.event_type,
            self.description, self.timestamp,
        )

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


class AuditVerification(BaseModel):
    """Result of :meth:`AuditChain.verify`; diagnostic, never raised."""

    valid: bool
    issues: list[str] = Field(default_factory=list)
    checked: int = 0


def format_record(record: AuditRecord) -> str:
    """Render ``[2024-01-01T00:00:00+00:00] event_type: description``."""
    return f"[{record.occurred_at.isoformat(timespec='seconds')}] {record.event_type}: {record.description}"


class AuditChain:
    """Appends and verifies per-user hash-chained audit records.

    Args:
        custodian: Holds the logging key and the encrypted windows.
        max_entries: Size of the retained window per user.
        session_ttl: Lifetime of the encrypted window in the session tier.
        clock: Returns the current time in seconds (tests inject a fake).
    """

    def __init__(
        self,
        custodian: SecretCustodian,
        max_entries: int = DEFAULT_AUDIT_MAX_ENTRIES,
        session_ttl: int = DEFAULT_SESSION_TTL,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_entries < 1:
            raise InvalidInput("max_entries must be >= 1")
        self._custodian = custodian
        self._max_entries = max_entries
        self._session_ttl = session_ttl
        self._clock = clock or time.time
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _store_key(user_id: str) -> str:
        return f"audit_logs_{user_id}"

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _logging_key(self) -> DerivedKey:
        key = self._custodian.recall(LOGGING_KEY)
        if key is None or key.wiped:
            key = DerivedKey.random()
            self._custodian.hold(LOGGING_KEY, key)
        return key

    async def _read(self, user_id: str) -> list[AuditRecord]:
        raw = await self._custodian.recall_encrypted(
            self._store_key(user_id), self._logging_key()
        )
        if raw is None:
            return []
        try:
            items = orjson.loads(raw)
            if not isinstance(items, list):
                raise CorruptVault("audit window must be a list")
            return [AuditRecord.model_validate(item) for item in items]
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise CorruptVault("audit window is unreadable") from err

    async def _write(self, user_id: str, records: list[AuditRecord]) -> None:
        payload = orjson.dumps([r.model_dump(by_alias=True) for r in records])
        await self._custodian.hold_encrypted(
            self._store_key(user_id), payload, self._logging_key(), self._session_ttl,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def append(self, user_id: str, event_type: str, description: str) -> AuditRecord:
        """Append one record for ``user_id`` and return it.

        Appends for the same user are serialized by a per-user lock; the
        sequence id and prior hash are a read-modify-write.

        Raises:
            InvalidInput: If user_id or event_type is empty.
        """
        if not isinstance(user_id, str) or not user_id:
            raise InvalidInput("user_id is required")
        if not isinstance(event_type, str) or not event_type:
            raise InvalidInput("event_type is required")
        description = description or ""
        async with self._lock_for(user_id):
            timestamp = int(self._clock() * 1000)
            if event_type in HIGH_VOLUME_EVENTS:
                records: list[AuditRecord] = []
            else:
                try:
                    records = await self._read(user_id)
                except VaultError as err:
                    logger.warning(
                        "Audit window for user=%s unreadable (%s); starting a new window",
                        user_id, type(err).__name__,
                    )
                    records = []
            prior_hash = records[-1].this_hash if records else ""
            sequence_id = records[-1].sequence_id + 1 if records else 1
            record = AuditRecord(
                sequence_id=sequence_id,
                user_id=user_id,
                event_type=event_type,
                description=description,
                timestamp=timestamp,
                prior_hash=prior_hash,
                this_hash=chain_hash(prior_hash, user_id, event_type, description, timestamp),
            )
            records.append(record)
            if len(records) > self._max_entries:
                records = records[-self._max_entries:]
            await self._write(user_id, records)
        if event_type in HIGH_PRIORITY_EVENTS:
            logger.warning(
                "Security event recorded: user=%s event=%s seq=%d",
                user_id, event_type, sequence_id,
            )
        else:
            logger.debug("Audit: user=%s event=%s seq=%d", user_id, event_type, sequence_id)
        return record

    async def _read_or_empty(self, user_id: str) -> list[AuditRecord]:
        try:
            return await self._read(user_id)
        except VaultError as err:
            logger.warning(
                "Audit window for user=%s unreadable (%s); returning no records",
                user_id, type(err).__name__,
            )
            return []

    async def records(self, user_id: str) -> list[AuditRecord]:
        """The retained window for ``user_id``, oldest first.

        A window that can no longer be decrypted (the logging key was
        released) reads as empty.
        """
        return await self._read_or_empty(user_id)

    async def recent(self, user_id: str, max_results: int = 100) -> list[AuditRecord]:
        """Up to ``max_results`` records, most recent first."""
        if max_results < 0:
            raise InvalidInput("max_results must be >= 0")
        records = await self._read_or_empty(user_id)
        return list(reversed(records))[:max_results]

    async def security_events(self, user_id: str, max_results: int = 50) -> list[AuditRecord]:
        """Recent records whose type is in :data:`SECURITY_EVENTS`."""
        records = reversed(await self._read_or_empty(user_id))
        return [r for r in records if r.event_type in SECURITY_EVENTS][:max_results]

    async def verify(self, user_id: str) -> AuditVerification:
        """Check hashes, sequence contiguity and linkage of the retained window.

        Every problem becomes an issue string; nothing is raised.
        """
        try:
            records = await self._read(user_id)
        except VaultError as err:
            logger.warning("Audit verification could not read window for user=%s", user_id)
            return AuditVerification(
                valid=False, issues=[f"Audit log could not be read: {err.message}"]
            )
        issues: list[str] = []
        for index, record in enumerate(records):
            if record.user_id != user_id:
                issues.append(
                    f"Foreign record at sequence {record.sequence_id}: belongs to another user"
                )
            if record.this_hash != record.expected_hash():
                issues.append(
                    f"Hash mismatch at sequence {record.sequence_id}: possible tampering"
                )
            if index == 0:
                continue
            previous = records[index - 1]
            if record.sequence_id != previous.sequence_id + 1:
                issues.append(
                    f"Sequence gap detected: {previous.sequence_id} to {record.sequence_id}"
                )
            if record.prior_hash != previous.this_hash:
                issues.append(
                    f"Chain break at sequence {record.sequence_id}: "
                    f"prior hash does not match sequence {previous.sequence_id}"
                )
        if issues:
            logger.warning("Audit chain for user=%s has %d issue(s)", user_id, len(issues))
        return AuditVerification(valid=not issues, issues=issues, checked=len(records))
