"""
Secret Custodian — bounded-lifetime custody of decrypted secrets.

Two tiers:

- **Volatile**: process memory only, never serialized. An optional TTL
  schedules an independent release on the running event loop; ``recall``
  also checks the expiry so custody ends on time without a loop.
  Released values are overwritten (see :func:`zk_vault.memory.sanitize`).
- **Session**: values pass through the envelope cipher and are handed to a
  :class:`~zk_vault.collaborators.SessionStore`. Each record embeds its own
  expiry; an expired record is "absent" even if the store still has it.

Security Note:
    Python cannot guarantee erasure of immutable ``str``/``bytes`` copies.
    Hold secrets as ``bytearray``/:class:`SecretBuffer`/:class:`DerivedKey`
    wherever possible so release can overwrite them.
"""
import math
import time
import asyncio
import logging
import weakref
from collections.abc import Callable
from typing import Any, Optional

import orjson

from .crypto import KeyMaterial, decrypt, encrypt
from .collaborators import MemorySessionStore, SessionStore
from .exceptions import CustodyExpired, InvalidInput, MalformedEnvelope
from .memory import sanitize, secure_random

logger = logging.getLogger("zk_vault")

SESSION_PREFIX = "secure_"

CustodyListener = Callable[[str, str], None]


class CustodyEntry:
    """One volatile custody slot."""

    __slots__ = ("key", "value", "expiry", "timer")

    def __init__(self, key: str, value: Any, expiry: Optional[float] = None):
        self.key = key
        self.value = value
        self.expiry = expiry  # time.monotonic() deadline
        self.timer: Optional[asyncio.TimerHandle] = None

    @property
    def expired(self) -> bool:
        return self.expiry is not None and time.monotonic() >= self.expiry

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def __repr__(self) -> str:
        return f"<CustodyEntry {self.key} expiry={self.expiry}>"


def _release_entries(entries: dict[str, CustodyEntry]) -> None:
    """Teardown hook: runs at garbage collection or interpreter exit."""
    for entry in entries.values():
        entry.cancel_timer()
        sanitize(entry.value)
    entries.clear()


def _validate_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidInput("custody key must be a non-empty string")


def _validate_ttl(ttl: Optional[float], required: bool = False) -> None:
    if ttl is None:
        if required:
            raise InvalidInput("ttl is required")
        return
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise InvalidInput("ttl must be a positive number of seconds")
    if not math.isfinite(ttl) or ttl <= 0:
        raise InvalidInput("ttl must be a positive number of seconds")


class SecretCustodian:
    """Holds secrets for a bounded lifetime and sanitizes them on release.

    Args:
        session_store: Backing store for the session tier.
        offload: Run cipher work for the session tier on a worker thread.
    """

    def __init__(
        self,
        session_store: Optional[SessionStore] = None,
        offload: bool = True,
    ):
        self._volatile: dict[str, CustodyEntry] = {}
        self._session = session_store if session_store is not None else MemorySessionStore()
        self._offload = offload
        self._listeners: list[CustodyListener] = []
        self._finalizer = weakref.finalize(self, _release_entries, self._volatile)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: CustodyListener) -> None:
        """Register ``listener(action, key)``; actions: acquired, released, expired."""
        self._listeners.append(listener)

    def _notify(self, action: str, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(action, key)
            except Exception as err:  # noqa: BLE001
                logger.error("Custody listener failed on %s %s: %s", action, key, err)

    # ------------------------------------------------------------------
    # Volatile tier
    # ------------------------------------------------------------------

    def hold(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Take custody of ``value`` under ``key``.

        A previous value under the same key is sanitized (unless it is the
        very same object) and its timer cancelled; timers never stack.

        Raises:
            InvalidInput: If the key is empty or ttl is not positive.
        """
        _validate_key(key)
        _validate_ttl(ttl)
        previous = self._volatile.pop(key, None)
        if previous is not None:
            previous.cancel_timer()
            if previous.value is not value:
                sanitize(previous.value)
        entry = CustodyEntry(
            key, value, time.monotonic() + ttl if ttl is not None else None
        )
        if ttl is not None:
            entry.timer = self._schedule(entry, ttl)
        self._volatile[key] = entry
        logger.debug("Custody acquired: key=%s ttl=%s", key, ttl)
        self._notify("acquired", key)

    def _schedule(self, entry: CustodyEntry, ttl: float) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: recall() enforces the deadline
            return None
        return loop.call_later(ttl, self._expire, entry)

    def _expire(self, entry: CustodyEntry) -> None:
        if self._volatile.get(entry.key) is entry:
            self._drop(entry.key, "expired")

    def _lookup(self, key: str) -> Optional[CustodyEntry]:
        entry = self._volatile.get(key)
        if entry is not None and entry.expired:
            raise CustodyExpired(key)
        return entry

    def recall(self, key: str) -> Any:
        """Return the held value, or ``None`` if absent or expired."""
        _validate_key(key)
        try:
            entry = self._lookup(key)
        except CustodyExpired:
            self._drop(key, "expired")
            return None
        return entry.value if entry is not None else None

    def extend(self, key: str, ttl: float) -> bool:
        """Restart the TTL of a live entry without touching its value."""
        _validate_ttl(ttl, required=True)
        value = self.recall(key)
        if value is None:
            return False
        self.hold(key, value, ttl)
        return True

    def release(self, key: str) -> bool:
        """Sanitize and drop ``key``. Returns whether anything was held."""
        _validate_key(key)
        return self._drop(key, "released")

    def _drop(self, key: str, action: str) -> bool:
        entry = self._volatile.pop(key, None)
        if entry is None:
            return False
        entry.cancel_timer()
        sanitize(entry.value)
        entry.value = None
        logger.debug("Custody %s: key=%s", action, key)
        self._notify(action, key)
        return True

    def release_all(self) -> int:
        """Release every volatile entry. Returns how many were held."""
        keys = list(self._volatile)
        for key in keys:
            self._drop(key, "released")
        if keys:
            logger.info("Released %d volatile custody entr(ies)", len(keys))
        return len(keys)

    def keys(self) -> list[str]:
        return [key for key, entry in self._volatile.items() if not entry.expired]

    def __contains__(self, key: object) -> bool:
        entry = self._volatile.get(key) if isinstance(key, str) else None
        return entry is not None and not entry.expired

    def __len__(self) -> int:
        return len(self.keys())

    # ------------------------------------------------------------------
    # Session tier
    # ------------------------------------------------------------------

    @staticmethod
    def _session_key(key: str) -> str:
        return f"{SESSION_PREFIX}{key}"

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        if self._offload:
            return await asyncio.to_thread(func, *args)
        return func(*args)

    async def hold_encrypted(
        self,
        key: str,
        value: str | bytes,
        key_material: KeyMaterial,
        ttl: float,
    ) -> None:
        """Encrypt ``value`` and hand it to the session store.

        The stored wrapper is ``{"value": envelope, "expiry": ms, "type": ...}``.

        Raises:
            InvalidInput: Empty key, missing ttl, or a value that is not
                text or bytes.
        """
        _validate_key(key)
        _validate_ttl(ttl, required=True)
        if isinstance(value, str):
            raw, kind = value.encode("utf-8"), "str"
        elif isinstance(value, (bytes, bytearray)):
            raw, kind = bytes(value), "bytes"
        else:
            raise InvalidInput("session-tier values must be str or bytes")
        envelope = await self._run(encrypt, raw, key_material)
        wrapper = orjson.dumps({
            "value": envelope,
            "expiry": int((time.time() + ttl) * 1000),
            "type": kind,
        })
        self._session.set(self._session_key(key), wrapper)
        logger.debug("Session custody acquired: key=%s ttl=%s", key, ttl)

    async def recall_encrypted(self, key: str, key_material: KeyMaterial) -> str | bytes | None:
        """Decrypt and return a session-tier value, or ``None`` if absent/expired.

        Raises:
            MalformedEnvelope: If the stored wrapper is unreadable.
            DecryptionFailed: If the key material does not match.
        """
        _validate_key(key)
        raw = self._session.get(self._session_key(key))
        if raw is None:
            return None
        try:
            wrapper = orjson.loads(raw)
            envelope = wrapper["value"]
            expiry = int(wrapper["expiry"])
            kind = wrapper.get("type", "str")
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as err:
            raise MalformedEnvelope("session record wrapper is unreadable") from err
        if time.time() * 1000 > expiry:
            self.remove_encrypted(key)
            logger.debug("Session custody expired: key=%s", key)
            return None
        plaintext = await self._run(decrypt, envelope, key_material)
        return plaintext.decode("utf-8") if kind == "str" else plaintext

    def remove_encrypted(self, key: str) -> bool:
        """Overwrite the stored record with random bytes, then delete it."""
        _validate_key(key)
        return self._wipe_session_record(self._session_key(key))

    def _wipe_session_record(self, store_key: str) -> bool:
        existing = self._session.get(store_key)
        if existing is None:
            return False
        self._session.set(store_key, secure_random(len(existing)))
        self._session.delete(store_key)
        return True

    def clear_session_tier(self) -> int:
        """Remove every session-tier record written by a custodian."""
        keys = [k for k in self._session.keys() if k.startswith(SESSION_PREFIX)]
        for store_key in keys:
            self._wipe_session_record(store_key)
        if keys:
            logger.info("Cleared %d session custody record(s)", len(keys))
        return len(keys)

    def clear(self) -> None:
        """Synchronously clear both tiers (panic / teardown)."""
        self.release_all()
        self.clear_session_tier()
