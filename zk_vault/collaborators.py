"""
Collaborators — the interfaces the vault core needs from its host.

The core does no network or file I/O of its own. The surrounding
application supplies:

- a :class:`VaultStore` that persists one envelope and one verifier per
  account (remote document store, database, file...),
- a :class:`SessionStore` for session-tier custody records,
- an :class:`IdentityProvider` that knows the current account and can
  challenge the user before sensitive operations,
- a :class:`PanicSignal` it fires when the user hits the panic key.

In-memory implementations are provided for tests and single-process use.
"""
import time
import logging
from collections.abc import Callable
from typing import Optional, Protocol, runtime_checkable

from .memory import sanitize

logger = logging.getLogger("zk_vault")


@runtime_checkable
class VaultStore(Protocol):
    """Persistence for the encrypted vault blob and its password verifier."""

    async def load(self, account_id: str) -> Optional[str]:
        ...

    async def save(self, account_id: str, envelope: str) -> None:
        ...

    async def load_verifier(self, account_id: str) -> Optional[str]:
        ...

    async def save_verifier(self, account_id: str, verifier: str) -> None:
        ...


@runtime_checkable
class SessionStore(Protocol):
    """Synchronous key/value store for session-tier custody records."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    """Account identity, owned by the surrounding application."""

    @property
    def current_account_id(self) -> Optional[str]:
        ...

    async def reauthenticate(self, password: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class MemoryVaultStore:
    """VaultStore backed by dicts."""

    def __init__(self):
        self._envelopes: dict[str, str] = {}
        self._verifiers: dict[str, str] = {}

    async def load(self, account_id: str) -> Optional[str]:
        return self._envelopes.get(account_id)

    async def save(self, account_id: str, envelope: str) -> None:
        self._envelopes[account_id] = envelope

    async def load_verifier(self, account_id: str) -> Optional[str]:
        return self._verifiers.get(account_id)

    async def save_verifier(self, account_id: str, verifier: str) -> None:
        self._verifiers[account_id] = verifier


class MemorySessionStore:
    """SessionStore backed by a dict of bytearrays.

    An optional ``ttl`` mimics an external store with its own lifetime;
    the custodian does not rely on it (records carry their own expiry).
    """

    def __init__(self, ttl: Optional[float] = None):
        self._items: dict[str, tuple[bytearray, Optional[float]]] = {}
        self._ttl = ttl

    def get(self, key: str) -> Optional[bytes]:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires = item
        if expires is not None and time.time() > expires:
            self.delete(key)
            return None
        return bytes(value)

    def set(self, key: str, value: bytes) -> None:
        expires = time.time() + self._ttl if self._ttl else None
        old = self._items.get(key)
        self._items[key] = (bytearray(value), expires)
        if old is not None:
            sanitize(old[0])

    def delete(self, key: str) -> None:
        item = self._items.pop(key, None)
        if item is not None:
            sanitize(item[0])

    def keys(self) -> list[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class StaticIdentity:
    """IdentityProvider for a fixed account and account password."""

    def __init__(self, account_id: Optional[str], password: Optional[str] = None):
        self._account_id = account_id
        self._password = password

    @property
    def current_account_id(self) -> Optional[str]:
        return self._account_id

    def sign_out(self) -> None:
        self._account_id = None

    async def reauthenticate(self, password: str) -> bool:
        return self._password is not None and password == self._password


class PanicSignal:
    """Fire-and-forget notification dispatched to synchronous subscribers."""

    def __init__(self):
        self._subscribers: list[Callable[[], object]] = []

    def subscribe(self, callback: Callable[[], object]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[], object]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def trigger(self) -> None:
        """Call every subscriber in order; one failure does not stop the rest."""
        logger.warning("Panic signal triggered (%d subscriber(s))", len(self._subscribers))
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as err:  # noqa: BLE001
                logger.error("Panic subscriber %r failed: %s", callback, err)
