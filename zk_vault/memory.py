"""
Secret Memory — buffers that overwrite themselves and best-effort sanitization.

Python gives no control over copies made by the interpreter (immutable
``str``/``bytes`` objects, intermediate buffers inside OpenSSL), so the
guarantees here are "best effort, not cryptographic erasure": mutable
buffers are overwritten in place with random bytes, immutable values are
only dereferenced.
"""
import os
import logging
from typing import Any

from .exceptions import EntropyUnavailable

logger = logging.getLogger("zk_vault")


def secure_random(size: int) -> bytes:
    """Return ``size`` bytes from the operating system CSPRNG.

    Raises:
        EntropyUnavailable: If the OS exposes no secure random source.
            Callers must not fall back to a weaker generator.
    """
    try:
        return os.urandom(size)
    except (NotImplementedError, OSError) as err:
        logger.critical("Secure random source unavailable: %s", type(err).__name__)
        raise EntropyUnavailable() from err


class SecretBuffer:
    """Mutable byte container whose contents are overwritten when released.

    Usable as a context manager to scope a secret to a block::

        with SecretBuffer(raw) as buf:
            use(buf.reveal())
        # buf is wiped here
    """

    __slots__ = ("_buf", "__weakref__")

    def __init__(self, data: bytes | bytearray | str):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf = bytearray(data)

    def reveal(self) -> bytes:
        """Return an immutable copy of the contents."""
        return bytes(self._buf)

    def view(self) -> memoryview:
        return memoryview(self._buf)

    @property
    def wiped(self) -> bool:
        return not self._buf

    def wipe(self) -> None:
        """Overwrite the contents with random bytes, then empty the buffer."""
        size = len(self._buf)
        if size:
            self._buf[:] = os.urandom(size)
            self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)

    def __bool__(self) -> bool:
        return bool(self._buf)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretBuffer):
            return self._buf == other._buf
        return NotImplemented

    __hash__ = None  # mutable

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __del__(self):
        try:
            self.wipe()
        except Exception:  # noqa: BLE001 - interpreter shutdown
            pass

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else f"{len(self._buf)} bytes"
        return f"<SecretBuffer [{state}]>"


def sanitize(value: Any) -> None:
    """Best-effort overwrite of a secret value before it is dropped.

    Handles ``bytearray``, anything exposing ``wipe()`` (``SecretBuffer``,
    ``DerivedKey``) and dict/list/tuple containers of those. ``str`` and
    ``bytes`` cannot be overwritten and are left to the garbage collector.
    """
    if value is None:
        return
    if hasattr(value, "wipe"):
        value.wipe()
    elif isinstance(value, bytearray):
        value[:] = os.urandom(len(value))
    elif isinstance(value, memoryview) and not value.readonly:
        value[:] = os.urandom(value.nbytes)
    elif isinstance(value, dict):
        for item in value.values():
            sanitize(item)
        value.clear()
    elif isinstance(value, list):
        for item in value:
            sanitize(item)
        value.clear()
    elif isinstance(value, (tuple, set, frozenset)):
        for item in value:
            sanitize(item)
