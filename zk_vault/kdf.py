"""
Key Derivation — password → 256-bit key, and password verifiers.

PBKDF2-HMAC-SHA256 with fixed parameters: every vault in the system is
derived the same way so a single migration path can upgrade them all.

Security Note:
    Never log passwords or derived key material. Derivation is CPU bound
    (hundreds of milliseconds); use the ``*_async`` variants from event-loop
    code so the loop stays responsive. Derivation is not cancellable: a
    caller that times out must discard the result.
"""
import hmac
import base64
import asyncio
import binascii
import logging

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import InvalidInput, MalformedEnvelope
from .memory import SecretBuffer, secure_random

logger = logging.getLogger("zk_vault")

PBKDF2_ITERATIONS = 310_000
SALT_SIZE = 16  # 128-bit salt
KEY_LENGTH = 32  # AES-256


def generate_salt() -> bytes:
    """Generate a fresh 16-byte salt from the OS CSPRNG."""
    return secure_random(SALT_SIZE)


def _pbkdf2(password: str, salt: bytes) -> bytes:
    if not isinstance(password, str) or not password:
        raise InvalidInput("password must be a non-empty string")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_SIZE:
        raise InvalidInput(f"salt must be {SALT_SIZE} bytes")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=bytes(salt),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


class DerivedKey:
    """A 256-bit symmetric key plus the salt it was derived from.

    The key bytes live in a :class:`SecretBuffer`; ``wipe()`` overwrites
    them. A DerivedKey is never serialized to a persistent store.
    """

    __slots__ = ("_key", "salt")

    def __init__(self, key: bytes | bytearray | SecretBuffer, salt: bytes):
        if isinstance(key, SecretBuffer):
            self._key = key
        else:
            if len(key) != KEY_LENGTH:
                raise InvalidInput(f"key must be {KEY_LENGTH} bytes")
            self._key = SecretBuffer(key)
        self.salt = bytes(salt)

    @classmethod
    def random(cls) -> "DerivedKey":
        """A key that comes from the CSPRNG rather than a password."""
        return cls(secure_random(KEY_LENGTH), generate_salt())

    @property
    def material(self) -> bytes:
        if self._key.wiped:
            raise InvalidInput("key material has been wiped")
        return self._key.reveal()

    @property
    def wiped(self) -> bool:
        return self._key.wiped

    def wipe(self) -> None:
        self._key.wipe()

    def __repr__(self) -> str:
        return f"<DerivedKey salt={self.salt.hex()} {'wiped' if self.wiped else 'live'}>"


class PasswordVerifier:
    """``{salt, hash}`` stored with the account to check a password.

    ``hash = PBKDF2(password, salt)`` with the same parameters as
    :class:`DerivedKey` but an independent salt.
    """

    __slots__ = ("salt", "hash")

    def __init__(self, salt: bytes, hash: bytes):  # noqa: A002
        self.salt = bytes(salt)
        self.hash = bytes(hash)

    def serialize(self) -> str:
        """Return ``salt_b64:hash_b64``."""
        return "{}:{}".format(
            base64.b64encode(self.salt).decode("ascii"),
            base64.b64encode(self.hash).decode("ascii"),
        )

    @classmethod
    def parse(cls, text: str) -> "PasswordVerifier":
        parts = text.split(":") if isinstance(text, str) else []
        if len(parts) != 2:
            raise MalformedEnvelope("verifier must have exactly 2 fields")
        try:
            salt = base64.b64decode(parts[0], validate=True)
            digest = base64.b64decode(parts[1], validate=True)
        except (binascii.Error, ValueError) as err:
            raise MalformedEnvelope("verifier field is not valid base64") from err
        if len(salt) != SALT_SIZE or len(digest) != KEY_LENGTH:
            raise MalformedEnvelope("verifier field has wrong length")
        return cls(salt, digest)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PasswordVerifier):
            return NotImplemented
        return self.salt == other.salt and hmac.compare_digest(self.hash, other.hash)

    __hash__ = None

    def __repr__(self) -> str:
        return f"<PasswordVerifier salt={self.salt.hex()}>"


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(password: str, salt: bytes) -> DerivedKey:
    """Derive the 32-byte vault key for ``password`` and ``salt``.

    Raises:
        InvalidInput: If the password is empty or the salt has the wrong size.
    """
    return DerivedKey(bytearray(_pbkdf2(password, salt)), salt)


def derive_verifier(password: str, salt: bytes | None = None) -> PasswordVerifier:
    """Produce a verifier for ``password``; a fresh salt is drawn if omitted.

    Raises:
        InvalidInput: If the password is empty.
        EntropyUnavailable: If no salt can be generated.
    """
    if not isinstance(password, str) or not password:
        raise InvalidInput("password must be a non-empty string")
    if salt is None:
        salt = generate_salt()
    return PasswordVerifier(salt, _pbkdf2(password, salt))


def verify(password: str, verifier: PasswordVerifier) -> bool:
    """Check ``password`` against ``verifier`` with a constant-time compare.

    Raises:
        InvalidInput: If the password is empty.
    """
    candidate = _pbkdf2(password, verifier.salt)
    return hmac.compare_digest(candidate, verifier.hash)


async def derive_key_async(password: str, salt: bytes) -> DerivedKey:
    """:func:`derive_key` on a worker thread."""
    return await asyncio.to_thread(derive_key, password, salt)


async def derive_verifier_async(
    password: str, salt: bytes | None = None
) -> PasswordVerifier:
    """:func:`derive_verifier` on a worker thread."""
    return await asyncio.to_thread(derive_verifier, password, salt)


async def verify_async(password: str, verifier: PasswordVerifier) -> bool:
    """:func:`verify` on a worker thread."""
    return await asyncio.to_thread(verify, password, verifier)
