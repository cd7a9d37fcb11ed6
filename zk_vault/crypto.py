"""
Envelope Cipher — AES-256-GCM envelopes and the shared digest primitive.

Envelope text format::

    base64(salt 16B) ":" base64(nonce 12B) ":" base64(ciphertext || tag 16B)

Two call shapes are supported: a password (a key is derived per call from
a fresh salt) or a :class:`~zk_vault.kdf.DerivedKey` already held in custody
(its derivation salt is written to the envelope so the password can
re-derive it later). The nonce is fresh on every call. Envelopes are never
modified in place; every change produces a new envelope.

Security Note:
    Never log plaintext or ciphertext values. A tag failure is always
    surfaced as :class:`DecryptionFailed`, whether the password was wrong or
    the bytes were corrupted.
"""
import base64
import asyncio
import binascii
import logging
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import DecryptionFailed, InvalidInput, MalformedEnvelope
from .kdf import SALT_SIZE, DerivedKey, derive_key, generate_salt
from .memory import secure_random

logger = logging.getLogger("zk_vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag appended by AESGCM

KeyMaterial = Union[str, DerivedKey]


@dataclass(frozen=True)
class Envelope:
    """One encrypted payload: salt, nonce and ciphertext-with-tag."""

    salt: bytes
    nonce: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        return ":".join(
            base64.b64encode(part).decode("ascii")
            for part in (self.salt, self.nonce, self.ciphertext)
        )

    @classmethod
    def parse(cls, text: str) -> "Envelope":
        """Parse the colon-delimited text form.

        Raises:
            MalformedEnvelope: If there are not exactly three fields, a field
                is not valid base64, or a field has an impossible length.
        """
        if not isinstance(text, str):
            raise MalformedEnvelope("envelope must be text")
        fields = text.split(":")
        if len(fields) != 3:
            raise MalformedEnvelope(f"expected 3 fields, got {len(fields)}")
        try:
            salt, nonce, ciphertext = (
                base64.b64decode(field, validate=True) for field in fields
            )
        except (binascii.Error, ValueError) as err:
            raise MalformedEnvelope("envelope field is not valid base64") from err
        if len(salt) != SALT_SIZE:
            raise MalformedEnvelope(f"salt must be {SALT_SIZE} bytes")
        if len(nonce) != NONCE_SIZE:
            raise MalformedEnvelope(f"nonce must be {NONCE_SIZE} bytes")
        if len(ciphertext) < TAG_SIZE:
            raise MalformedEnvelope("ciphertext shorter than the GCM tag")
        return cls(salt, nonce, ciphertext)


# ---------------------------------------------------------------------------
# Key resolution
# ---------------------------------------------------------------------------

def _key_for_encrypt(key_material: KeyMaterial) -> tuple[bytes, DerivedKey, bool]:
    """Return ``(salt, key, owned)``; ``owned`` keys are wiped after use."""
    if isinstance(key_material, DerivedKey):
        return key_material.salt, key_material, False
    if isinstance(key_material, str):
        if not key_material:
            raise InvalidInput("password must be a non-empty string")
        salt = generate_salt()
        return salt, derive_key(key_material, salt), True
    raise InvalidInput("key material must be a password or a DerivedKey")


def _key_for_decrypt(envelope: Envelope, key_material: KeyMaterial) -> tuple[DerivedKey, bool]:
    if isinstance(key_material, DerivedKey):
        if key_material.salt != envelope.salt:
            # only visible in the internal log; the caller sees DecryptionFailed
            logger.debug("Envelope salt differs from the custodied key salt")
        return key_material, False
    if isinstance(key_material, str):
        if not key_material:
            raise InvalidInput("password must be a non-empty string")
        return derive_key(key_material, envelope.salt), True
    raise InvalidInput("key material must be a password or a DerivedKey")


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: bytes, key_material: KeyMaterial) -> str:
    """Encrypt ``plaintext`` into a new envelope string.

    Args:
        plaintext: Data to encrypt.
        key_material: A password (derived per call with a fresh salt) or a
            custodied DerivedKey.

    Returns:
        The serialized envelope.

    Raises:
        InvalidInput: Empty password, or plaintext that is not bytes.
        EntropyUnavailable: If no salt or nonce can be generated.
    """
    if not isinstance(plaintext, (bytes, bytearray, memoryview)):
        raise InvalidInput("plaintext must be bytes")
    salt, key, owned = _key_for_encrypt(key_material)
    try:
        nonce = secure_random(NONCE_SIZE)
        ciphertext = AESGCM(key.material).encrypt(nonce, bytes(plaintext), None)
    finally:
        if owned:
            key.wipe()
    return Envelope(salt, nonce, ciphertext).serialize()


def decrypt(envelope: str, key_material: KeyMaterial) -> bytes:
    """Decrypt and authenticate an envelope string.

    Raises:
        MalformedEnvelope: If the envelope text cannot be parsed.
        DecryptionFailed: On any authentication failure.
        InvalidInput: Empty password.
    """
    parsed = Envelope.parse(envelope)
    key, owned = _key_for_decrypt(parsed, key_material)
    try:
        return AESGCM(key.material).decrypt(parsed.nonce, parsed.ciphertext, None)
    except InvalidTag as err:
        logger.debug("Envelope authentication tag mismatch")
        raise DecryptionFailed() from err
    finally:
        if owned:
            key.wipe()


async def encrypt_async(plaintext: bytes, key_material: KeyMaterial) -> str:
    """:func:`encrypt` on a worker thread (key derivation is CPU bound)."""
    return await asyncio.to_thread(encrypt, plaintext, key_material)


async def decrypt_async(envelope: str, key_material: KeyMaterial) -> bytes:
    """:func:`decrypt` on a worker thread."""
    return await asyncio.to_thread(decrypt, envelope, key_material)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------

def digest_hex(data: str | bytes, algorithm: str = "sha256") -> str:
    """Lower-case hex digest of ``data`` (UTF-8 encoded when text).

    ``sha256`` is the digest underlying the cipher's key derivation and
    the audit chain; ``sha1`` exists only for breach-check prefixes.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if algorithm == "sha256":
        ctx = hashes.Hash(hashes.SHA256())
    elif algorithm == "sha1":
        ctx = hashes.Hash(hashes.SHA1())
    else:
        raise InvalidInput(f"unsupported digest: {algorithm}")
    ctx.update(data)
    return ctx.finalize().hex()
