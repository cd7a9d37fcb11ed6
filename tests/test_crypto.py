"""
Tests for the AES-GCM envelope cipher.

Tests cover:
- Encrypt/decrypt with a password and with a DerivedKey
- Envelope format and freshness of salt and nonce
- Authentication failures and malformed envelopes
- Digests
"""
import base64
import pytest

from zk_vault.crypto import (
    NONCE_SIZE,
    Envelope,
    decrypt,
    decrypt_async,
    digest_hex,
    encrypt,
    encrypt_async,
)
from zk_vault.exceptions import DecryptionFailed, InvalidInput, MalformedEnvelope
from zk_vault.kdf import SALT_SIZE, DerivedKey, derive_key, generate_salt

PAYLOAD = b'{"passwords":[]}'


class TestPasswordEnvelopes:
    """Encryption keyed by a password."""

    def test_decrypt_with_same_password(self):
        """Test an envelope opens with the password it was sealed with."""
        envelope = encrypt(PAYLOAD, "m4sterKey$")
        assert decrypt(envelope, "m4sterKey$") == PAYLOAD

    def test_wrong_password(self):
        """Test a wrong password fails with the generic message."""
        envelope = encrypt(PAYLOAD, "m4sterKey$")
        with pytest.raises(DecryptionFailed) as exc:
            decrypt(envelope, "m4sterKey%")
        assert str(exc.value) == DecryptionFailed.message

    def test_three_fields_with_expected_lengths(self):
        """Test the envelope has salt, nonce and ciphertext of the right sizes."""
        parsed = Envelope.parse(encrypt(PAYLOAD, "pw"))
        assert len(parsed.salt) == SALT_SIZE
        assert len(parsed.nonce) == NONCE_SIZE
        assert len(parsed.ciphertext) == len(PAYLOAD) + 16

    def test_every_envelope_is_fresh(self):
        """Test salt, nonce and ciphertext differ between calls."""
        a = Envelope.parse(encrypt(PAYLOAD, "pw"))
        b = Envelope.parse(encrypt(PAYLOAD, "pw"))
        assert a.salt != b.salt
        assert a.nonce != b.nonce
        assert a.ciphertext != b.ciphertext

    def test_empty_password(self):
        """Test an empty password is rejected."""
        with pytest.raises(InvalidInput):
            encrypt(PAYLOAD, "")

    def test_plaintext_must_be_bytes(self):
        """Test text plaintext is rejected."""
        with pytest.raises(InvalidInput):
            encrypt("text", "pw")


class TestDerivedKeyEnvelopes:
    """Encryption keyed by a custodied DerivedKey."""

    def test_round_trip(self):
        """Test encrypting and decrypting with a derived key."""
        key = derive_key("pw", generate_salt())
        assert decrypt(encrypt(PAYLOAD, key), key) == PAYLOAD

    def test_key_salt_written_and_password_can_decrypt(self):
        """Test the key's salt lets the password reopen the envelope."""
        key = derive_key("pw", generate_salt())
        envelope = encrypt(PAYLOAD, key)
        assert Envelope.parse(envelope).salt == key.salt
        assert decrypt(envelope, "pw") == PAYLOAD

    def test_nonce_fresh_under_same_key(self):
        """Test the nonce changes under the same key."""
        key = DerivedKey.random()
        assert Envelope.parse(encrypt(PAYLOAD, key)).nonce != Envelope.parse(encrypt(PAYLOAD, key)).nonce

    def test_custodied_key_not_wiped(self):
        """Test a caller's key survives encrypt and decrypt."""
        key = DerivedKey.random()
        decrypt(encrypt(PAYLOAD, key), key)
        assert not key.wiped

    def test_other_key_fails(self):
        """Test a different key cannot decrypt."""
        envelope = encrypt(PAYLOAD, DerivedKey.random())
        with pytest.raises(DecryptionFailed):
            decrypt(envelope, DerivedKey.random())

    @pytest.mark.asyncio
    async def test_async_variants(self):
        """Test the thread-offloaded variants."""
        key = DerivedKey.random()
        envelope = await encrypt_async(PAYLOAD, key)
        assert await decrypt_async(envelope, key) == PAYLOAD


class TestTampering:
    """Any bit flip fails authentication."""

    @pytest.mark.parametrize("field", [1, 2])
    def test_flipped_bit(self, field):
        """Test a flipped bit in nonce or ciphertext fails authentication."""
        key = DerivedKey.random()
        parts = encrypt(PAYLOAD, key).split(":")
        raw = bytearray(base64.b64decode(parts[field]))
        raw[0] ^= 0x01
        parts[field] = base64.b64encode(bytes(raw)).decode()
        with pytest.raises(DecryptionFailed):
            decrypt(":".join(parts), key)


class TestMalformedEnvelope:
    """Unparsable envelopes."""

    @pytest.mark.parametrize("text", [
        "",
        "abc",
        "a:b",
        "a:b:c:d",
        "!!!:???:***",
    ])
    def test_rejected(self, text):
        """Test unparsable envelopes raise MalformedEnvelope."""
        with pytest.raises(MalformedEnvelope):
            decrypt(text, DerivedKey.random())

    def test_short_ciphertext(self):
        """Test ciphertext shorter than the tag is rejected."""
        salt = base64.b64encode(b"s" * SALT_SIZE).decode()
        nonce = base64.b64encode(b"n" * NONCE_SIZE).decode()
        tiny = base64.b64encode(b"c" * 4).decode()
        with pytest.raises(MalformedEnvelope):
            Envelope.parse(f"{salt}:{nonce}:{tiny}")


class TestDigest:
    def test_sha256(self):
        """Test the SHA-256 digest of a known input."""
        assert digest_hex("abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_sha1(self):
        """Test the SHA-1 digest of a known input."""
        assert digest_hex("abc", algorithm="sha1") == "a9993e364706816aba3e25717850c26c9cd0d89d"

    def test_unknown_algorithm(self):
        """Test unsupported algorithms are rejected."""
        with pytest.raises(InvalidInput):
            digest_hex("abc", algorithm="md5")
