"""Tests for SecretBuffer and sanitize."""
import pytest

from zk_vault.exceptions import EntropyUnavailable
from zk_vault.kdf import DerivedKey
from zk_vault import memory
from zk_vault.memory import SecretBuffer, sanitize, secure_random


class TestSecretBuffer:
    """Tests for SecretBuffer."""

    def test_reveal_and_wipe(self):
        """Test reveal returns the bytes and wipe empties the buffer."""
        buf = SecretBuffer(b"hunter2")
        assert buf.reveal() == b"hunter2"
        buf.wipe()
        assert buf.wiped
        assert len(buf) == 0

    def test_text_is_encoded(self):
        """Test text input is stored UTF-8 encoded."""
        assert SecretBuffer("clé").reveal() == "clé".encode("utf-8")

    def test_context_manager_wipes(self):
        """Test leaving the with block wipes the buffer."""
        with SecretBuffer(b"secret") as buf:
            assert buf
        assert buf.wiped

    def test_repr_is_masked(self):
        """Test repr() does not show the contents."""
        assert "hunter2" not in repr(SecretBuffer(b"hunter2"))

    def test_unhashable(self):
        """Test buffers cannot be hashed."""
        with pytest.raises(TypeError):
            hash(SecretBuffer(b"x"))


class TestSanitize:
    """Tests for sanitize."""

    def test_bytearray_overwritten(self):
        """Test a bytearray is overwritten in place."""
        data = bytearray(b"\x00" * 64)
        sanitize(data)
        assert data != bytearray(64)

    def test_containers_cleared(self):
        """Test containers are wiped recursively and emptied."""
        key = DerivedKey.random()
        inner = bytearray(b"abc")
        container = {"k": key, "items": [inner]}
        sanitize(container)
        assert container == {}
        assert key.wiped

    def test_immutables_ignored(self):
        """Test immutable values are accepted silently."""
        sanitize("text")
        sanitize(b"bytes")
        sanitize(None)


def test_entropy_unavailable(monkeypatch):
    """Test a missing random source raises EntropyUnavailable."""
    def broken(size):
        raise NotImplementedError()

    monkeypatch.setattr(memory.os, "urandom", broken)
    with pytest.raises(EntropyUnavailable):
        secure_random(16)
